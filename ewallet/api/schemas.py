"""
Pydantic schemas for API requests and responses
"""

from typing import List, Optional, Union
from pydantic import BaseModel, Field

from ..accounts import Account
from ..ledger import LedgerResult
from ..transactions import Transaction


# Amounts arrive as JSON numbers or strings; the ledger parses them to Decimal
AmountField = Union[str, int, float]


class CreateAccountRequest(BaseModel):
    username: str = Field(..., min_length=1)
    initial_balance: AmountField = "0"


class DepositRequest(BaseModel):
    account_id: str
    amount: AmountField = Field(..., description="Positive amount")
    description: Optional[str] = None


class WithdrawRequest(BaseModel):
    account_id: str
    amount: AmountField = Field(..., description="Positive amount")
    description: Optional[str] = None


class TransferRequest(BaseModel):
    sender_id: str
    receiver_username: str = Field(..., description="Username of the receiving account")
    amount: AmountField = Field(..., description="Positive amount")
    description: Optional[str] = None


class AccountModel(BaseModel):
    id: str
    username: str
    balance: str
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(
            id=account.id,
            username=account.username,
            balance=str(account.balance),
            created_at=account.created_at.isoformat()
        )


class TransactionModel(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    amount: str
    type: str
    status: str
    description: str
    timestamp: str

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionModel':
        return cls(
            id=transaction.id,
            sender_id=transaction.sender_id,
            receiver_id=transaction.receiver_id,
            amount=str(transaction.amount),
            type=transaction.transaction_type.value,
            status=transaction.status.value,
            description=transaction.description,
            timestamp=transaction.timestamp.isoformat()
        )


class BalanceResponse(BaseModel):
    balance: str


class LedgerResponse(BaseModel):
    balance: str
    transaction: TransactionModel

    @classmethod
    def from_result(cls, result: LedgerResult) -> 'LedgerResponse':
        return cls(
            balance=str(result.balance),
            transaction=TransactionModel.from_transaction(result.transaction)
        )


class TransferResponse(BaseModel):
    sender_balance: str
    transaction: TransactionModel
    message: str = "Transfer successful"


class TransactionListResponse(BaseModel):
    transactions: List[TransactionModel]
