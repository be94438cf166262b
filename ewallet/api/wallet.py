"""
Wallet endpoints

Handlers are plain ``def`` so FastAPI runs them in its threadpool; the
ledger may block while waiting for a contended account.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from .deps import get_wallet_system
from .schemas import (
    BalanceResponse, DepositRequest, LedgerResponse, TransactionListResponse,
    TransactionModel, TransferRequest, TransferResponse, WithdrawRequest
)
from ..system import WalletSystem


router = APIRouter()


@router.get("/balance", response_model=BalanceResponse)
def get_balance(
    account_id: str = Query(...),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Current balance"""
    return BalanceResponse(balance=str(system.queries.get_balance(account_id)))


@router.post("/deposit", response_model=LedgerResponse)
def deposit(
    request: DepositRequest,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Deposit money"""
    result = system.ledger.deposit(
        account_id=request.account_id,
        amount=request.amount,
        description=request.description
    )
    return LedgerResponse.from_result(result)


@router.post("/withdraw", response_model=LedgerResponse)
def withdraw(
    request: WithdrawRequest,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Withdraw money"""
    result = system.ledger.withdraw(
        account_id=request.account_id,
        amount=request.amount,
        description=request.description
    )
    return LedgerResponse.from_result(result)


@router.post("/transfer", response_model=TransferResponse)
def transfer(
    request: TransferRequest,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Transfer money to another user by username"""
    result = system.ledger.transfer(
        sender_id=request.sender_id,
        receiver_username=request.receiver_username,
        amount=request.amount,
        description=request.description
    )
    return TransferResponse(
        sender_balance=str(result.balance),
        transaction=TransactionModel.from_transaction(result.transaction)
    )


@router.get("/transactions", response_model=TransactionListResponse)
def get_transactions(
    account_id: str = Query(...),
    limit: Optional[int] = Query(None, ge=1),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Transaction history, newest first"""
    transactions = system.queries.get_history(account_id, limit=limit)
    return TransactionListResponse(
        transactions=[TransactionModel.from_transaction(txn) for txn in transactions]
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionModel)
def get_transaction(
    transaction_id: str,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Get a specific transaction by ID"""
    return TransactionModel.from_transaction(system.queries.get_transaction(transaction_id))
