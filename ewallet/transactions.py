"""
Transaction Log Module

Append-only record of every monetary movement. Records are written once,
in their terminal state, and never edited. Deposits and withdrawals are
stored as self-referencing records (sender == receiver) so a single
sender-or-receiver query returns an account's full history.
"""

from decimal import Decimal
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import threading
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import TransactionNotFound


class TransactionType(Enum):
    """Kinds of monetary movement"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


class TransactionStatus(Enum):
    """States of a transaction"""
    PENDING = "pending"      # Reserved for a future reserve/commit split
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_DESCRIPTIONS = {
    TransactionType.DEPOSIT: "Wallet deposit",
    TransactionType.WITHDRAWAL: "Wallet withdrawal",
    TransactionType.TRANSFER: "Money transfer",
}


@dataclass
class Transaction(StorageRecord):
    """
    Immutable record of one deposit, withdrawal or transfer
    """
    transaction_type: TransactionType
    sender_id: str
    receiver_id: str
    amount: Decimal
    status: TransactionStatus = TransactionStatus.COMPLETED
    description: str = ""

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))

        if self.amount <= Decimal('0'):
            raise ValueError("Transaction amount must be positive")

        if not self.sender_id or not self.receiver_id:
            raise ValueError("Transaction must reference a sender and a receiver")

        if (self.transaction_type != TransactionType.TRANSFER
                and self.sender_id != self.receiver_id):
            raise ValueError(
                f"{self.transaction_type.value} must reference a single account"
            )

    @property
    def timestamp(self) -> datetime:
        """Creation time"""
        return self.created_at

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    @property
    def is_self_referencing(self) -> bool:
        return self.sender_id == self.receiver_id

    def involves(self, account_id: str) -> bool:
        """Check if the account is on either side"""
        return account_id in (self.sender_id, self.receiver_id)


class TransactionLog:
    """
    Durable append-only transaction store

    Timestamps handed out by ``new_transaction`` strictly increase, so
    newest-first ordering never ties.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"
        self._clock_lock = threading.Lock()
        self._last_timestamp = self._latest_stored_timestamp()

    def _latest_stored_timestamp(self) -> Optional[datetime]:
        records = self.storage.load_all(self.table_name)
        if not records:
            return None
        return max(datetime.fromisoformat(data['created_at']) for data in records)

    def _next_timestamp(self) -> datetime:
        with self._clock_lock:
            now = datetime.now(timezone.utc)
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + timedelta(microseconds=1)
            self._last_timestamp = now
            return now

    def new_transaction(
        self,
        transaction_type: TransactionType,
        sender_id: str,
        receiver_id: str,
        amount: Decimal,
        description: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED
    ) -> Transaction:
        """Build a record with a fresh id and timestamp (not yet appended)"""
        now = self._next_timestamp()
        return Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_type=transaction_type,
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            status=status,
            description=description or DEFAULT_DESCRIPTIONS[transaction_type]
        )

    def append(self, transaction: Transaction) -> str:
        """
        Store a new transaction record

        Joins the caller's atomic unit when there is one.

        Returns:
            The transaction ID

        Raises:
            ValueError: If a record with this ID already exists
        """
        with self.storage.atomic():
            if self.storage.exists(self.table_name, transaction.id):
                raise ValueError(
                    f"Transaction {transaction.id} already recorded; records are immutable"
                )
            self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))

        return transaction.id

    def get_by_id(self, transaction_id: str) -> Transaction:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if not data:
            raise TransactionNotFound(
                f"Transaction {transaction_id} not found",
                details={"transaction_id": transaction_id}
            )
        return self._transaction_from_dict(data)

    def list_for_account(self, account_id: str, limit: Optional[int] = None) -> List[Transaction]:
        """
        Transactions where the account is sender or receiver, newest first

        Re-read from storage on every call.
        """
        records: Dict[str, Dict] = {}
        for data in self.storage.find(self.table_name, {"sender_id": account_id}):
            records[data['id']] = data
        for data in self.storage.find(self.table_name, {"receiver_id": account_id}):
            records[data['id']] = data

        transactions = [self._transaction_from_dict(data) for data in records.values()]
        transactions.sort(key=lambda x: x.created_at, reverse=True)

        if limit is not None:
            if limit < 0:
                raise ValueError(f"limit must be zero or positive, got {limit}")
            transactions = transactions[:limit]

        return transactions

    def count(self) -> int:
        return self.storage.count(self.table_name)

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        result = transaction.to_dict()
        result['transaction_type'] = transaction.transaction_type.value
        result['status'] = transaction.status.value
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_type=TransactionType(data['transaction_type']),
            sender_id=data['sender_id'],
            receiver_id=data['receiver_id'],
            amount=Decimal(data['amount']),
            status=TransactionStatus(data['status']),
            description=data.get('description', "")
        )
