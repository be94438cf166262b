"""
Ledger Engine

Mutates balances and records transactions as single atomic units. Each
operation validates its amount before touching the store, then inside one
``storage.atomic()`` scope locks every account it touches (in sorted id
order, so opposite transfers cannot deadlock), adjusts balances and appends
the transaction record. Any failure rolls the whole unit back: no balance
change and no log entry.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
import uuid

from .storage import StorageInterface
from .accounts import AccountStore
from .transactions import TransactionLog, Transaction, TransactionType
from .audit import AuditTrail, AuditEventType
from .errors import LedgerError, AccountNotFound
from .money import DEFAULT_PRECISION, AmountLike, parse_amount
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class LedgerResult:
    """
    Outcome of a successful ledger operation

    ``balance`` is the acting account's new balance: the depositor's,
    the withdrawer's, or the sender's for a transfer.
    """
    balance: Decimal
    transaction: Transaction
    receiver_balance: Optional[Decimal] = None


class LedgerEngine:
    """
    Deposit, withdrawal and transfer with all-or-nothing semantics
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_store: AccountStore,
        transaction_log: TransactionLog,
        audit_trail: Optional[AuditTrail] = None,
        precision: int = DEFAULT_PRECISION
    ):
        self.storage = storage
        self.accounts = account_store
        self.transaction_log = transaction_log
        self.audit_trail = audit_trail
        self.precision = precision
        self.logger = get_logger("ewallet.ledger")

    def deposit(
        self,
        account_id: str,
        amount: AmountLike,
        description: Optional[str] = None
    ) -> LedgerResult:
        """
        Add funds to an account

        Raises:
            InvalidAmount: If amount <= 0 or not a number
            AccountNotFound: If the account does not exist
        """
        operation = TransactionType.DEPOSIT
        try:
            value = parse_amount(amount, self.precision)
            with self.storage.atomic():
                self._lock_accounts([account_id])
                balance = self.accounts.adjust_balance(account_id, value)
                transaction = self._append(operation, account_id, account_id, value, description)
        except LedgerError as exc:
            self._on_failure(operation, exc, account_id, amount)
            raise

        self._on_success(transaction, balance)
        return LedgerResult(balance=balance, transaction=transaction)

    def withdraw(
        self,
        account_id: str,
        amount: AmountLike,
        description: Optional[str] = None
    ) -> LedgerResult:
        """
        Remove funds from an account

        Raises:
            InvalidAmount: If amount <= 0 or not a number
            AccountNotFound: If the account does not exist
            InsufficientFunds: If the balance is below amount
        """
        operation = TransactionType.WITHDRAWAL
        try:
            value = parse_amount(amount, self.precision)
            with self.storage.atomic():
                self._lock_accounts([account_id])
                balance = self.accounts.adjust_balance(account_id, -value)
                transaction = self._append(operation, account_id, account_id, value, description)
        except LedgerError as exc:
            self._on_failure(operation, exc, account_id, amount)
            raise

        self._on_success(transaction, balance)
        return LedgerResult(balance=balance, transaction=transaction)

    def transfer(
        self,
        sender_id: str,
        receiver_username: str,
        amount: AmountLike,
        description: Optional[str] = None
    ) -> LedgerResult:
        """
        Move funds from one account to another

        The sender is addressed by account ID and the receiver by username.
        Transferring to yourself is allowed: the balance check still applies,
        the net balance is unchanged, and the transaction is still logged.

        Returns:
            LedgerResult with the sender's new balance

        Raises:
            InvalidAmount: If amount <= 0 or not a number
            AccountNotFound: If sender or receiver does not exist
                (``details["role"]`` says which)
            InsufficientFunds: If the sender's balance is below amount
        """
        operation = TransactionType.TRANSFER
        try:
            value = parse_amount(amount, self.precision)

            try:
                self.accounts.get(sender_id)
            except AccountNotFound as exc:
                exc.details["role"] = "sender"
                raise

            try:
                receiver = self.accounts.find_by_username(receiver_username)
            except AccountNotFound as exc:
                exc.details["role"] = "receiver"
                raise

            with self.storage.atomic():
                self._lock_accounts([sender_id, receiver.id])
                sender_balance = self.accounts.adjust_balance(sender_id, -value)
                receiver_balance = self.accounts.adjust_balance(receiver.id, value)
                if receiver.id == sender_id:
                    sender_balance = receiver_balance
                transaction = self._append(operation, sender_id, receiver.id, value, description)
        except LedgerError as exc:
            self._on_failure(operation, exc, sender_id, amount,
                             extra={"receiver_username": receiver_username})
            raise

        self._on_success(transaction, sender_balance)
        return LedgerResult(
            balance=sender_balance,
            transaction=transaction,
            receiver_balance=receiver_balance
        )

    def _lock_accounts(self, account_ids: Iterable[str]) -> None:
        """Lock accounts in a fixed order regardless of caller order"""
        for account_id in sorted(set(account_ids)):
            self.storage.lock_record(self.accounts.table_name, account_id)

    def _append(
        self,
        transaction_type: TransactionType,
        sender_id: str,
        receiver_id: str,
        amount: Decimal,
        description: Optional[str]
    ) -> Transaction:
        transaction = self.transaction_log.new_transaction(
            transaction_type=transaction_type,
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            description=description
        )
        self.transaction_log.append(transaction)
        return transaction

    def _on_success(self, transaction: Transaction, balance: Decimal) -> None:
        log_action(
            self.logger, "info",
            f"Transaction completed: {transaction.transaction_type.value}",
            user_id=transaction.sender_id,
            action=transaction.transaction_type.value,
            resource=f"transaction:{transaction.id}",
            extra={
                "transaction_id": transaction.id,
                "sender_id": transaction.sender_id,
                "receiver_id": transaction.receiver_id,
                "amount": str(transaction.amount),
                "balance": str(balance)
            }
        )

        if not self.audit_trail:
            return

        # The unit has committed; an audit write failure must not turn it into an error
        try:
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_COMPLETED,
                entity_type="transaction",
                entity_id=transaction.id,
                user_id=transaction.sender_id,
                metadata={
                    "transaction_type": transaction.transaction_type,
                    "sender_id": transaction.sender_id,
                    "receiver_id": transaction.receiver_id,
                    "amount": transaction.amount,
                    "balance": balance
                }
            )
        except Exception as e:
            self.logger.error(f"Error writing audit event for {transaction.id}: {e}")

    def _on_failure(
        self,
        transaction_type: TransactionType,
        error: LedgerError,
        account_id: str,
        amount: Any,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        metadata = {
            "transaction_type": transaction_type,
            "account_id": account_id,
            "amount": str(amount),
            "error": error.to_dict()
        }
        if extra:
            metadata.update(extra)

        log_action(
            self.logger, "warning",
            f"Transaction failed: {transaction_type.value}: {error.message}",
            user_id=account_id,
            action=transaction_type.value,
            resource=f"account:{account_id}",
            extra=metadata
        )

        if not self.audit_trail:
            return

        try:
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_FAILED,
                entity_type="transaction_attempt",
                entity_id=str(uuid.uuid4()),
                user_id=account_id,
                metadata=metadata
            )
        except Exception as e:
            self.logger.error(f"Error writing audit event for failed {transaction_type.value}: {e}")
