"""
Account Store Module

Durable mapping from account identity to current balance. The source of
truth for how much money exists. Balances are only ever changed through
``adjust_balance``, which the ledger engine calls inside its atomic unit.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import AccountNotFound, DuplicateUsername, InsufficientFunds, InvalidAmount
from .money import DEFAULT_PRECISION, MAX_AMOUNT, AmountLike, parse_balance
from .logging_config import get_logger, log_action


# Lock namespace serializing username registration
USERNAME_LOCKS = "account_usernames"


@dataclass
class Account(StorageRecord):
    """Wallet account holding a single non-negative balance"""
    username: str
    balance: Decimal = Decimal('0')

    def __post_init__(self):
        if not self.username:
            raise ValueError("Account username is required")

        if not isinstance(self.balance, Decimal):
            self.balance = Decimal(str(self.balance))

        if self.balance < Decimal('0'):
            raise ValueError("Account balance cannot be negative")

    def can_debit(self, amount: Decimal) -> bool:
        """Check if the balance covers a debit of ``amount``"""
        return self.balance >= amount


class AccountStore:
    """
    Manages account records and serialized balance adjustments
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        precision: int = DEFAULT_PRECISION
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.precision = precision
        self.table_name = "accounts"
        self.logger = get_logger("ewallet.accounts")

    def create_account(self, username: str, initial_balance: AmountLike = Decimal('0')) -> Account:
        """
        Create a new account

        Registration and authentication happen elsewhere; this is the hook
        they call once an identity has been issued.

        Args:
            username: Unique handle, used as a transfer destination
            initial_balance: Opening balance (default zero)

        Returns:
            Created Account

        Raises:
            DuplicateUsername: If the username is taken
            InvalidAmount: If the opening balance is negative or not a number
        """
        username = (username or "").strip()
        if not username:
            raise ValueError("Account username is required")

        balance = parse_balance(initial_balance, self.precision)
        now = datetime.now(timezone.utc)

        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            balance=balance
        )

        with self.storage.atomic():
            self.storage.lock_record(USERNAME_LOCKS, username)
            if self.storage.find(self.table_name, {"username": username}):
                raise DuplicateUsername(
                    f"Username {username} is already registered",
                    details={"username": username}
                )
            self._save_account(account)

        log_action(
            self.logger, "info", f"Account created: {username}",
            action="create_account", resource=f"account:{account.id}",
            extra={"account_id": account.id, "username": username,
                   "initial_balance": str(balance)}
        )

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                metadata={"username": username, "initial_balance": balance}
            )

        return account

    def get(self, account_id: str) -> Account:
        """Get account by ID"""
        account_dict = self.storage.load(self.table_name, account_id)
        if not account_dict:
            raise AccountNotFound(
                f"Account {account_id} not found",
                details={"account_id": account_id}
            )
        return self._account_from_dict(account_dict)

    def find_by_username(self, username: str) -> Account:
        """Get account by username"""
        accounts = self.storage.find(self.table_name, {"username": username})
        if not accounts:
            raise AccountNotFound(
                f"Account with username {username} not found",
                details={"username": username}
            )
        return self._account_from_dict(accounts[0])

    def list_accounts(self) -> List[Account]:
        """All accounts, oldest first"""
        accounts = [self._account_from_dict(data) for data in self.storage.load_all(self.table_name)]
        accounts.sort(key=lambda x: x.created_at)
        return accounts

    def adjust_balance(self, account_id: str, delta: Decimal) -> Decimal:
        """
        Apply ``delta`` to an account's balance

        Joins the caller's atomic unit when there is one. The account record
        stays locked until that unit ends, so concurrent adjustments to the
        same account serialize.

        Args:
            account_id: Account to adjust
            delta: Positive (credit) or negative (debit) amount

        Returns:
            New balance

        Raises:
            AccountNotFound: If the account does not exist
            InsufficientFunds: If the result would be negative
            InvalidAmount: If the result would exceed MAX_AMOUNT
        """
        if not isinstance(delta, Decimal):
            delta = Decimal(str(delta))

        with self.storage.atomic():
            self.storage.lock_record(self.table_name, account_id)
            account = self.get(account_id)

            if delta < 0 and not account.can_debit(-delta):
                raise InsufficientFunds(
                    account_id,
                    required=-delta,
                    available=account.balance
                )

            if account.balance + delta > MAX_AMOUNT:
                raise InvalidAmount(
                    f"Balance of account {account_id} would exceed the maximum of {MAX_AMOUNT}",
                    details={"account_id": account_id, "amount": str(delta),
                             "balance": str(account.balance), "maximum": str(MAX_AMOUNT)}
                )

            account.balance += delta
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)

        return account.balance

    def _save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.table_name, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        return account.to_dict()

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            username=data['username'],
            balance=Decimal(data['balance'])
        )
