"""
Ledger Exceptions

Typed failures raised by the ledger engine, account store, transaction log
and query service. Callers (the API layer) map them to user-facing
responses through ``error_code`` and ``to_dict()``.

Exception Hierarchy:
    LedgerError (base)
    ├── InvalidAmount - non-positive or non-numeric amount
    ├── NotFound - lookup failures
    │   ├── AccountNotFound
    │   └── TransactionNotFound
    ├── InsufficientFunds - debit exceeds current balance
    ├── DuplicateUsername - username already registered
    └── TransientStoreFailure - store aborted the atomic unit, safe to retry
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for all ledger operations"""

    default_error_code: str = "LEDGER_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for API responses and audit metadata"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class InvalidAmount(LedgerError):
    """Amount is zero, negative, or not a number"""

    default_error_code: str = "INVALID_AMOUNT"


class NotFound(LedgerError):
    """Requested record does not exist"""

    default_error_code: str = "NOT_FOUND"


class AccountNotFound(NotFound):
    """Sender, receiver, or target account does not exist"""

    default_error_code: str = "ACCOUNT_NOT_FOUND"


class TransactionNotFound(NotFound):
    """Queried transaction does not exist"""

    default_error_code: str = "TRANSACTION_NOT_FOUND"


class InsufficientFunds(LedgerError):
    """
    Requested debit exceeds the account's current balance.

    Attributes:
        account_id: Account that would have gone negative
        required: Amount requested
        available: Balance at the time of the check
    """

    default_error_code: str = "INSUFFICIENT_FUNDS"

    def __init__(
        self,
        account_id: str,
        required: Decimal,
        available: Decimal,
        details: Optional[Dict[str, Any]] = None
    ):
        self.account_id = account_id
        self.required = required
        self.available = available

        full_details = {
            "account_id": account_id,
            "required": str(required),
            "available": str(available)
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=f"Insufficient funds: available {available}, requested {required}",
            details=full_details
        )


class DuplicateUsername(LedgerError):
    """Username is already taken by another account"""

    default_error_code: str = "DUPLICATE_USERNAME"


class TransientStoreFailure(LedgerError):
    """
    The store aborted the atomic unit (lock timeout, write conflict,
    unavailability). Nothing was applied, so the caller may retry.
    """

    default_error_code: str = "TRANSIENT_STORE_FAILURE"
