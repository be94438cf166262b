"""
Wallet system wiring

Builds the store handle once and hands it to every component explicitly.
Create at process start, pass by reference, ``close()`` at shutdown.
"""

from typing import Optional

from .config import EwalletConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .accounts import AccountStore
from .transactions import TransactionLog
from .ledger import LedgerEngine
from .queries import QueryService


class WalletSystem:
    """E-wallet ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[EwalletConfig] = None,
        storage: Optional[StorageInterface] = None
    ):
        self.config = config or get_config()

        if storage is None:
            storage = create_storage(
                self.config.database_url,
                lock_timeout=self.config.lock_timeout_seconds
            )
        self.storage = storage

        self.audit_trail = None
        if self.config.enable_audit_logging:
            self.audit_trail = AuditTrail(self.storage)

        self.account_store = AccountStore(
            self.storage, self.audit_trail, precision=self.config.amount_precision
        )
        self.transaction_log = TransactionLog(self.storage)
        self.ledger = LedgerEngine(
            self.storage, self.account_store, self.transaction_log,
            self.audit_trail, precision=self.config.amount_precision
        )
        self.queries = QueryService(self.account_store, self.transaction_log)

    def close(self) -> None:
        """Release the store handle"""
        self.storage.close()
