"""
Query Service

Read-only projections over the account store and transaction log. Reads go
straight to storage on every call and only ever see committed units.
"""

from decimal import Decimal
from typing import List, Optional

from .accounts import Account, AccountStore
from .transactions import Transaction, TransactionLog


class QueryService:
    """Balance and history lookups; performs no writes"""

    def __init__(self, account_store: AccountStore, transaction_log: TransactionLog):
        self.accounts = account_store
        self.transaction_log = transaction_log

    def get_balance(self, account_id: str) -> Decimal:
        """Current balance (raises AccountNotFound)"""
        return self.accounts.get(account_id).balance

    def get_account(self, account_id: str) -> Account:
        return self.accounts.get(account_id)

    def get_history(self, account_id: str, limit: Optional[int] = None) -> List[Transaction]:
        """Transactions involving the account, newest first (empty if unknown)"""
        return self.transaction_log.list_for_account(account_id, limit=limit)

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Single transaction (raises TransactionNotFound)"""
        return self.transaction_log.get_by_id(transaction_id)

    def get_total_balance(self) -> Decimal:
        """
        Sum of all balances, taken from one read of the accounts table

        Transfers leave this unchanged; deposits and withdrawals move it by
        their amount.
        """
        return sum(
            (account.balance for account in self.accounts.list_accounts()),
            Decimal('0')
        )
