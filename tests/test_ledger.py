"""
Test suite for the ledger engine

CRITICAL: Validates that every operation is all-or-nothing: a failed
operation changes no balance and leaves no transaction behind, and
transfers neither create nor destroy money.
"""

import pytest
from decimal import Decimal

from ewallet.storage import InMemoryStorage
from ewallet.audit import AuditTrail, AuditEventType
from ewallet.accounts import AccountStore
from ewallet.transactions import TransactionLog, TransactionType, TransactionStatus
from ewallet.ledger import LedgerEngine, LedgerResult
from ewallet.queries import QueryService
from ewallet.money import MAX_AMOUNT
from ewallet.errors import (
    AccountNotFound, InsufficientFunds, InvalidAmount, TransientStoreFailure
)


class LedgerTestBase:
    """Wires a fresh in-memory ledger for each test"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountStore(self.storage, self.audit)
        self.log = TransactionLog(self.storage)
        self.ledger = LedgerEngine(self.storage, self.accounts, self.log, self.audit)
        self.queries = QueryService(self.accounts, self.log)

        self.alice = self.accounts.create_account("alice", "100")
        self.bob = self.accounts.create_account("bob", "50")

    def balance(self, account):
        return self.queries.get_balance(account.id)


class TestDeposit(LedgerTestBase):
    """Test deposits"""

    def test_deposit(self):
        result = self.ledger.deposit(self.alice.id, "25.50")

        assert isinstance(result, LedgerResult)
        assert result.balance == Decimal('125.50')
        assert result.receiver_balance is None
        assert self.balance(self.alice) == Decimal('125.50')

        txn = result.transaction
        assert txn.transaction_type == TransactionType.DEPOSIT
        assert txn.sender_id == self.alice.id
        assert txn.receiver_id == self.alice.id
        assert txn.amount == Decimal('25.50')
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.description == "Wallet deposit"
        assert self.log.get_by_id(txn.id).amount == Decimal('25.50')

    def test_deposit_with_description(self):
        result = self.ledger.deposit(self.alice.id, 10, description="Salary")
        assert result.transaction.description == "Salary"

    @pytest.mark.parametrize("amount", [0, "0", -10, "-0.01", "abc", None])
    def test_invalid_amount_changes_nothing(self, amount):
        with pytest.raises(InvalidAmount):
            self.ledger.deposit(self.alice.id, amount)

        assert self.balance(self.alice) == Decimal('100.00')
        assert self.log.count() == 0

    def test_unknown_account(self):
        with pytest.raises(AccountNotFound):
            self.ledger.deposit("ghost", "10")
        assert self.log.count() == 0

    def test_deposit_then_withdraw_round_trip(self):
        before = self.balance(self.alice)

        self.ledger.deposit(self.alice.id, "33.33")
        self.ledger.withdraw(self.alice.id, "33.33")

        assert self.balance(self.alice) == before


class TestWithdraw(LedgerTestBase):
    """Test withdrawals"""

    def test_withdraw(self):
        result = self.ledger.withdraw(self.alice.id, "40")

        assert result.balance == Decimal('60.00')
        assert self.balance(self.alice) == Decimal('60.00')
        assert result.transaction.transaction_type == TransactionType.WITHDRAWAL
        assert result.transaction.is_self_referencing
        assert result.transaction.description == "Wallet withdrawal"

    def test_withdraw_entire_balance(self):
        result = self.ledger.withdraw(self.alice.id, "100")
        assert result.balance == Decimal('0')

    def test_insufficient_funds_changes_nothing(self):
        with pytest.raises(InsufficientFunds) as exc_info:
            self.ledger.withdraw(self.alice.id, "100.01")

        assert exc_info.value.available == Decimal('100.00')
        assert exc_info.value.required == Decimal('100.01')
        assert self.balance(self.alice) == Decimal('100.00')
        assert self.log.count() == 0

    def test_invalid_amount(self):
        with pytest.raises(InvalidAmount):
            self.ledger.withdraw(self.alice.id, "-5")
        assert self.balance(self.alice) == Decimal('100.00')

    def test_unknown_account(self):
        with pytest.raises(AccountNotFound):
            self.ledger.withdraw("ghost", "1")


class TestTransfer(LedgerTestBase):
    """Test transfers between accounts"""

    def test_transfer(self):
        result = self.ledger.transfer(self.alice.id, "bob", "30")

        assert result.balance == Decimal('70.00')
        assert result.receiver_balance == Decimal('80.00')
        assert self.balance(self.alice) == Decimal('70.00')
        assert self.balance(self.bob) == Decimal('80.00')

        txn = result.transaction
        assert txn.transaction_type == TransactionType.TRANSFER
        assert txn.sender_id == self.alice.id
        assert txn.receiver_id == self.bob.id
        assert txn.amount == Decimal('30.00')
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.description == "Money transfer"

        # Exactly one record, visible from both sides
        assert self.log.count() == 1
        assert [t.id for t in self.queries.get_history(self.alice.id)] == [txn.id]
        assert [t.id for t in self.queries.get_history(self.bob.id)] == [txn.id]

    def test_transfer_preserves_total(self):
        total = self.queries.get_total_balance()

        self.ledger.transfer(self.alice.id, "bob", "10")
        self.ledger.transfer(self.bob.id, "alice", "55.55")
        self.ledger.transfer(self.alice.id, "bob", "0.01")

        assert self.queries.get_total_balance() == total

    def test_deposits_and_withdrawals_move_total(self):
        total = self.queries.get_total_balance()

        self.ledger.deposit(self.alice.id, "20")
        assert self.queries.get_total_balance() == total + Decimal('20')

        self.ledger.withdraw(self.bob.id, "5")
        assert self.queries.get_total_balance() == total + Decimal('15')

    def test_insufficient_funds_changes_nothing(self):
        with pytest.raises(InsufficientFunds):
            self.ledger.transfer(self.bob.id, "alice", "50.01")

        assert self.balance(self.alice) == Decimal('100.00')
        assert self.balance(self.bob) == Decimal('50.00')
        assert self.log.count() == 0

    def test_unknown_sender(self):
        with pytest.raises(AccountNotFound) as exc_info:
            self.ledger.transfer("ghost", "bob", "1")
        assert exc_info.value.details["role"] == "sender"

    def test_unknown_receiver(self):
        with pytest.raises(AccountNotFound) as exc_info:
            self.ledger.transfer(self.alice.id, "mallory", "1")

        assert exc_info.value.details["role"] == "receiver"
        assert exc_info.value.details["username"] == "mallory"
        assert self.balance(self.alice) == Decimal('100.00')
        assert self.log.count() == 0

    def test_invalid_amount_checked_first(self):
        with pytest.raises(InvalidAmount):
            self.ledger.transfer("ghost", "mallory", "0")

    def test_self_transfer(self):
        result = self.ledger.transfer(self.alice.id, "alice", "40")

        assert result.balance == Decimal('100.00')
        assert result.receiver_balance == Decimal('100.00')
        assert self.balance(self.alice) == Decimal('100.00')
        assert result.transaction.is_self_referencing
        assert self.log.count() == 1

    def test_self_transfer_still_checks_balance(self):
        with pytest.raises(InsufficientFunds):
            self.ledger.transfer(self.alice.id, "alice", "100.01")
        assert self.log.count() == 0

    def test_failure_during_credit_rolls_back_debit(self):
        """A store failure after the debit must not leave money missing"""
        original = self.accounts.adjust_balance

        def failing_adjust(account_id, delta):
            if delta > 0:
                raise TransientStoreFailure("store went away")
            return original(account_id, delta)

        self.accounts.adjust_balance = failing_adjust

        with pytest.raises(TransientStoreFailure):
            self.ledger.transfer(self.alice.id, "bob", "30")

        assert self.balance(self.alice) == Decimal('100.00')
        assert self.balance(self.bob) == Decimal('50.00')
        assert self.log.count() == 0

    def test_failure_appending_record_rolls_back_balances(self):
        def failing_append(transaction):
            raise TransientStoreFailure("log unavailable")

        self.log.append = failing_append

        with pytest.raises(TransientStoreFailure):
            self.ledger.transfer(self.alice.id, "bob", "30")

        assert self.balance(self.alice) == Decimal('100.00')
        assert self.balance(self.bob) == Decimal('50.00')


class TestLedgerAudit(LedgerTestBase):
    """Test audit events written by the engine"""

    def test_completed_transaction_audited(self):
        result = self.ledger.transfer(self.alice.id, "bob", "5")

        events = self.audit.get_events_for_entity("transaction", result.transaction.id)
        assert len(events) == 1
        assert events[0].event_type == AuditEventType.TRANSACTION_COMPLETED
        assert events[0].user_id == self.alice.id
        assert events[0].metadata["transaction_type"] == "transfer"
        assert events[0].metadata["amount"] == "5.00"

    def test_failed_transaction_audited_not_logged(self):
        with pytest.raises(InsufficientFunds):
            self.ledger.withdraw(self.bob.id, "500")

        failures = self.audit.get_events_by_type(AuditEventType.TRANSACTION_FAILED)
        assert len(failures) == 1
        assert failures[0].metadata["transaction_type"] == "withdrawal"
        assert failures[0].metadata["error"]["error_code"] == "INSUFFICIENT_FUNDS"
        assert self.log.count() == 0

    def test_audit_chain_stays_valid(self):
        self.ledger.deposit(self.alice.id, "1")
        with pytest.raises(InvalidAmount):
            self.ledger.deposit(self.alice.id, "0")
        self.ledger.transfer(self.alice.id, "bob", "2")

        assert self.audit.verify_integrity()["valid"]

    def test_audit_failure_does_not_fail_committed_operation(self):
        def broken_log_event(**kwargs):
            raise RuntimeError("audit store down")

        self.audit.log_event = broken_log_event

        result = self.ledger.deposit(self.alice.id, "10")
        assert result.balance == Decimal('110.00')
        assert self.balance(self.alice) == Decimal('110.00')

    def test_engine_without_audit_trail(self):
        ledger = LedgerEngine(self.storage, self.accounts, self.log)
        result = ledger.withdraw(self.alice.id, "1")
        assert result.balance == Decimal('99.00')


class TestAmountLimits(LedgerTestBase):
    """Test amounts and balances near the maximum"""

    @pytest.mark.parametrize("amount", ["1" + "0" * 27, 1e300])
    def test_huge_deposit_is_invalid_amount(self, amount):
        with pytest.raises(InvalidAmount):
            self.ledger.deposit(self.alice.id, amount)

        assert self.balance(self.alice) == Decimal('100.00')
        assert self.log.count() == 0
        failures = self.audit.get_events_by_type(AuditEventType.TRANSACTION_FAILED)
        assert failures[-1].metadata["error"]["error_code"] == "INVALID_AMOUNT"

    def test_balance_cannot_exceed_maximum(self):
        rich = self.accounts.create_account("rich", MAX_AMOUNT - Decimal('0.01'))

        result = self.ledger.deposit(rich.id, "0.01")
        assert result.balance == MAX_AMOUNT

        with pytest.raises(InvalidAmount, match="would exceed the maximum"):
            self.ledger.deposit(rich.id, "0.01")

        assert self.balance(rich) == MAX_AMOUNT
        assert len(self.queries.get_history(rich.id)) == 1

    def test_transfer_into_full_account_rolls_back(self):
        self.accounts.create_account("full", MAX_AMOUNT)

        with pytest.raises(InvalidAmount):
            self.ledger.transfer(self.alice.id, "full", "1")

        assert self.balance(self.alice) == Decimal('100.00')
        assert self.log.count() == 0
