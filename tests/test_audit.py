"""
Test suite for audit module

Tests the hash-chained audit trail, tamper detection and integrity
verification for wallet events.
"""

import pytest
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal

from ewallet.storage import InMemoryStorage, SQLiteStorage
from ewallet.audit import AuditTrail, AuditEvent, AuditEventType


FIXED_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_event(**overrides):
    now = FIXED_TIME
    fields = dict(
        id="AUDIT001",
        created_at=now,
        updated_at=now,
        event_type=AuditEventType.TRANSACTION_COMPLETED,
        entity_type="transaction",
        entity_id="TXN001",
        sequence=1,
        previous_hash="",
        current_hash="",
        metadata={"amount": "100.00"},
        user_id="ACC001"
    )
    fields.update(overrides)
    return AuditEvent(**fields)


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_metadata_serialization(self):
        """Metadata is reduced to JSON-friendly values"""
        now = datetime.now(timezone.utc)
        event = make_event(metadata={
            "amount": Decimal('1234.56'),
            "at": now,
            "kind": AuditEventType.ACCOUNT_CREATED,
            "nested": {"inner": Decimal('9.99'), "items": [Decimal('1.1')]}
        })

        assert event.metadata["amount"] == "1234.56"
        assert event.metadata["at"] == now.isoformat()
        assert event.metadata["kind"] == "account_created"
        assert event.metadata["nested"]["inner"] == "9.99"
        assert event.metadata["nested"]["items"] == ["1.1"]

    def test_hash_is_deterministic_sha256(self):
        event = make_event()
        digest = event.calculate_hash()

        assert len(digest) == 64
        assert digest == event.calculate_hash()

    def test_hash_verification(self):
        event = make_event()
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.current_hash = "tampered_hash"
        assert not event.verify_hash()

    @pytest.mark.parametrize("field, value", [
        ("entity_id", "TXN002"),
        ("sequence", 2),
        ("previous_hash", "other"),
        ("user_id", "ACC999"),
    ])
    def test_hash_covers_fields(self, field, value):
        original = make_event()
        changed = make_event(**{field: value})
        assert original.calculate_hash() != changed.calculate_hash()

    def test_identical_events_hash_equal(self):
        assert make_event().calculate_hash() == make_event().calculate_hash()

    def test_dict_round_trip(self):
        event = make_event()
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())

        assert restored.event_type == AuditEventType.TRANSACTION_COMPLETED
        assert restored.sequence == 1
        assert restored.verify_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_log_first_event(self):
        event = self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id="ACC001",
            metadata={"username": "john_doe"}
        )

        assert event.sequence == 1
        assert event.previous_hash == ""
        assert event.verify_hash()
        assert self.audit_trail.count_events() == 1
        assert self.audit_trail.get_latest_hash() == event.current_hash

    def test_events_chain(self):
        first = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        second = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC002")

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert self.audit_trail.get_latest_hash() == second.current_hash

    def test_get_events_for_entity(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        self.audit_trail.log_event(AuditEventType.TRANSACTION_COMPLETED, "transaction", "TXN001")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC002")

        events = self.audit_trail.get_events_for_entity("account", "ACC001")
        assert [e.entity_id for e in events] == ["ACC001"]
        assert self.audit_trail.get_events_for_entity("account", "NOPE") == []

    def test_get_events_by_type(self):
        for i in range(3):
            self.audit_trail.log_event(AuditEventType.TRANSACTION_FAILED, "transaction_attempt", f"T{i}")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")

        failed = self.audit_trail.get_events_by_type(AuditEventType.TRANSACTION_FAILED)
        assert [e.entity_id for e in failed] == ["T0", "T1", "T2"]

        latest = self.audit_trail.get_events_by_type(AuditEventType.TRANSACTION_FAILED, limit=2)
        assert [e.entity_id for e in latest] == ["T1", "T2"]
        assert self.audit_trail.get_events_by_type(AuditEventType.TRANSACTION_FAILED, limit=0) == []

    def test_verify_integrity_empty_trail(self):
        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 0

    def test_verify_integrity_valid_chain(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", f"ACC{i}")

        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_detects_tampering(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        target = self.audit_trail.log_event(
            AuditEventType.TRANSACTION_COMPLETED, "transaction", "TXN001",
            metadata={"amount": Decimal('10.00')}
        )
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC002")

        record = self.storage.load("audit_events", target.id)
        record["metadata"]["amount"] = "10000.00"
        self.storage.save("audit_events", target.id, record)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert [e["event_id"] for e in result["hash_errors"]] == [target.id]

    def test_verify_integrity_detects_chain_break(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        second = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC002")

        # Rewrite the link and re-seal the event so only the chain is broken
        record = self.storage.load("audit_events", second.id)
        forged = AuditEvent.from_dict(record)
        forged.previous_hash = "0" * 64
        forged.current_hash = forged.calculate_hash()
        self.storage.save("audit_events", second.id, forged.to_dict())

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"] == []
        assert [b["event_id"] for b in result["chain_breaks"]] == [second.id]

    def test_chain_resumes_after_restart(self, tmp_path):
        db_path = tmp_path / "audit.db"
        storage = SQLiteStorage(db_path)
        first = AuditTrail(storage).log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        storage.close()

        storage = SQLiteStorage(db_path)
        trail = AuditTrail(storage)
        second = trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC002")

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert trail.verify_integrity()["valid"]
        storage.close()

    def test_concurrent_event_logging(self):
        """Concurrent logging keeps the chain intact"""
        events_created = []
        errors = []

        def create_events(thread_id: int):
            try:
                for i in range(5):
                    events_created.append(self.audit_trail.log_event(
                        event_type=AuditEventType.TRANSACTION_COMPLETED,
                        entity_type="transaction",
                        entity_id=f"TXN_{thread_id}_{i}",
                        metadata={"thread_id": thread_id}
                    ))
                    time.sleep(0.001)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create_events, args=(i,)) for i in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(events_created) == 15
        assert sorted(e.sequence for e in events_created) == list(range(1, 16))
        assert self.audit_trail.verify_integrity()["valid"]
