"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Every mutating ledger operation runs inside ``atomic()``: writes made in the
unit become visible to other threads only when it commits, and
``lock_record()`` gives the unit exclusive access to a record until it ends.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import re
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import TransientStoreFailure

# Table names are interpolated into SQL (quoted), so keep them plain identifiers
TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # Convert datetime objects to ISO strings
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        # Convert Decimal objects to strings
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        # Convert ISO strings back to datetime objects
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self, lock_timeout: float = 10.0):
        self.lock_timeout = lock_timeout

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    def lock_record(self, table: str, record_id: str) -> None:
        """
        Take exclusive access to a record until the current atomic unit ends

        Raises:
            TransientStoreFailure: If the lock is not granted within lock_timeout
            RuntimeError: If called outside atomic()
        """
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    def is_transient_error(self, exc: BaseException) -> bool:
        """Whether a backend error means contention or unavailability"""
        return False

    def _translate(self, exc: BaseException) -> None:
        if self.is_transient_error(exc):
            raise TransientStoreFailure(
                f"Store aborted the atomic unit: {exc}",
                details={"cause": type(exc).__name__}
            ) from exc

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations

        Nested calls join the outermost unit. Any exception, including
        KeyboardInterrupt, rolls the whole unit back before propagating.
        """
        try:
            self.begin_transaction()
        except Exception as exc:
            self._translate(exc)
            raise
        try:
            yield
            self.commit()
        except BaseException as exc:
            self.rollback()
            self._translate(exc)
            raise


class _UnitOfWork:
    """Per-thread state of an in-memory atomic unit"""

    def __init__(self):
        self.depth = 0
        self.rollback_only = False
        # table -> record_id -> data (None marks a delete)
        self.writes: Dict[str, Dict[str, Optional[Dict[str, Any]]]] = {}
        self.locks: Dict[Tuple[str, str], threading.Lock] = {}


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self, lock_timeout: float = 10.0):
        super().__init__(lock_timeout)
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._record_locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._local = threading.local()

    @staticmethod
    def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy to prevent external mutation
        return json.loads(json.dumps(record, default=str))

    def _unit(self) -> Optional[_UnitOfWork]:
        return getattr(self._local, 'unit', None)

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _snapshot(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed records overlaid with this thread's staged writes"""
        with self._lock:
            self._ensure_table(table)
            records = dict(self._data[table])

        unit = self._unit()
        if unit is not None:
            for record_id, staged in unit.writes.get(table, {}).items():
                if staged is None:
                    records.pop(record_id, None)
                else:
                    records[record_id] = staged
        return records

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        data = self._copy(data)
        unit = self._unit()
        if unit is not None:
            unit.writes.setdefault(table, {})[record_id] = data
            return

        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = data

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        unit = self._unit()
        if unit is not None and record_id in unit.writes.get(table, {}):
            staged = unit.writes[table][record_id]
            return self._copy(staged) if staged is not None else None

        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return [self._copy(record) for record in self._snapshot(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        unit = self._unit()
        if unit is not None:
            existed = record_id in self._snapshot(table)
            unit.writes.setdefault(table, {})[record_id] = None
            return existed

        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        results = []
        for record in self._snapshot(table).values():
            match = True
            for key, value in filters.items():
                if key not in record or record[key] != value:
                    match = False
                    break
            if match:
                results.append(self._copy(record))
        return results

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self._snapshot(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        unit = self._unit()
        if unit is not None:
            staged = unit.writes.setdefault(table, {})
            for record_id in self._snapshot(table):
                staged[record_id] = None
            return

        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def lock_record(self, table: str, record_id: str) -> None:
        """Acquire the record's lock for the rest of the current unit"""
        unit = self._unit()
        if unit is None:
            raise RuntimeError("lock_record() must be called inside atomic()")

        key = (table, record_id)
        if key in unit.locks:
            return

        with self._lock:
            record_lock = self._record_locks.setdefault(key, threading.Lock())

        if not record_lock.acquire(timeout=self.lock_timeout):
            raise TransientStoreFailure(
                f"Timed out waiting for lock on {table}/{record_id}",
                details={"table": table, "record_id": record_id,
                         "timeout_seconds": self.lock_timeout}
            )
        unit.locks[key] = record_lock

    def begin_transaction(self) -> None:
        """Start (or join) this thread's atomic unit"""
        unit = self._unit()
        if unit is None:
            unit = _UnitOfWork()
            self._local.unit = unit
        unit.depth += 1

    def commit(self) -> None:
        """Publish staged writes in one step and release record locks"""
        unit = self._unit()
        if unit is None:
            return

        unit.depth -= 1
        if unit.depth > 0:
            return

        try:
            if unit.rollback_only:
                raise RuntimeError("Atomic unit was marked rollback-only by a nested failure")

            with self._lock:
                for table, writes in unit.writes.items():
                    self._ensure_table(table)
                    for record_id, data in writes.items():
                        if data is None:
                            self._data[table].pop(record_id, None)
                        else:
                            self._data[table][record_id] = data
        finally:
            self._end_unit(unit)

    def rollback(self) -> None:
        """Discard staged writes and release record locks"""
        unit = self._unit()
        if unit is None:
            return

        unit.depth -= 1
        if unit.depth > 0:
            unit.rollback_only = True
            return

        self._end_unit(unit)

    def _end_unit(self, unit: _UnitOfWork) -> None:
        self._local.unit = None
        for record_lock in reversed(list(unit.locks.values())):
            record_lock.release()
        unit.locks.clear()

    def get_all_data(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Get all committed data for debugging/inspection"""
        with self._lock:
            return json.loads(json.dumps(self._data, default=str))


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence

    One connection guarded by a re-entrant lock. An atomic unit holds that
    lock from BEGIN IMMEDIATE until COMMIT/ROLLBACK, so units serialize and
    readers on other threads never see uncommitted rows.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: float = 10.0):
        super().__init__(lock_timeout)
        self.db_path = str(db_path)
        # Autocommit mode; atomic units issue BEGIN IMMEDIATE / COMMIT themselves
        self._connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=lock_timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._owner: Optional[int] = None
        self._rollback_only = False
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table in self._tables:
                return
            if not TABLE_NAME_PATTERN.match(table):
                raise ValueError(f"Invalid table name: {table!r}")
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS "{table}" (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS "idx_{table}_created_at"
                ON "{table}"(created_at)
            """)
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._connection.execute(f"""
                INSERT OR REPLACE INTO "{table}" (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM "{table}" WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM "{table}" WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM "{table}" ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM "{table}" WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM "{table}" WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM "{table}" ORDER BY created_at
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(record)

            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM "{table}"
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f'DELETE FROM "{table}"')

    def lock_record(self, table: str, record_id: str) -> None:
        """
        Records are already exclusive to the unit holding the write lock;
        this only checks that the caller is inside one
        """
        if self._depth == 0 or self._owner != threading.get_ident():
            raise RuntimeError("lock_record() must be called inside atomic()")

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise TransientStoreFailure(
                "Timed out waiting for the database write lock",
                details={"timeout_seconds": self.lock_timeout}
            )
        if self._depth == 0:
            try:
                self._connection.execute("BEGIN IMMEDIATE")
            except BaseException:
                self._lock.release()
                raise
            self._owner = threading.get_ident()
            self._rollback_only = False
        self._depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._depth == 0:
                return
            self._depth -= 1
            try:
                if self._depth == 0:
                    self._owner = None
                    try:
                        if self._rollback_only:
                            raise RuntimeError(
                                "Atomic unit was marked rollback-only by a nested failure"
                            )
                        self._connection.execute("COMMIT")
                    except BaseException:
                        self._abort()
                        raise
            finally:
                # Matches the acquire in begin_transaction
                self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._depth == 0:
                return
            self._depth -= 1
            try:
                if self._depth == 0:
                    self._owner = None
                    self._abort()
                else:
                    self._rollback_only = True
            finally:
                self._lock.release()

    def _abort(self) -> None:
        if self._connection.in_transaction:
            self._connection.execute("ROLLBACK")
        # Tables created inside the unit are gone again
        self._tables.clear()

    def is_transient_error(self, exc: BaseException) -> bool:
        if not isinstance(exc, sqlite3.OperationalError):
            return False
        message = str(exc).lower()
        return "locked" in message or "busy" in message

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str, lock_timeout: float = 10.0) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Supported:
        memory://              in-process, non-durable
        sqlite:///path/to.db   SQLite file (sqlite:/// alone is in-memory SQLite)
    """
    if database_url in ("memory://", ":memory:"):
        return InMemoryStorage(lock_timeout=lock_timeout)

    if database_url.startswith("sqlite:///"):
        db_path = database_url[len("sqlite:///"):] or ":memory:"
        return SQLiteStorage(db_path, lock_timeout=lock_timeout)

    raise ValueError(f"Unsupported database URL: {database_url}")
