"""
Storage Backend Module

Provides the document-store interface and implementations for in-memory
(testing) and SQLite (persistence). All monetary values stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""
    
    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (upsert) a record"""
        pass
    
    @abstractmethod
    def insert_if_absent(self, table: str, record_id: str, data: Dict[str, Any]) -> bool:
        """Atomically insert a record unless the id exists. Returns True if inserted."""
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
        """Find records whose top-level fields equal the filter values"""
        pass
    
    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass
    
    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
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
    
    @contextmanager
    def atomic(self):
        """Context manager for atomic operations. Nested blocks join the outer one."""
        self.begin_transaction()
        try:
            yield
        except Exception:
            self.rollback()
            raise
        self.commit()


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""
    
    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
    
    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})
    
    @staticmethod
    def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
        # Round-trip through JSON so callers never share mutable state
        return json.loads(json.dumps(data, default=str))
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[record_id] = self._copy(data)
    
    def insert_if_absent(self, table: str, record_id: str, data: Dict[str, Any]) -> bool:
        with self._lock:
            rows = self._table(table)
            if record_id in rows:
                return False
            rows[record_id] = self._copy(data)
            return True
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return self._copy(record) if record is not None else None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [self._copy(record) for record in self._table(table).values()]
    
    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None
    
    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                self._copy(record) for record in self._table(table).values()
                if _matches(record, filters)
            ]
    
    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))
    
    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""
    
    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._depth = 0
        self._tables = set()
        
        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
    
    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at 
                ON {table}(created_at)
            """)
            self._maybe_commit()
            self._tables.add(table)
    
    def _maybe_commit(self) -> None:
        if not self._in_transaction:
            self._connection.commit()
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, 
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, json.dumps(data, default=str), record_id, now, now))
            self._maybe_commit()
    
    def insert_if_absent(self, table: str, record_id: str, data: Dict[str, Any]) -> bool:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            cursor = self._connection.execute(f"""
                INSERT OR IGNORE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (record_id, json.dumps(data, default=str), now, now))
            self._maybe_commit()
            return cursor.rowcount > 0
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY created_at")
            return [json.loads(row['data']) for row in cursor.fetchall()]
    
    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0
    
    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            ).fetchone()
            return row is not None
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]
    
    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(f"SELECT COUNT(*) as count FROM {table}").fetchone()
            return row['count']
    
    # The connection is shared across threads, so a transaction holds the
    # lock until it ends. Nested transactions join the outermost one.
    
    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._depth += 1
        self._in_transaction = True
    
    def commit(self) -> None:
        try:
            if self._depth == 1:
                try:
                    self._connection.commit()
                except Exception:
                    self._connection.rollback()
                    raise
        finally:
            self._end_transaction()
    
    def rollback(self) -> None:
        try:
            if self._depth == 1:
                self._connection.rollback()
        finally:
            self._end_transaction()
    
    def _end_transaction(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._in_transaction = False
        self._lock.release()
    
    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
