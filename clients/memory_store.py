"""
In-memory record store standing in for persistence.

Records are pydantic models grouped into named tables and keyed by UUID.
Models are copied on the way in and on the way out, so a caller holding a
returned record can never mutate stored state behind the store's back.

Multi-record writes go through transaction(): the tables are snapshotted
on entry and restored if the block raises, so a failed operation leaves
no partial writes behind.

Any backend exposing the RecordStore methods can replace MemoryStore;
services only depend on the protocol.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Protocol, TypeVar
from uuid import UUID

from pydantic import BaseModel

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class RecordStore(Protocol):
    """Repository contract used by every service."""

    def get(self, table: str, record_id: UUID) -> BaseModel | None: ...

    def list(
        self,
        table: str,
        predicate: Callable[[BaseModel], bool] | None = None,
    ) -> List[BaseModel]: ...

    def upsert(self, table: str, record: BaseModel) -> BaseModel: ...

    def delete(self, table: str, record_id: UUID) -> bool: ...

    def transaction(self): ...


class MemoryStore:
    """
    Dict-backed RecordStore.

    Usage:
        store = MemoryStore()

        store.upsert("quotes", quote)
        quote = store.get("quotes", quote.id)
        drafts = store.list("quotes", lambda q: q.status == QuoteStatus.DRAFT)

        with store.transaction():
            store.upsert("quotes", old_version)
            store.upsert("quotes", new_version)  # both or neither
    """

    def __init__(self):
        self._tables: Dict[str, Dict[UUID, BaseModel]] = {}
        self._lock = threading.RLock()
        self._depth = 0

    def _table(self, table: str) -> Dict[UUID, BaseModel]:
        if table not in self._tables:
            self._tables[table] = {}
        return self._tables[table]

    def get(self, table: str, record_id: UUID) -> BaseModel | None:
        """Return a copy of the record, or None if absent."""
        with self._lock:
            record = self._table(table).get(record_id)
            return record.model_copy(deep=True) if record is not None else None

    def list(
        self,
        table: str,
        predicate: Callable[[BaseModel], bool] | None = None,
    ) -> List[BaseModel]:
        """Return copies of all records matching predicate, in insertion order."""
        with self._lock:
            records = list(self._table(table).values())
        return [
            record.model_copy(deep=True)
            for record in records
            if predicate is None or predicate(record)
        ]

    def upsert(self, table: str, record: RecordT) -> RecordT:
        """Insert or replace a record by its id. Returns a copy of what was stored."""
        record_id = getattr(record, "id", None)
        if record_id is None:
            raise ValueError(f"Cannot store record without id in table '{table}'")

        with self._lock:
            self._table(table)[record_id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    def delete(self, table: str, record_id: UUID) -> bool:
        """Remove a record. Returns False if it did not exist."""
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def count(self, table: str) -> int:
        """Number of records in a table."""
        with self._lock:
            return len(self._table(table))

    @contextmanager
    def transaction(self) -> Iterator["MemoryStore"]:
        """
        All-or-nothing block of writes.

        Nested transactions join the outermost one; only the outermost
        snapshot is restored on failure.
        """
        with self._lock:
            snapshot = copy.deepcopy(self._tables) if self._depth == 0 else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if snapshot is not None:
                    self._tables = snapshot
                    logger.info("Transaction rolled back")
                raise
            finally:
                self._depth -= 1
