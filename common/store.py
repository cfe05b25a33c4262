"""
Entity Store: the only owner of task, worker, area and asset records.

Every record carries a `version`. All mutations funnel through commit(),
which applies a batch of version-checked writes all-or-nothing. A version
mismatch means somebody else wrote the record since it was read and is
reported as Conflict.

Backends implement _load(), _load_all() and _apply(). The Redis backend
lives in common.redis_utils; MemoryEntityStore below keeps serialized
records in-process (local development and tests).
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError

from common.errors import Conflict, NotFound, ValidationError
from common.models import Page, Record, utcnow


logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)

MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class Write:
    """
    One element of an atomic commit.

    expected_version None means the record must not exist yet (create).
    record None means delete.
    """
    model: type
    entity_id: str
    expected_version: Optional[int]
    record: Optional[Record] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.model.kind, self.entity_id)


def put(record: Record) -> Write:
    """Write for an update of an already loaded record."""
    return Write(type(record), record.id, record.version, record)


def sort_key(record: Record) -> tuple:
    return (record.created_at, record.id)


def validate_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset must be >= 0")


def apply_patch(record: R, patch: dict) -> R:
    """
    Return a re-validated copy of `record` with `patch` applied.

    Identity and bookkeeping fields cannot be patched.
    """
    forbidden = {"id", "version", "created_at", "updated_at"} & set(patch)
    if forbidden:
        raise ValidationError(f"Fields cannot be patched: {sorted(forbidden)}")
    data = record.model_dump()
    data.update(patch)
    try:
        return type(record).model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {record.kind} update: {e}")


class EntityStore(ABC):
    """Common CRUD/query surface over a backend that can apply atomic batches."""

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _load(self, model: type[R], entity_id: str) -> Optional[R]:
        """Return the stored record or None."""

    @abstractmethod
    def _load_all(self, model: type[R]) -> list[R]:
        """Return every record of a kind ordered by (created_at, id)."""

    @abstractmethod
    def _apply(self, writes: list[Write]) -> None:
        """
        Check every write's expected version and apply all of them atomically.
        Must raise Conflict (and write nothing) on any mismatch.
        """

    def ping(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def commit(self, writes: Iterable[Write]) -> list[Record]:
        """
        Apply a batch of writes atomically.

        Returns:
            The stored records (version bumped) for every non-delete write
        """
        prepared = []
        seen = set()
        now = utcnow()
        for write in writes:
            if write.key in seen:
                raise ValueError(f"Duplicate write for {write.key} in one commit")
            seen.add(write.key)
            record = write.record
            if record is not None:
                next_version = 1 if write.expected_version is None else write.expected_version + 1
                record = record.model_copy(update={"version": next_version, "updated_at": now})
            prepared.append(Write(write.model, write.entity_id, write.expected_version, record))

        self._apply(prepared)
        return [w.record for w in prepared if w.record is not None]

    def create(self, record: R) -> R:
        (stored,) = self.commit([Write(type(record), record.id, None, record)])
        logger.info(f"Created {record.kind} {record.id}")
        return stored

    def get(self, model: type[R], entity_id: str) -> R:
        record = self._load(model, entity_id)
        if record is None:
            raise NotFound(model.kind, entity_id)
        return record

    def find(self, model: type[R], entity_id: Optional[str]) -> Optional[R]:
        """Like get() but returns None for a missing or empty id."""
        if not entity_id:
            return None
        return self._load(model, entity_id)

    def update(
        self,
        model: type[R],
        entity_id: str,
        patch: dict,
        expected_version: Optional[int] = None,
    ) -> R:
        """
        Patch a record atomically.

        The patched record is re-validated against its model, so an update
        that would break an entity invariant is rejected and nothing changes.
        With expected_version the caller's read is checked too; without it
        the update still fails with Conflict if the record changes between
        this method's own read and write.
        """
        current = self.get(model, entity_id)
        if expected_version is not None and current.version != expected_version:
            raise Conflict(
                f"{model.kind} {entity_id} is at version {current.version}, expected {expected_version}"
            )
        updated = apply_patch(current, patch)
        (stored,) = self.commit([put(updated)])
        return stored

    def delete(self, model: type[R], entity_id: str, expected_version: Optional[int] = None) -> None:
        current = self.get(model, entity_id)
        version = current.version if expected_version is None else expected_version
        self.commit([Write(model, entity_id, version, None)])
        logger.info(f"Deleted {model.kind} {entity_id}")

    def select(self, model: type[R], predicate: Optional[Callable[[R], bool]] = None) -> list[R]:
        records = self._load_all(model)
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    def query(
        self,
        model: type[R],
        predicate: Optional[Callable[[R], bool]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page:
        """Filtered page in (created_at, id) order."""
        validate_page(limit, offset)
        matches = self.select(model, predicate)
        return Page(
            items=matches[offset:offset + limit],
            total=len(matches),
            limit=limit,
            offset=offset,
        )


class MemoryEntityStore(EntityStore):
    """
    In-process backend.

    Records are kept as JSON strings so callers never share an object with
    the store. Each record key has its own lock; a commit takes the locks of
    the keys it touches in sorted order, so unrelated records never contend.
    """

    def __init__(self):
        self._tables: dict[str, dict[str, str]] = {}
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _table(self, kind: str) -> dict[str, str]:
        with self._registry_lock:
            return self._tables.setdefault(kind, {})

    def _load(self, model, entity_id):
        table = self._table(model.kind)
        with self._registry_lock:
            raw = table.get(entity_id)
        return None if raw is None else model.model_validate_json(raw)

    def _load_all(self, model):
        table = self._table(model.kind)
        with self._registry_lock:
            snapshot = list(table.values())
        records = [model.model_validate_json(raw) for raw in snapshot]
        return sorted(records, key=sort_key)

    def _apply(self, writes):
        locks = [self._lock_for(key) for key in sorted(w.key for w in writes)]
        for lock in locks:
            lock.acquire()
        try:
            for write in writes:
                raw = self._table(write.model.kind).get(write.entity_id)
                check_version(write, raw, write.model)
            payloads = [
                (self._table(w.model.kind), w.entity_id, None if w.record is None else w.record.model_dump_json())
                for w in writes
            ]
            # readers see either none or all of the batch
            with self._registry_lock:
                for table, entity_id, raw in payloads:
                    if raw is None:
                        table.pop(entity_id, None)
                    else:
                        table[entity_id] = raw
        finally:
            for lock in reversed(locks):
                lock.release()


def check_version(write: Write, raw: Optional[str], model: type) -> None:
    """Raise Conflict unless the stored JSON matches the write's expectation."""
    if write.expected_version is None:
        if raw is not None:
            raise Conflict(f"{model.kind} {write.entity_id} already exists")
        return
    if raw is None:
        raise Conflict(f"{model.kind} {write.entity_id} was removed concurrently")
    stored_version = model.model_validate_json(raw).version
    if stored_version != write.expected_version:
        raise Conflict(
            f"{model.kind} {write.entity_id} changed concurrently "
            f"(version {stored_version}, expected {write.expected_version})"
        )
