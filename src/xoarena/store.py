"""Record store contract (can be backed by memory or SQL) and live change notification."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from .exceptions import RecordNotFoundError, SubscriptionClosedError, WriteConflictError
from .records import GameRecord

logger = logging.getLogger(__name__)

RecordCallback = Callable[[Optional[GameRecord]], None]
QueryCallback = Callable[[List[GameRecord]], None]
ErrorCallback = Callable[[Exception], None]
Mutation = Callable[[GameRecord], Optional[GameRecord]]

DEFAULT_RETRIES = 3


@dataclass(frozen=True)
class RecordQuery:
    """Equality filter on one field plus ordering on another."""

    field: str = "is_private"
    value: object = False
    order_by: str = "created_at"
    descending: bool = True

    def matches(self, record: GameRecord) -> bool:
        return getattr(record, self.field) == self.value

    def apply(self, records: List[GameRecord]) -> List[GameRecord]:
        selected = [r for r in records if self.matches(r)]
        selected.sort(key=lambda r: getattr(r, self.order_by), reverse=self.descending)
        return selected


class Subscription:
    """Handle returned by ``subscribe``; ``close`` is idempotent."""

    def __init__(
        self,
        hub: "SubscriptionHub",
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._hub = hub
        self._on_error = on_error
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._hub.discard(self)

    def fail(self, exc: Exception) -> None:
        """Tear the channel down and report ``exc`` to the subscriber."""
        if self.closed:
            return
        self.close()
        if self._on_error is not None:
            _safe_call(self._on_error, exc)


class RecordSubscription(Subscription):
    def __init__(
        self,
        hub: "SubscriptionHub",
        game_id: str,
        on_change: RecordCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        super().__init__(hub, on_error)
        self.game_id = game_id
        self.on_change = on_change


class QuerySubscription(Subscription):
    def __init__(
        self,
        hub: "SubscriptionHub",
        query: RecordQuery,
        on_change: QueryCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        super().__init__(hub, on_error)
        self.query = query
        self.on_change = on_change


def _safe_call(callback: Callable[..., None], *args: object) -> None:
    try:
        callback(*args)
    except Exception:
        logger.exception("Subscriber callback failed")


class SubscriptionHub:
    """Fans out record snapshots to document and query subscribers.

    Dispatch is serialized, so every subscriber sees the writes to one record
    in the order they were committed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._dispatch = threading.RLock()
        self._records: Dict[str, List[RecordSubscription]] = {}
        self._queries: List[QuerySubscription] = []

    def add_record(self, sub: RecordSubscription) -> None:
        with self._lock:
            self._records.setdefault(sub.game_id, []).append(sub)

    def add_query(self, sub: QuerySubscription) -> None:
        with self._lock:
            self._queries.append(sub)

    def discard(self, sub: Subscription) -> None:
        with self._lock:
            if isinstance(sub, RecordSubscription):
                subs = self._records.get(sub.game_id, [])
                if sub in subs:
                    subs.remove(sub)
                if not subs:
                    self._records.pop(sub.game_id, None)
            elif isinstance(sub, QuerySubscription) and sub in self._queries:
                self._queries.remove(sub)

    @property
    def ordering(self) -> threading.RLock:
        """Held by writers across commit + publish to keep delivery in commit order."""
        return self._dispatch

    def subscriber_count(self, game_id: str) -> int:
        with self._lock:
            return len(self._records.get(game_id, []))

    def publish(
        self,
        game_id: str,
        record: Optional[GameRecord],
        list_query: Callable[[RecordQuery], List[GameRecord]],
    ) -> None:
        with self._dispatch:
            with self._lock:
                record_subs = list(self._records.get(game_id, []))
                query_subs = list(self._queries)
            for sub in record_subs:
                if not sub.closed:
                    _safe_call(sub.on_change, record.copy() if record else None)
            for qsub in query_subs:
                if not qsub.closed:
                    _safe_call(qsub.on_change, list_query(qsub.query))

    def disconnect(self, game_id: str, reason: str = "connection lost") -> int:
        """Drop every subscription on ``game_id`` as a transport failure would."""
        with self._lock:
            subs = list(self._records.get(game_id, []))
        for sub in subs:
            sub.fail(SubscriptionClosedError(reason))
        return len(subs)

    def disconnect_queries(self, reason: str = "connection lost") -> int:
        """Drop every collection subscription."""
        with self._lock:
            subs = list(self._queries)
        for sub in subs:
            sub.fail(SubscriptionClosedError(reason))
        return len(subs)


class RecordStore(Protocol):
    """Persistence layer for networked game records."""

    def create(self, record: GameRecord) -> GameRecord:
        """Store a new record; the store assigns ``id`` when empty and sets ``version``."""
        ...

    def get(self, game_id: str) -> Optional[GameRecord]:
        """Point read, None when the record does not exist."""
        ...

    def update_if_version(self, record: GameRecord, expected_version: int) -> GameRecord:
        """Full-document write, applied only if the stored version still matches."""
        ...

    def delete(self, game_id: str) -> Optional[GameRecord]:
        """Remove a record and notify its subscribers."""
        ...

    def query(self, query: RecordQuery) -> List[GameRecord]:
        """Records matching the filter, in the requested order."""
        ...

    def subscribe(
        self,
        game_id: str,
        on_change: RecordCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Live snapshots of one record (None once it is deleted)."""
        ...

    def subscribe_query(
        self,
        query: RecordQuery,
        on_change: QueryCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Live snapshots of a filtered, ordered collection."""
        ...


def new_game_id() -> str:
    return uuid.uuid4().hex


def read_modify_write(
    store: RecordStore,
    game_id: str,
    mutate: Mutation,
    retries: int = DEFAULT_RETRIES,
) -> Optional[GameRecord]:
    """Apply ``mutate`` to a fresh copy of the record and write it conditionally.

    ``mutate`` returns the record to write, or None to abandon the update. On a
    version conflict the cycle starts over with a fresh read, up to ``retries``
    extra times; the last ``WriteConflictError`` is re-raised.
    """
    attempt = 0
    while True:
        current = store.get(game_id)
        if current is None:
            raise RecordNotFoundError(f"Game with {game_id=} not found.")
        expected = current.version
        updated = mutate(current.copy())
        if updated is None:
            return None
        try:
            return store.update_if_version(updated, expected)
        except WriteConflictError:
            attempt += 1
            if attempt > retries:
                raise
            logger.debug("Write conflict on %s, retrying (%d)", game_id, attempt)


class InMemoryRecordStore:
    """Thread-safe dictionary-backed store."""

    def __init__(self) -> None:
        self._records: Dict[str, GameRecord] = {}
        self._lock = threading.Lock()
        self.hub = SubscriptionHub()

    def create(self, record: GameRecord) -> GameRecord:
        stored = record.copy()
        with self.hub.ordering:
            with self._lock:
                if not stored.id:
                    stored.id = new_game_id()
                if stored.id in self._records:
                    raise WriteConflictError(f"Game {stored.id} already exists")
                stored.version = 1
                self._records[stored.id] = stored
                result = stored.copy()
            self._publish(stored.id, result)
        return result

    def get(self, game_id: str) -> Optional[GameRecord]:
        with self._lock:
            record = self._records.get(game_id)
            return record.copy() if record else None

    def update_if_version(self, record: GameRecord, expected_version: int) -> GameRecord:
        with self.hub.ordering:
            with self._lock:
                current = self._records.get(record.id)
                if current is None:
                    raise RecordNotFoundError(f"Game with id={record.id!r} not found.")
                if current.version != expected_version:
                    raise WriteConflictError(
                        f"Game {record.id} is at version {current.version}, "
                        f"expected {expected_version}"
                    )
                stored = record.copy()
                stored.version = expected_version + 1
                self._records[record.id] = stored
                result = stored.copy()
            self._publish(record.id, result)
        return result

    def delete(self, game_id: str) -> Optional[GameRecord]:
        with self.hub.ordering:
            with self._lock:
                removed = self._records.pop(game_id, None)
            if removed is not None:
                self._publish(game_id, None)
        return removed

    def query(self, query: RecordQuery) -> List[GameRecord]:
        with self._lock:
            records = [r.copy() for r in self._records.values()]
        return query.apply(records)

    def subscribe(
        self,
        game_id: str,
        on_change: RecordCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        sub = RecordSubscription(self.hub, game_id, on_change, on_error)
        with self.hub.ordering:
            self.hub.add_record(sub)
            _safe_call(on_change, self.get(game_id))
        return sub

    def subscribe_query(
        self,
        query: RecordQuery,
        on_change: QueryCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        sub = QuerySubscription(self.hub, query, on_change, on_error)
        with self.hub.ordering:
            self.hub.add_query(sub)
            _safe_call(on_change, self.query(query))
        return sub

    def _publish(self, game_id: str, record: Optional[GameRecord]) -> None:
        self.hub.publish(game_id, record, self.query)
