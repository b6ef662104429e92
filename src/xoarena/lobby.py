"""Lobby discovery: a live, newest-first list of public games."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

from .records import GameRecord, UserId
from .store import RecordQuery, RecordStore, Subscription

logger = logging.getLogger(__name__)

PUBLIC_GAMES = RecordQuery(field="is_private", value=False, order_by="created_at")

_STOP = object()


@dataclass(frozen=True)
class GameSummary:
    game_id: str
    game_name: str
    player_x_name: str
    player_o_name: Optional[str]
    has_open_seat: bool
    created_at: datetime

    @classmethod
    def from_record(cls, record: GameRecord) -> "GameSummary":
        return cls(
            game_id=record.id,
            game_name=record.game_name,
            player_x_name=record.player_x_name,
            player_o_name=record.player_o_name,
            has_open_seat=record.has_open_seat,
            created_at=record.created_at,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "gameId": self.game_id,
            "gameName": self.game_name,
            "playerXName": self.player_x_name,
            "playerOName": self.player_o_name,
            "hasOpenSeat": self.has_open_seat,
            "createdAt": self.created_at.isoformat(),
        }


def open_games(records: List[GameRecord], user_id: UserId) -> List[GameSummary]:
    """Public, active games the caller holds no seat in, newest first."""
    summaries = [
        GameSummary.from_record(record)
        for record in records
        if not record.is_private
        and record.active
        and not record.abandoned
        and not record.is_seated(user_id)
    ]
    summaries.sort(key=lambda s: s.created_at, reverse=True)
    return summaries


class LobbyWatcher:
    """Keeps a standing subscription on the public games collection.

    ``stop`` is idempotent, and ``listen`` may be called again afterwards.
    """

    def __init__(self, store: RecordStore, user_id: UserId) -> None:
        self.store = store
        self.user_id = user_id
        self.games: List[GameSummary] = []
        self.error: Optional[Exception] = None
        self._lock = threading.Lock()
        self._subscription: Optional[Subscription] = None
        self._listeners: List[Callable[[List[GameSummary]], None]] = []
        self._on_failure: Optional[Callable[[Exception], None]] = None

    @property
    def listening(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    def listen(
        self,
        callback: Optional[Callable[[List[GameSummary]], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        """Subscribe to public games; ``on_error`` fires once if the channel is lost."""
        self.stop()
        with self._lock:
            self.error = None
            self._listeners = [callback] if callback is not None else []
            self._on_failure = on_error
        subscription = self.store.subscribe_query(
            PUBLIC_GAMES, self._on_snapshot, self._on_error
        )
        with self._lock:
            self._subscription = subscription
        logger.debug("Lobby listening for %s", self.user_id)

    def stop(self) -> None:
        with self._lock:
            subscription, self._subscription = self._subscription, None
            listeners, self._listeners = self._listeners, []
        if subscription is not None:
            subscription.close()
        for listener in listeners:
            if isinstance(listener, _QueueListener):
                listener.close()

    def snapshots(self) -> Iterator[List[GameSummary]]:
        """Lazily yield every lobby update until ``stop`` is called.

        Starts listening if needed; the first item is the current list.
        """
        if not self.listening:
            self.listen()
        listener = _QueueListener()
        with self._lock:
            self._listeners.append(listener)
            current = list(self.games)
        listener(current)
        return listener.drain()

    def _on_snapshot(self, records: List[GameRecord]) -> None:
        games = open_games(records, self.user_id)
        with self._lock:
            self.games = games
            listeners = list(self._listeners)
        for listener in listeners:
            listener(list(games))

    def _on_error(self, exc: Exception) -> None:
        logger.warning("Lobby subscription failed: %s", exc)
        with self._lock:
            self.error = exc
            on_failure, self._on_failure = self._on_failure, None
        self.stop()
        if on_failure is not None:
            on_failure(exc)


class _QueueListener:
    def __init__(self) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue()

    def __call__(self, games: List[GameSummary]) -> None:
        self._queue.put(games)

    def close(self) -> None:
        self._queue.put(_STOP)

    def drain(self) -> Iterator[List[GameSummary]]:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            yield item  # type: ignore[misc]
