"""Per-game chat: an append-only log delivered in timestamp order."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Tuple

from .records import UserId, utc_now

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 500

ChatCallback = Callable[[List["ChatMessage"]], None]


@dataclass(frozen=True)
class ChatMessage:
    sender_id: UserId
    sender: str
    text: str
    timestamp: datetime = field(default_factory=utc_now)
    seq: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "senderId": self.sender_id,
            "sender": self.sender,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


class ChatLog:
    """In-process chat store keyed by game id.

    Subscribers receive the full ordered log after every append, mirroring a
    snapshot listener.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: Dict[str, List[ChatMessage]] = {}
        self._subscribers: Dict[str, List[ChatCallback]] = {}
        self._seq = itertools.count(1)

    def append(self, game_id: str, sender_id: UserId, sender: str, text: str) -> bool:
        text = text.strip()
        if not text:
            return False
        message = ChatMessage(
            sender_id=sender_id,
            sender=sender,
            text=text[:MAX_MESSAGE_LENGTH],
            seq=next(self._seq),
        )
        with self._lock:
            log = self._messages.setdefault(game_id, [])
            log.append(message)
            log.sort(key=_order_key)
            snapshot = list(log)
            callbacks = list(self._subscribers.get(game_id, []))
        for callback in callbacks:
            self._deliver(callback, snapshot)
        return True

    def messages(self, game_id: str) -> List[ChatMessage]:
        with self._lock:
            return list(self._messages.get(game_id, []))

    def subscribe(self, game_id: str, callback: ChatCallback) -> Callable[[], None]:
        """Register ``callback``; returns an idempotent unsubscribe function."""
        with self._lock:
            self._subscribers.setdefault(game_id, []).append(callback)
            snapshot = list(self._messages.get(game_id, []))
        self._deliver(callback, snapshot)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(game_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def drop(self, game_id: str) -> None:
        """Forget a retired game's messages and listeners."""
        with self._lock:
            self._messages.pop(game_id, None)
            self._subscribers.pop(game_id, None)

    def _deliver(self, callback: ChatCallback, snapshot: List[ChatMessage]) -> None:
        try:
            callback(snapshot)
        except Exception:
            logger.exception("Chat subscriber failed")


def _order_key(message: ChatMessage) -> Tuple[datetime, int]:
    return message.timestamp, message.seq
