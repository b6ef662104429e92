"""
Networked play on top of a shared record store.

Every participant (two players plus any number of spectators) runs one
``GameSynchronizer``. The stored ``GameRecord`` is the only authority: local
state is a view rebuilt from each pushed snapshot, and every change is a
read-modify-write guarded by the record's version counter.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from .chat import ChatLog, ChatMessage
from .exceptions import RecordNotFoundError, WriteConflictError
from .game import (
    BOARD_SIZE,
    EMPTY,
    O,
    X,
    Outcome,
    evaluate,
    new_board,
    opponent,
    winning_line,
)
from .records import GameRecord, Role, UserId, turn_message, waiting_message
from .session import GameSession, Mode
from .store import RecordStore, Subscription, read_modify_write
from .surface import NullSurface, RenderSurface

logger = logging.getLogger(__name__)

GAME_ENDED_NOTICE = "The online game you were in has ended or was deleted."
DISCONNECTED_NOTICE = "Disconnected from online game. Please try rejoining."
SEAT_TAKEN_NOTICE = "The seat was taken just before you; you are watching as a spectator."
GAME_FULL_NOTICE = "This game is already full; you are watching as a spectator."


class ParticipantState(str, Enum):
    UNASSIGNED = "unassigned"
    ROLE_ASSIGNED = "roleAssigned"
    ACTIVE = "active"
    FINISHED = "finished"
    DEPARTED = "departed"


# ---- record transitions (pure: operate on a private copy) ----


def apply_move(record: GameRecord, index: int) -> GameRecord:
    """Place the current player's mark and settle win/draw/turn on ``record``."""
    mover = record.current_player
    record.board[index] = mover
    outcome = evaluate(record.board, mover)
    if outcome is None:
        record.current_player = opponent(mover)
        record.status_message = turn_message(record.current_player)
        return record

    record.active = False
    record.score.record(outcome)
    record.winner = outcome.value
    if outcome is Outcome.DRAW:
        record.winning_cells = None
        record.status_message = "It's a Draw!"
    else:
        record.winning_cells = list(winning_line(record.board, mover) or ())
        record.status_message = f"Player {mover} Wins!"
    return record


def start_round(record: GameRecord, active: bool) -> GameRecord:
    """Clear the board for a new round; the score tally is kept."""
    record.board = new_board()
    record.current_player = X
    record.active = active
    record.winner = None
    record.winning_cells = None
    record.rematch = {X: False, O: False}
    record.status_message = turn_message(X) if active else waiting_message()
    return record


def is_paused(record: GameRecord) -> bool:
    return not record.active and record.winner is None


def interactive_cells(record: Optional[GameRecord], role: Optional[Role]) -> List[bool]:
    """Which cells ``role`` may click on ``record`` right now."""
    if record is None or role is None or not role.is_player or not record.active:
        return [False] * BOARD_SIZE
    if record.current_player != role.value:
        return [False] * BOARD_SIZE
    return [cell == EMPTY for cell in record.board]


class GameSynchronizer:
    """One participant's connection to a networked game."""

    def __init__(
        self,
        store: RecordStore,
        user_id: UserId,
        display_name: str = "",
        surface: Optional[RenderSurface] = None,
        chat: Optional[ChatLog] = None,
        on_return_to_lobby: Optional[Callable[[], None]] = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.display_name = display_name
        self.surface: RenderSurface = surface or NullSurface()
        self.chat = chat
        self.on_return_to_lobby = on_return_to_lobby

        self.game_id: Optional[str] = None
        self.last_game_id: Optional[str] = None
        self.role: Optional[Role] = None
        self.state = ParticipantState.UNASSIGNED
        self.record: Optional[GameRecord] = None
        self.session: Optional[GameSession] = None
        self.chat_messages: List[ChatMessage] = []

        self._lock = threading.RLock()
        self._subscription: Optional[Subscription] = None
        self._chat_unsubscribe: Optional[Callable[[], None]] = None

    # ---- lifecycle ----

    def create_game(self, name: str = "", is_private: bool = False) -> GameRecord:
        record = GameRecord(
            id="",
            player_x_id=self.user_id,
            player_x_name=self._player_name(X),
            game_name=name.strip(),
            is_private=is_private,
        )
        stored = self.store.create(record)
        logger.info("Game %s created by %s", stored.id, self.user_id)
        self._enter(stored.id, Role.X)
        return stored

    def join_game(self, game_id: str) -> Optional[Role]:
        """Take a seat (or resume one) in ``game_id``; None if the game is gone."""
        game_id = game_id.strip()
        record = self.store.get(game_id)
        if record is None or record.abandoned:
            self._game_ended()
            return None

        role = record.role_of(self.user_id)
        if role.is_player:
            logger.info("%s resumed game %s as %s", self.user_id, game_id, role.value)
        elif record.has_open_seat:
            role = self._claim_o_seat(game_id)
            if role is None:
                self._game_ended()
                return None
        else:
            self.surface.notify(GAME_FULL_NOTICE)

        self._enter(game_id, role)
        return role

    def rejoin(self) -> Optional[Role]:
        """Re-enter the last game after a disconnect."""
        if self.last_game_id is None:
            return None
        return self.join_game(self.last_game_id)

    def leave(self) -> None:
        with self._lock:
            game_id, role = self.game_id, self.role
        if game_id is None:
            return

        # Stop listening first so our own departure write is not echoed back.
        self._close_channels()
        if role is not None and role.is_player:
            try:
                self._release_seat(game_id)
            except RecordNotFoundError:
                logger.info("Game %s was already gone when %s left", game_id, self.user_id)
            except WriteConflictError:
                logger.warning("Could not release seat in %s after retries", game_id)

        logger.info("%s left game %s", self.user_id, game_id)
        self._teardown(ParticipantState.DEPARTED)

    # ---- moves ----

    def submit_move(self, index: int) -> bool:
        """Play ``index`` for this participant's mark.

        The record is re-read right before writing and the write is conditional
        on its version, so a move raced by the opponent is dropped instead of
        overwriting theirs. Returns whether the move was stored.
        """
        with self._lock:
            game_id, role = self.game_id, self.role
        if game_id is None or role is None or not role.is_player:
            return False

        fresh = self.store.get(game_id)
        if fresh is None:
            self._game_ended()
            return False
        if not fresh.active or fresh.current_player != role.value:
            logger.debug("Rejected move by %s: not their turn", self.user_id)
            return False
        if not 0 <= index < BOARD_SIZE or fresh.board[index] != EMPTY:
            logger.debug("Rejected move by %s: cell %s unavailable", self.user_id, index)
            return False

        updated = apply_move(fresh.copy(), index)
        try:
            self.store.update_if_version(updated, fresh.version)
        except WriteConflictError:
            logger.warning(
                "Stale move by %s on %s dropped (version %d)",
                self.user_id,
                game_id,
                fresh.version,
            )
            return False
        except RecordNotFoundError:
            self._game_ended()
            return False
        logger.debug("%s played %d in %s", role.value, index, game_id)
        return True

    def request_rematch(self) -> bool:
        """Flag this player's rematch wish; the second flag starts a new round."""
        with self._lock:
            game_id, role = self.game_id, self.role
        if game_id is None or role is None or not role.is_player:
            return False

        def mutate(current: GameRecord) -> Optional[GameRecord]:
            mark = current.role_of(self.user_id)
            if not mark.is_player or current.active or current.winner is None:
                return None
            current.rematch[mark.value] = True
            if all(current.rematch.get(p) for p in (X, O)) and not current.has_open_seat:
                logger.info("Rematch agreed in %s", current.id)
                return start_round(current, active=True)
            current.status_message = f"Player {mark.value} wants a rematch"
            return current

        try:
            return read_modify_write(self.store, game_id, mutate) is not None
        except RecordNotFoundError:
            self._game_ended()
            return False
        except WriteConflictError:
            logger.warning("Rematch request in %s lost repeated races", game_id)
            return False

    # ---- chat ----

    def send_chat(self, text: str) -> bool:
        with self._lock:
            game_id, role = self.game_id, self.role
        if game_id is None or self.chat is None:
            return False
        return self.chat.append(game_id, self.user_id, self._chat_name(role), text)

    # ---- view ----

    def interactive_cells(self) -> List[bool]:
        with self._lock:
            return interactive_cells(self.record, self.role)

    def legal_moves(self) -> List[int]:
        return [i for i, ok in enumerate(self.interactive_cells()) if ok]

    def render(self) -> None:
        with self._lock:
            record, role = self.record, self.role
        if record is None:
            return
        surface = self.surface
        surface.render_board(record.board)
        surface.render_status(record.status_message)
        surface.render_score(record.score)
        if not record.active and record.winning_cells:
            surface.highlight_cells(record.winning_cells)
        else:
            surface.highlight_cells([])
        surface.set_interactive(interactive_cells(record, role))

    def disconnect(self) -> None:
        """Transport-level failure hook; the record itself is left untouched."""
        self._on_subscription_error(ConnectionError("connection lost"))

    # ---- internals ----

    def _claim_o_seat(self, game_id: str) -> Optional[Role]:
        name = self._player_name(O)

        def claim(current: GameRecord) -> Optional[GameRecord]:
            if current.abandoned or current.role_of(self.user_id).is_player:
                return None
            if current.player_o_id is not None:
                return None
            current.player_o_id = self.user_id
            current.player_o_name = name
            if is_paused(current):
                current.active = True
            if current.active:
                current.status_message = turn_message(current.current_player)
            return current

        try:
            written = read_modify_write(self.store, game_id, claim)
        except RecordNotFoundError:
            return None
        except WriteConflictError:
            written = None

        if written is not None:
            logger.info("%s joined game %s as O", self.user_id, game_id)
            return Role.O

        fresh = self.store.get(game_id)
        if fresh is None or fresh.abandoned:
            return None
        role = fresh.role_of(self.user_id)
        if not role.is_player:
            logger.warning("%s lost the race for the O seat in %s", self.user_id, game_id)
            self.surface.notify(SEAT_TAKEN_NOTICE)
        return role

    def _release_seat(self, game_id: str) -> None:
        def release(current: GameRecord) -> Optional[GameRecord]:
            mark = current.role_of(self.user_id)
            if mark is Role.X and current.player_o_id is None:
                current.abandoned = True
                current.active = False
                current.status_message = "Game closed"
                return current
            if mark is Role.X:
                current.player_x_id = current.player_o_id or ""
                current.player_x_name = current.player_o_name or ""
            elif mark is not Role.O:
                return None
            current.player_o_id = None
            current.player_o_name = None
            return start_round(current, active=False)

        written = read_modify_write(self.store, game_id, release)
        if written is not None and written.abandoned:
            # Tombstone first so a joiner racing us cannot claim the seat.
            self.store.delete(game_id)
            if self.chat is not None:
                self.chat.drop(game_id)
            logger.info("Game %s retired", game_id)

    def _enter(self, game_id: str, role: Role) -> None:
        self._close_channels()
        with self._lock:
            self.game_id = game_id
            self.last_game_id = game_id
            self.role = role
            self.record = None
            self.session = GameSession(mode=Mode.NETWORKED)
            self.state = ParticipantState.ROLE_ASSIGNED

        subscription = self.store.subscribe(
            game_id, self._on_snapshot, self._on_subscription_error
        )
        chat_unsubscribe = None
        if self.chat is not None:
            chat_unsubscribe = self.chat.subscribe(game_id, self._on_chat)

        with self._lock:
            still_here = self.game_id == game_id
            if still_here:
                self._subscription = subscription
                self._chat_unsubscribe = chat_unsubscribe
        if not still_here:
            subscription.close()
            if chat_unsubscribe is not None:
                chat_unsubscribe()

    def _on_snapshot(self, record: Optional[GameRecord]) -> None:
        with self._lock:
            if self.game_id is None:
                return
            if record is None or record.abandoned:
                vanished = True
            else:
                vanished = False
                self._apply_snapshot(record)
        if vanished:
            self._game_ended()
            return
        self.render()

    def _apply_snapshot(self, record: GameRecord) -> None:
        self.record = record
        # Seats can move under us: O is promoted to X when X leaves.
        self.role = record.role_of(self.user_id)
        if record.active:
            self.state = ParticipantState.ACTIVE
        elif record.winner is not None:
            self.state = ParticipantState.FINISHED
        else:
            self.state = ParticipantState.ROLE_ASSIGNED

        session = self.session or GameSession(mode=Mode.NETWORKED)
        session.board = list(record.board)
        session.current_player = record.current_player
        session.active = record.active
        session.score = record.score.copy()
        session.names = {
            X: record.name_of(X) or "",
            O: record.name_of(O) or "Waiting...",
        }
        session.outcome = Outcome(record.winner) if record.winner else None
        session.winning_line = (
            tuple(record.winning_cells) if record.winning_cells else None  # type: ignore[assignment]
        )
        self.session = session

    def _on_subscription_error(self, exc: Exception) -> None:
        logger.warning("Subscription for %s lost: %s", self.game_id, exc)
        with self._lock:
            if self.game_id is None:
                return
        self.surface.notify(DISCONNECTED_NOTICE)
        self._teardown(ParticipantState.UNASSIGNED)

    def _on_chat(self, messages: List[ChatMessage]) -> None:
        with self._lock:
            self.chat_messages = list(messages)

    def _game_ended(self) -> None:
        self.surface.notify(GAME_ENDED_NOTICE)
        self._teardown(ParticipantState.UNASSIGNED)

    def _teardown(self, state: ParticipantState) -> None:
        self._close_channels()
        with self._lock:
            self.game_id = None
            self.role = None
            self.record = None
            self.session = None
            self.chat_messages = []
            self.state = state
        if self.on_return_to_lobby is not None:
            self.on_return_to_lobby()

    def _close_channels(self) -> None:
        with self._lock:
            subscription, self._subscription = self._subscription, None
            chat_unsubscribe, self._chat_unsubscribe = self._chat_unsubscribe, None
        if subscription is not None:
            subscription.close()
        if chat_unsubscribe is not None:
            chat_unsubscribe()

    def _player_name(self, mark: str) -> str:
        return self.display_name or f"Player {mark}"

    def _chat_name(self, role: Optional[Role]) -> str:
        short_id = self.user_id[:4]
        if role is None or not role.is_player:
            label = "Spectator"
        else:
            label = f"Player {role.value}"
        if self.display_name:
            return f"{self.display_name} ({label})"
        return f"{label} ({short_id})"
