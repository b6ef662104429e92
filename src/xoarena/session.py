"""Local game sessions: hot-seat play and play against the minimax engine."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .ai import Difficulty, MinimaxAI
from .game import (
    EMPTY,
    BOARD_SIZE,
    O,
    X,
    Board,
    Outcome,
    Player,
    Score,
    evaluate,
    new_board,
    opponent,
    winning_line,
)
from .scheduling import Handle, Scheduler, TimerScheduler
from .surface import NullSurface, RenderSurface

logger = logging.getLogger(__name__)

AI_THINK_DELAY: Tuple[float, float] = (0.5, 0.7)


class Mode(str, Enum):
    LOCAL_DUEL = "localDuel"
    LOCAL_VS_ENGINE = "vsEngine"
    NETWORKED = "networked"


class TurnState(str, Enum):
    AWAITING_X = "awaitingX"
    AWAITING_O = "awaitingO"
    FINISHED = "finished"


def default_names(mode: Mode) -> Dict[Player, str]:
    if mode is Mode.LOCAL_VS_ENGINE:
        return {X: "Player X", O: "AI"}
    return {X: "Player X", O: "Player O"}


@dataclass
class GameSession:
    """In-memory state of the game currently shown to the user."""

    mode: Mode = Mode.LOCAL_DUEL
    names: Dict[Player, str] = field(default_factory=dict)
    difficulty: Difficulty = Difficulty.MEDIUM
    board: Board = field(default_factory=new_board)
    current_player: Player = X
    active: bool = True
    score: Score = field(default_factory=Score)
    outcome: Optional[Outcome] = None
    winning_line: Optional[Tuple[int, int, int]] = None
    engine_pending: bool = False
    # Bumped on reset/close so stale deferred callbacks can tell they are stale.
    generation: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def __post_init__(self) -> None:
        self.mode = Mode(self.mode)
        self.difficulty = Difficulty(self.difficulty)
        self.names = {**default_names(self.mode), **self.names}

    @property
    def state(self) -> TurnState:
        if self.outcome is not None or not self.active:
            return TurnState.FINISHED
        return TurnState.AWAITING_X if self.current_player == X else TurnState.AWAITING_O

    def status_text(self) -> str:
        if self.outcome is Outcome.DRAW:
            return "It's a Draw!"
        if self.outcome is not None:
            return f"{self.label(self.outcome.value)} Wins!"
        return f"{self.label(self.current_player)}'s turn"

    def label(self, player: Player) -> str:
        """Display name, with the mark appended unless the name already is ``Player <mark>``."""
        name = self.names[player]
        if name == f"Player {player}":
            return name
        return f"{name} ({player})"


class TurnController:
    """Owns one ``GameSession`` and sequences its turns.

    Invalid moves (occupied cell, finished game, engine's turn) are ignored
    and reported only through the boolean return value.
    """

    def __init__(
        self,
        session: GameSession,
        surface: Optional[RenderSurface] = None,
        scheduler: Optional[Scheduler] = None,
        ai_delay: Tuple[float, float] = AI_THINK_DELAY,
        rng: Optional[random.Random] = None,
    ) -> None:
        if session.mode is Mode.NETWORKED:
            raise ValueError("Networked games are driven by GameSynchronizer")
        self.session = session
        self.surface: RenderSurface = surface or NullSurface()
        self.scheduler: Scheduler = scheduler or TimerScheduler()
        self.ai_delay = ai_delay
        self.rng = rng or random.Random()
        self.ai: Optional[MinimaxAI] = None
        if session.mode is Mode.LOCAL_VS_ENGINE:
            self.ai = MinimaxAI(player=O, difficulty=session.difficulty, rng=self.rng)
        self._pending: Optional[Handle] = None

    # ---- public API ----

    def apply_move(self, index: int) -> bool:
        """Play ``index`` for the active mark on behalf of a human."""
        session = self.session
        with session.lock:
            if self._engine_to_move():
                return False
            accepted = self._place(index)
            if accepted:
                self._after_move()
            return accepted

    def reset(self, preserve_score: bool = True) -> None:
        session = self.session
        with session.lock:
            self._cancel_pending()
            session.generation += 1
            session.board = new_board()
            session.current_player = X
            session.active = True
            session.outcome = None
            session.winning_line = None
            if not preserve_score:
                session.score = Score()
            logger.debug(
                "Session reset (mode=%s, preserve_score=%s)",
                session.mode.value,
                preserve_score,
            )
            self._after_move()

    def close(self) -> None:
        """Stop the session; any deferred engine move is dropped."""
        session = self.session
        with session.lock:
            self._cancel_pending()
            session.generation += 1
            session.active = False

    def legal_moves(self) -> List[int]:
        session = self.session
        if not session.active or self._engine_to_move():
            return []
        return [i for i, cell in enumerate(session.board) if cell == EMPTY]

    def interactive_cells(self) -> List[bool]:
        legal = set(self.legal_moves())
        return [i in legal for i in range(BOARD_SIZE)]

    def render(self) -> None:
        session = self.session
        surface = self.surface
        surface.render_board(session.board)
        surface.render_status(session.status_text())
        surface.render_score(session.score)
        surface.highlight_cells(list(session.winning_line or ()))
        surface.set_interactive(self.interactive_cells())

    # ---- turn sequencing ----

    def _engine_to_move(self) -> bool:
        session = self.session
        return (
            self.ai is not None
            and session.active
            and session.current_player == self.ai.player
        )

    def _place(self, index: int) -> bool:
        session = self.session
        if not session.active:
            return False
        if not 0 <= index < BOARD_SIZE or session.board[index] != EMPTY:
            return False

        mover = session.current_player
        session.board[index] = mover
        outcome = evaluate(session.board, mover)
        if outcome is None:
            session.current_player = opponent(mover)
            logger.debug("%s played %d", mover, index)
            return True

        session.outcome = outcome
        session.active = False
        session.score.record(outcome)
        if outcome is not Outcome.DRAW:
            session.winning_line = winning_line(session.board, mover)
        logger.info("Game finished: %s (score=%s)", outcome.value, session.score)
        return True

    def _after_move(self) -> None:
        if self._engine_to_move():
            self._schedule_engine_turn()
        self.render()

    def _schedule_engine_turn(self) -> None:
        session = self.session
        session.engine_pending = True
        generation = session.generation
        delay = self.rng.uniform(*self.ai_delay)
        self._pending = self.scheduler.call_later(
            delay, lambda: self._run_engine_turn(generation)
        )

    def _run_engine_turn(self, generation: int) -> None:
        session = self.session
        with session.lock:
            if generation != session.generation:
                return
            session.engine_pending = False
            self._pending = None
            if not self._engine_to_move():
                return
            assert self.ai is not None
            move = self.ai.choose(session.board)
            if move is None:
                return
            self._place(move)
            self._after_move()

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self.session.engine_pending = False


def start_local_game(
    mode: Mode,
    names: Optional[Dict[Player, str]] = None,
    difficulty: Difficulty = Difficulty.MEDIUM,
    surface: Optional[RenderSurface] = None,
    scheduler: Optional[Scheduler] = None,
    ai_delay: Tuple[float, float] = AI_THINK_DELAY,
    rng: Optional[random.Random] = None,
) -> TurnController:
    """Enter a local mode with a fresh session (and a fresh score tally)."""
    session = GameSession(mode=mode, names=dict(names or {}), difficulty=difficulty)
    controller = TurnController(
        session, surface=surface, scheduler=scheduler, ai_delay=ai_delay, rng=rng
    )
    controller.render()
    return controller
