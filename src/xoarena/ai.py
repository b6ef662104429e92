"""Exhaustive minimax opponent for 3x3 tic-tac-toe with difficulty levels."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .game import EMPTY, Player, is_full, is_winning_for, legal_moves, opponent

logger = logging.getLogger(__name__)

WIN_SCORE = 10
LOSS_SCORE = -10
DRAW_SCORE = 0

# Opening variety: center plus the four corners.
OPENING_POOL: Tuple[int, ...] = (4, 0, 2, 6, 8)
MEDIUM_OPTIMAL_RATE = 0.7


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


def minimax(
    board: List[str], mover: Player, ai_player: Player
) -> Tuple[int, Optional[int]]:
    """Full game-tree search from ``ai_player``'s point of view.

    ``board`` is mutated during the search but restored before returning.
    Returns ``(score, move)``; ``move`` is None at terminal positions.
    """
    human = opponent(ai_player)

    # Terminal/leaf
    if is_winning_for(board, human):
        return LOSS_SCORE, None
    if is_winning_for(board, ai_player):
        return WIN_SCORE, None
    moves = legal_moves(board)
    if not moves:
        return DRAW_SCORE, None

    best_move: Optional[int] = None
    if mover == ai_player:
        best = float("-inf")
        for move in moves:
            board[move] = mover
            score, _ = minimax(board, human, ai_player)
            board[move] = EMPTY
            if score > best:
                best, best_move = score, move
    else:
        best = float("inf")
        for move in moves:
            board[move] = mover
            score, _ = minimax(board, ai_player, ai_player)
            board[move] = EMPTY
            if score < best:
                best, best_move = score, move
    return int(best), best_move


@dataclass
class MinimaxAI:
    """Engine player bound to a mark and a difficulty.

    ``choose(board)`` returns a cell index, or None when the board is full.
    """

    player: Player
    difficulty: Difficulty = Difficulty.HARD
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def choose(self, board: Sequence[str]) -> Optional[int]:
        moves = legal_moves(board)
        if not moves:
            logger.warning(
                "Engine asked to move on a full board (player=%s)", self.player
            )
            return None

        if len(moves) == len(board):
            return self.rng.choice(OPENING_POOL)

        difficulty = Difficulty(self.difficulty)
        if difficulty is Difficulty.EASY:
            return self.rng.choice(moves)
        if difficulty is Difficulty.MEDIUM:
            if self.rng.random() < MEDIUM_OPTIMAL_RATE:
                return self.best_move(board)
            return self.rng.choice(moves)
        return self.best_move(board)

    def best_move(self, board: Sequence[str]) -> Optional[int]:
        if is_full(board):
            return None
        _, move = minimax(list(board), self.player, self.player)
        return move


def choose_move(
    board: Sequence[str],
    player: Player,
    difficulty: Difficulty | str = Difficulty.HARD,
    rng: Optional[random.Random] = None,
) -> Optional[int]:
    ai = MinimaxAI(player=player, difficulty=Difficulty(difficulty))
    if rng is not None:
        ai.rng = rng
    return ai.choose(board)
