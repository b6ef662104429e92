"""Core rules for classic 3x3 tic-tac-toe: board helpers, outcomes and score tally."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

Player = str  # "X" or "O"

X: Player = "X"
O: Player = "O"
EMPTY = ""

BOARD_SIZE = 9

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)

Board = List[str]


class Outcome(str, Enum):
    WIN_X = "X"
    WIN_O = "O"
    DRAW = "draw"

    @classmethod
    def win_for(cls, player: Player) -> "Outcome":
        return cls.WIN_X if player == X else cls.WIN_O


def new_board() -> Board:
    return [EMPTY] * BOARD_SIZE


def opponent(player: Player) -> Player:
    return O if player == X else X


def is_winning_for(board: Sequence[str], player: Player) -> bool:
    """True if any of the eight lines is fully occupied by ``player``."""
    return winning_line(board, player) is not None


def winning_line(
    board: Sequence[str], player: Player
) -> Optional[Tuple[int, int, int]]:
    for a, b, c in WINNING_LINES:
        if board[a] == player and board[b] == player and board[c] == player:
            return (a, b, c)
    return None


def legal_moves(board: Sequence[str]) -> List[int]:
    """Empty cell indices in ascending order; empty list means the board is full."""
    return [i for i, cell in enumerate(board) if cell == EMPTY]


def is_full(board: Sequence[str]) -> bool:
    return all(cell != EMPTY for cell in board)


def evaluate(board: Sequence[str], mover: Player) -> Optional[Outcome]:
    """Outcome of the position right after ``mover`` placed a mark, or None if play continues."""
    if is_winning_for(board, mover):
        return Outcome.win_for(mover)
    if is_full(board):
        return Outcome.DRAW
    return None


def place(board: Sequence[str], index: int, player: Player) -> Board:
    """Return a copy of ``board`` with ``player`` on ``index``."""
    if not 0 <= index < BOARD_SIZE:
        raise ValueError(f"Cell index out of range: {index}")
    if board[index] != EMPTY:
        raise ValueError("Cell already occupied")
    new = list(board)
    new[index] = player
    return new


@dataclass
class Score:
    """Cumulative tally kept across rematches."""

    x_wins: int = 0
    o_wins: int = 0
    draws: int = 0

    def record(self, outcome: Outcome) -> None:
        if outcome is Outcome.WIN_X:
            self.x_wins += 1
        elif outcome is Outcome.WIN_O:
            self.o_wins += 1
        else:
            self.draws += 1

    def copy(self) -> "Score":
        return Score(self.x_wins, self.o_wins, self.draws)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, int]]) -> "Score":
        if not data:
            return cls()
        return cls(
            x_wins=int(data.get("x_wins", 0)),
            o_wins=int(data.get("o_wins", 0)),
            draws=int(data.get("draws", 0)),
        )
