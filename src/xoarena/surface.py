"""Rendering contract consumed by the turn controller and the synchronizer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from .game import BOARD_SIZE, EMPTY, Score


class RenderSurface(Protocol):
    def render_board(self, board: Sequence[str]) -> None: ...

    def render_status(self, text: str) -> None: ...

    def render_score(self, score: Score) -> None: ...

    def highlight_cells(self, cells: Sequence[int]) -> None: ...

    def set_interactive(self, cells: Sequence[bool]) -> None: ...

    def notify(self, message: str) -> None: ...


@dataclass
class RecordingSurface:
    """Keeps the latest value pushed through each rendering call."""

    board: List[str] = field(default_factory=lambda: [EMPTY] * BOARD_SIZE)
    status: str = ""
    score: Score = field(default_factory=Score)
    highlighted: List[int] = field(default_factory=list)
    interactive: List[bool] = field(default_factory=lambda: [False] * BOARD_SIZE)
    notices: List[str] = field(default_factory=list)
    renders: int = 0

    def render_board(self, board: Sequence[str]) -> None:
        self.board = list(board)
        self.renders += 1

    def render_status(self, text: str) -> None:
        self.status = text

    def render_score(self, score: Score) -> None:
        self.score = score.copy()

    def highlight_cells(self, cells: Sequence[int]) -> None:
        self.highlighted = list(cells)

    def set_interactive(self, cells: Sequence[bool]) -> None:
        self.interactive = list(cells)

    def notify(self, message: str) -> None:
        self.notices.append(message)

    @property
    def last_notice(self) -> Optional[str]:
        return self.notices[-1] if self.notices else None

    def snapshot(self) -> Dict[str, object]:
        return {
            "board": list(self.board),
            "status": self.status,
            "score": self.score.to_dict(),
            "highlighted": list(self.highlighted),
            "interactive": list(self.interactive),
            "notices": list(self.notices),
        }


class NullSurface:
    """Discards every call; used when nobody is watching."""

    def render_board(self, board: Sequence[str]) -> None:
        pass

    def render_status(self, text: str) -> None:
        pass

    def render_score(self, score: Score) -> None:
        pass

    def highlight_cells(self, cells: Sequence[int]) -> None:
        pass

    def set_interactive(self, cells: Sequence[bool]) -> None:
        pass

    def notify(self, message: str) -> None:
        pass
