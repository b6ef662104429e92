"""
Transport-safe representation of a networked game.

The store persists ``GameRecord`` values; the synchronizer, the lobby and the
web layer all read and write this one shape.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .game import O, X, Board, Player, Score, new_board

UserId = str


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    X = "X"
    O = "O"
    SPECTATOR = "spectator"

    @property
    def is_player(self) -> bool:
        return self is not Role.SPECTATOR


def waiting_message() -> str:
    return "Waiting for opponent..."


def turn_message(player: Player) -> str:
    return f"Player {player}'s Turn"


@dataclass
class GameRecord:
    """Authoritative state of one networked game."""

    id: str
    player_x_id: UserId
    player_x_name: str
    game_name: str = ""
    is_private: bool = False
    board: Board = field(default_factory=new_board)
    current_player: Player = X
    active: bool = True
    player_o_id: Optional[UserId] = None
    player_o_name: Optional[str] = None
    score: Score = field(default_factory=Score)
    winner: Optional[str] = None  # "X", "O", "draw"
    winning_cells: Optional[List[int]] = None
    status_message: str = field(default_factory=waiting_message)
    rematch: Dict[Player, bool] = field(default_factory=lambda: {X: False, O: False})
    created_at: datetime = field(default_factory=utc_now)
    abandoned: bool = False
    version: int = 0

    def role_of(self, user_id: UserId) -> Role:
        if self.player_x_id == user_id:
            return Role.X
        if self.player_o_id is not None and self.player_o_id == user_id:
            return Role.O
        return Role.SPECTATOR

    def is_seated(self, user_id: UserId) -> bool:
        return self.role_of(user_id).is_player

    @property
    def has_open_seat(self) -> bool:
        return self.player_o_id is None

    def name_of(self, player: Player) -> Optional[str]:
        return self.player_x_name if player == X else self.player_o_name

    def copy(self) -> "GameRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "board": list(self.board),
            "currentPlayer": self.current_player,
            "active": self.active,
            "playerXId": self.player_x_id,
            "playerXName": self.player_x_name,
            "playerOId": self.player_o_id,
            "playerOName": self.player_o_name,
            "gameName": self.game_name,
            "isPrivate": self.is_private,
            "score": self.score.to_dict(),
            "winner": self.winner,
            "winningCells": (
                list(self.winning_cells) if self.winning_cells is not None else None
            ),
            "statusMessage": self.status_message,
            "rematch": dict(self.rematch),
            "createdAt": self.created_at.isoformat(),
            "abandoned": self.abandoned,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameRecord":
        created_at = data.get("createdAt")
        return cls(
            id=data["id"],
            board=list(data.get("board") or new_board()),
            current_player=data.get("currentPlayer", X),
            active=bool(data.get("active", True)),
            player_x_id=data["playerXId"],
            player_x_name=data.get("playerXName", ""),
            player_o_id=data.get("playerOId"),
            player_o_name=data.get("playerOName"),
            game_name=data.get("gameName", ""),
            is_private=bool(data.get("isPrivate", False)),
            score=Score.from_dict(data.get("score")),
            winner=data.get("winner"),
            winning_cells=data.get("winningCells"),
            status_message=data.get("statusMessage", waiting_message()),
            rematch={X: False, O: False, **(data.get("rematch") or {})},
            created_at=(
                datetime.fromisoformat(created_at) if created_at else utc_now()
            ),
            abandoned=bool(data.get("abandoned", False)),
            version=int(data.get("version", 0)),
        )
