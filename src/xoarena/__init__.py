"""XOArena package exposing the board model, engine, game sessions, and the web application."""

from .ai import Difficulty, MinimaxAI
from .lobby import LobbyWatcher
from .session import GameSession, Mode, TurnController
from .sync import GameSynchronizer
from .ui import app

__all__ = [
    "Difficulty",
    "GameSession",
    "GameSynchronizer",
    "LobbyWatcher",
    "MinimaxAI",
    "Mode",
    "TurnController",
    "app",
]
