"""FastAPI-powered HTTP/WebSocket surface for local and networked games."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .ai import Difficulty
from .chat import ChatLog
from .config import Settings
from .game import O, X
from .lobby import PUBLIC_GAMES, GameSummary, LobbyWatcher, open_games
from .records import GameRecord
from .session import Mode, TurnController, start_local_game
from .sql_store import SQLRecordStore, create_session_factory
from .store import InMemoryRecordStore, RecordStore
from .surface import RecordingSurface
from .sync import GameSynchronizer

logger = logging.getLogger(__name__)

SETTINGS = Settings.from_env()
AI_THINK_DELAY: Tuple[float, float] = SETTINGS.ai_delay


def _build_store(settings: Settings) -> RecordStore:
    if settings.uses_memory_store:
        return InMemoryRecordStore()
    return SQLRecordStore(create_session_factory(settings.database_url))


@dataclass
class LocalGame:
    """A local session plus the surface it renders to."""

    controller: TurnController
    surface: RecordingSurface = field(repr=False)


@dataclass
class Participant:
    """One caller's networked connection."""

    sync: GameSynchronizer
    surface: RecordingSurface = field(repr=False)


STORE: RecordStore = _build_store(SETTINGS)
CHAT = ChatLog()
SESSIONS: Dict[str, LocalGame] = {}
PARTICIPANTS: Dict[str, Participant] = {}

app = FastAPI(title="XOArena", description="Tic-tac-toe: hot-seat, vs AI and online")


# ---- request payloads ----


class NewGameRequest(BaseModel):
    """Request payload for starting a local game."""

    model_config = ConfigDict(populate_by_name=True)

    mode: Mode = Mode.LOCAL_VS_ENGINE
    difficulty: Difficulty = Difficulty.MEDIUM
    player_x: str = Field(default="", alias="playerX", max_length=40)
    player_o: str = Field(default="", alias="playerO", max_length=40)

    @field_validator("mode")
    @classmethod
    def ensure_local_mode(cls, value: Mode) -> Mode:
        if value is Mode.NETWORKED:
            raise ValueError("Networked games are created through /api/online.")
        return value


class MoveRequest(BaseModel):
    """Request payload for submitting a move."""

    model_config = ConfigDict(populate_by_name=True)

    cell_index: int = Field(alias="cellIndex", ge=0, le=8)


class ResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    preserve_score: bool = Field(default=True, alias="preserveScore")


class CreateOnlineRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    game_name: str = Field(default="", alias="gameName", max_length=60)
    is_private: bool = Field(default=False, alias="isPrivate")
    display_name: str = Field(default="", alias="displayName", max_length=40)


class JoinOnlineRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(default="", alias="displayName", max_length=40)


class ChatRequest(BaseModel):
    text: str = Field(min_length=1, max_length=500)


# ---- local games ----


def _create_session(request: NewGameRequest) -> Tuple[str, LocalGame]:
    """Create a new local session and register it for later access."""

    names = {}
    if request.player_x.strip():
        names[X] = request.player_x.strip()
    if request.player_o.strip():
        names[O] = request.player_o.strip()
    surface = RecordingSurface()
    controller = start_local_game(
        request.mode,
        names=names,
        difficulty=request.difficulty,
        surface=surface,
        ai_delay=AI_THINK_DELAY,
    )
    game = LocalGame(controller=controller, surface=surface)
    game_id = uuid.uuid4().hex
    SESSIONS[game_id] = game
    return game_id, game


def _get_session(game_id: str) -> LocalGame:
    try:
        return SESSIONS[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _serialize_session(game_id: str, game: LocalGame) -> Dict[str, object]:
    controller = game.controller
    session = controller.session
    with session.lock:
        return {
            "id": game_id,
            "mode": session.mode.value,
            "difficulty": session.difficulty.value,
            "names": dict(session.names),
            "board": list(session.board),
            "currentPlayer": session.current_player,
            "active": session.active,
            "state": session.state.value,
            "outcome": session.outcome.value if session.outcome else None,
            "winningLine": list(session.winning_line or ()),
            "score": session.score.to_dict(),
            "status": session.status_text(),
            "legalMoves": controller.legal_moves(),
            "aiPending": session.engine_pending,
        }


@app.post("/api/game")
def create_game(request: NewGameRequest) -> Dict[str, object]:
    game_id, game = _create_session(request)
    return _serialize_session(game_id, game)


@app.get("/api/game/{game_id}")
def get_game(game_id: str) -> Dict[str, object]:
    return _serialize_session(game_id, _get_session(game_id))


@app.post("/api/game/{game_id}/move")
def make_move(game_id: str, request: MoveRequest) -> Dict[str, object]:
    game = _get_session(game_id)
    if not game.controller.apply_move(request.cell_index):
        raise HTTPException(status_code=400, detail="Move is not allowed on this turn")
    return _serialize_session(game_id, game)


@app.post("/api/game/{game_id}/reset")
def reset_game(game_id: str, request: ResetRequest) -> Dict[str, object]:
    game = _get_session(game_id)
    game.controller.reset(preserve_score=request.preserve_score)
    return _serialize_session(game_id, game)


@app.delete("/api/game/{game_id}")
def close_game(game_id: str) -> Dict[str, str]:
    game = SESSIONS.pop(game_id, None)
    if game is None:
        raise HTTPException(status_code=404, detail="Game not found")
    game.controller.close()
    return {"id": game_id, "status": "closed"}


# ---- networked games ----


def _participant(user_id: str, display_name: str = "") -> Participant:
    participant = PARTICIPANTS.get(user_id)
    if participant is None:
        surface = RecordingSurface()
        sync = GameSynchronizer(
            STORE, user_id, display_name=display_name, surface=surface, chat=CHAT
        )
        participant = Participant(sync=sync, surface=surface)
        PARTICIPANTS[user_id] = participant
    elif display_name:
        participant.sync.display_name = display_name
    return participant


def _seated(user_id: str, game_id: str) -> Participant:
    participant = PARTICIPANTS.get(user_id)
    if participant is None or participant.sync.game_id != game_id:
        raise HTTPException(status_code=404, detail="You are not in this game")
    return participant


def _serialize_participant(participant: Participant) -> Dict[str, object]:
    sync = participant.sync
    record = sync.record
    return {
        "gameId": sync.game_id,
        "role": sync.role.value if sync.role else None,
        "state": sync.state.value,
        "record": record.to_dict() if record else None,
        "interactive": sync.interactive_cells(),
        "highlighted": list(participant.surface.highlighted),
        "notice": participant.surface.last_notice,
        "chat": [message.to_dict() for message in sync.chat_messages],
    }


def _fetch_record(game_id: str) -> GameRecord:
    record = STORE.get(game_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Game not found")
    return record


@app.post("/api/online")
def create_online_game(
    request: CreateOnlineRequest, x_user_id: str = Header(...)
) -> Dict[str, object]:
    participant = _participant(x_user_id, request.display_name)
    participant.sync.leave()
    participant.sync.create_game(request.game_name, request.is_private)
    return _serialize_participant(participant)


@app.post("/api/online/{game_id}/join")
def join_online_game(
    game_id: str, request: JoinOnlineRequest, x_user_id: str = Header(...)
) -> Dict[str, object]:
    participant = _participant(x_user_id, request.display_name)
    if participant.sync.game_id not in (None, game_id):
        participant.sync.leave()
    role = participant.sync.join_game(game_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Game not found")
    return _serialize_participant(participant)


@app.get("/api/online/{game_id}")
def get_online_game(game_id: str, x_user_id: str = Header(...)) -> Dict[str, object]:
    participant = PARTICIPANTS.get(x_user_id)
    if participant is not None and participant.sync.game_id == game_id:
        return _serialize_participant(participant)
    return {"gameId": game_id, "role": None, "record": _fetch_record(game_id).to_dict()}


@app.post("/api/online/{game_id}/move")
def make_online_move(
    game_id: str, request: MoveRequest, x_user_id: str = Header(...)
) -> Dict[str, object]:
    participant = _seated(x_user_id, game_id)
    if not participant.sync.submit_move(request.cell_index):
        if participant.sync.game_id is None:
            raise HTTPException(status_code=404, detail="Game not found")
        raise HTTPException(status_code=409, detail="Move rejected; refresh the game state")
    return _serialize_participant(participant)


@app.post("/api/online/{game_id}/rematch")
def request_rematch(game_id: str, x_user_id: str = Header(...)) -> Dict[str, object]:
    participant = _seated(x_user_id, game_id)
    if not participant.sync.request_rematch():
        raise HTTPException(status_code=409, detail="Rematch not available")
    return _serialize_participant(participant)


@app.post("/api/online/{game_id}/leave")
def leave_online_game(game_id: str, x_user_id: str = Header(...)) -> Dict[str, object]:
    participant = _seated(x_user_id, game_id)
    participant.sync.leave()
    return _serialize_participant(participant)


@app.post("/api/online/{game_id}/chat")
def send_chat(
    game_id: str, request: ChatRequest, x_user_id: str = Header(...)
) -> Dict[str, object]:
    participant = _seated(x_user_id, game_id)
    if not participant.sync.send_chat(request.text):
        raise HTTPException(status_code=400, detail="Message not sent")
    return _serialize_participant(participant)


@app.get("/api/lobby")
def list_open_games(x_user_id: str = Header(...)) -> List[Dict[str, object]]:
    return [summary.to_dict() for summary in open_games(STORE.query(PUBLIC_GAMES), x_user_id)]


# ---- live updates ----

Payload = Dict[str, object]
TERMINAL_MESSAGES = ("ended", "disconnected")


async def _wait_for_client_close(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


async def _forward(websocket: WebSocket, updates: "asyncio.Queue[Payload]") -> None:
    """Send queued payloads until a terminal message goes out or the client leaves."""
    client_closed = asyncio.ensure_future(_wait_for_client_close(websocket))
    try:
        while True:
            next_update = asyncio.ensure_future(updates.get())
            await asyncio.wait(
                {next_update, client_closed}, return_when=asyncio.FIRST_COMPLETED
            )
            if client_closed.done():
                next_update.cancel()
                return
            payload = next_update.result()
            await websocket.send_json(payload)
            if payload["type"] in TERMINAL_MESSAGES:
                await websocket.close()
                return
    finally:
        client_closed.cancel()


@app.websocket("/ws/online/{game_id}")
async def game_updates(websocket: WebSocket, game_id: str) -> None:
    await websocket.accept()
    loop = asyncio.get_running_loop()
    updates: "asyncio.Queue[Payload]" = asyncio.Queue()

    def on_change(record: Optional[GameRecord]) -> None:
        if record is None:
            payload: Payload = {"type": "ended"}
        else:
            payload = {"type": "snapshot", "record": record.to_dict()}
        loop.call_soon_threadsafe(updates.put_nowait, payload)

    def on_error(exc: Exception) -> None:
        loop.call_soon_threadsafe(
            updates.put_nowait, {"type": "disconnected", "message": str(exc)}
        )

    subscription = await run_in_threadpool(STORE.subscribe, game_id, on_change, on_error)
    try:
        await _forward(websocket, updates)
    finally:
        subscription.close()


@app.websocket("/ws/lobby")
async def lobby_updates(websocket: WebSocket, user: str = "") -> None:
    await websocket.accept()
    loop = asyncio.get_running_loop()
    updates: "asyncio.Queue[Payload]" = asyncio.Queue()

    def on_games(games: List[GameSummary]) -> None:
        payload = {"type": "lobby", "games": [summary.to_dict() for summary in games]}
        loop.call_soon_threadsafe(updates.put_nowait, payload)

    def on_error(exc: Exception) -> None:
        loop.call_soon_threadsafe(
            updates.put_nowait, {"type": "disconnected", "message": str(exc)}
        )

    watcher = LobbyWatcher(STORE, user)
    await run_in_threadpool(watcher.listen, on_games, on_error)
    try:
        await _forward(websocket, updates)
    finally:
        watcher.stop()
