"""Tests for the FastAPI XOArena interface."""

from __future__ import annotations

import time
import uuid

from fastapi.testclient import TestClient

from xoarena import ui
from xoarena.ui import app


client = TestClient(app)
ui.AI_THINK_DELAY = (0.0, 0.0)


def user() -> dict:
    return {"X-User-Id": uuid.uuid4().hex}


def wait_for(game_id: str, predicate, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        state = client.get(f"/api/game/{game_id}").json()
        if predicate(state) or time.monotonic() > deadline:
            return state
        time.sleep(0.01)


def test_create_game_and_engine_reply():
    response = client.post("/api/game", json={"mode": "vsEngine", "difficulty": "hard"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["currentPlayer"] == "X"
    assert payload["names"] == {"X": "Player X", "O": "AI"}
    assert payload["legalMoves"] == list(range(9))

    game_id = payload["id"]
    move_response = client.post(f"/api/game/{game_id}/move", json={"cellIndex": 4})
    assert move_response.status_code == 200
    assert move_response.json()["board"][4] == "X"

    final_state = wait_for(game_id, lambda state: state["currentPlayer"] == "X")
    assert final_state["board"].count("O") == 1
    assert final_state["aiPending"] is False
    assert final_state["status"] == "Player X's turn"


def test_hot_seat_win_and_reset():
    game_id = client.post(
        "/api/game", json={"mode": "localDuel", "playerX": "Ann", "playerO": "Ben"}
    ).json()["id"]

    for index in (0, 3, 1, 4, 2):
        state = client.post(f"/api/game/{game_id}/move", json={"cellIndex": index}).json()

    assert state["outcome"] == "X"
    assert state["winningLine"] == [0, 1, 2]
    assert state["status"] == "Ann (X) Wins!"
    assert state["score"] == {"x_wins": 1, "o_wins": 0, "draws": 0}
    assert state["legalMoves"] == []

    reset = client.post(f"/api/game/{game_id}/reset", json={"preserveScore": True}).json()
    assert reset["board"] == [""] * 9
    assert reset["score"]["x_wins"] == 1
    assert reset["state"] == "awaitingX"


def test_invalid_move_rejected():
    response = client.post("/api/game", json={"mode": "localDuel"})
    assert response.status_code == 200
    game_id = response.json()["id"]

    first_move = client.post(f"/api/game/{game_id}/move", json={"cellIndex": 0})
    assert first_move.status_code == 200

    # Attempting to play the same cell should fail.
    duplicate_move = client.post(f"/api/game/{game_id}/move", json={"cellIndex": 0})
    assert duplicate_move.status_code == 400
    assert duplicate_move.json()["detail"]

    out_of_range = client.post(f"/api/game/{game_id}/move", json={"cellIndex": 9})
    assert out_of_range.status_code == 422


def test_rejects_networked_mode_for_local_games():
    response = client.post("/api/game", json={"mode": "networked"})
    assert response.status_code == 422


def test_unknown_and_closed_games():
    assert client.get("/api/game/does-not-exist").status_code == 404

    game_id = client.post("/api/game", json={"mode": "localDuel"}).json()["id"]
    assert client.delete(f"/api/game/{game_id}").json() == {"id": game_id, "status": "closed"}
    assert client.get(f"/api/game/{game_id}").status_code == 404
    assert client.delete(f"/api/game/{game_id}").status_code == 404


def test_online_game_flow():
    host, guest = user(), user()
    created = client.post(
        "/api/online",
        json={"gameName": "Quick one", "displayName": "Host"},
        headers=host,
    )
    assert created.status_code == 200
    payload = created.json()
    game_id = payload["gameId"]
    assert payload["role"] == "X"
    assert payload["record"]["statusMessage"] == "Waiting for opponent..."

    lobby = client.get("/api/lobby", headers=guest).json()
    assert any(game["gameId"] == game_id and game["hasOpenSeat"] for game in lobby)
    assert all(game["gameId"] != game_id for game in client.get("/api/lobby", headers=host).json())

    joined = client.post(f"/api/online/{game_id}/join", json={"displayName": "Guest"}, headers=guest)
    assert joined.json()["role"] == "O"
    assert joined.json()["record"]["playerOName"] == "Guest"

    assert client.post(f"/api/online/{game_id}/move", json={"cellIndex": 0}, headers=guest).status_code == 409
    for headers, index in ((host, 0), (guest, 3), (host, 1), (guest, 4), (host, 2)):
        response = client.post(f"/api/online/{game_id}/move", json={"cellIndex": index}, headers=headers)
        assert response.status_code == 200

    state = client.get(f"/api/online/{game_id}", headers=guest).json()
    assert state["record"]["winner"] == "X"
    assert state["highlighted"] == [0, 1, 2]

    assert client.post(f"/api/online/{game_id}/rematch", headers=host).status_code == 200
    rematch = client.post(f"/api/online/{game_id}/rematch", headers=guest).json()
    assert rematch["record"]["active"] is True
    assert rematch["record"]["score"]["x_wins"] == 1

    chat = client.post(f"/api/online/{game_id}/chat", json={"text": "gg"}, headers=guest).json()
    assert chat["chat"][-1]["text"] == "gg"
    assert chat["chat"][-1]["sender"] == "Guest (Player O)"

    left = client.post(f"/api/online/{game_id}/leave", headers=host).json()
    assert left["gameId"] is None
    state = client.get(f"/api/online/{game_id}", headers=guest).json()
    assert state["role"] == "X"
    assert state["record"]["playerOId"] is None


def test_online_errors():
    stranger = user()
    assert client.post("/api/online/missing/join", json={}, headers=stranger).status_code == 404
    assert client.get("/api/online/missing", headers=stranger).status_code == 404
    assert client.post("/api/online/missing/move", json={"cellIndex": 0}, headers=stranger).status_code == 404
    assert client.get("/api/lobby").status_code == 422


def test_game_updates_websocket_reports_end():
    host = user()
    game_id = client.post("/api/online", json={}, headers=host).json()["gameId"]

    with client.websocket_connect(f"/ws/online/{game_id}") as websocket:
        first = websocket.receive_json()
        assert first["type"] == "snapshot"
        assert first["record"]["id"] == game_id

        client.post(f"/api/online/{game_id}/leave", headers=host)

        tombstone = websocket.receive_json()
        assert tombstone["record"]["abandoned"] is True
        assert websocket.receive_json() == {"type": "ended"}


def test_lobby_websocket_pushes_other_players_games():
    me, other = user(), user()
    my_id = me["X-User-Id"]

    with client.websocket_connect(f"/ws/lobby?user={my_id}") as websocket:
        first = websocket.receive_json()
        assert first["type"] == "lobby"

        mine = client.post("/api/online", json={"gameName": "Mine"}, headers=me).json()["gameId"]
        after_mine = websocket.receive_json()
        assert all(game["gameId"] != mine for game in after_mine["games"])

        theirs = client.post("/api/online", json={"gameName": "Theirs"}, headers=other).json()["gameId"]
        after_theirs = websocket.receive_json()
        listed = [game["gameId"] for game in after_theirs["games"]]
        assert listed[0] == theirs
        assert mine not in listed


def test_lobby_websocket_reports_lost_subscription():
    with client.websocket_connect(f"/ws/lobby?user={uuid.uuid4().hex}") as websocket:
        assert websocket.receive_json()["type"] == "lobby"

        ui.STORE.hub.disconnect_queries("store went away")

        message = websocket.receive_json()
        assert message == {"type": "disconnected", "message": "store went away"}
