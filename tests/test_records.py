"""Tests for the networked game record."""

from datetime import datetime, timezone

from xoarena.game import O, X, Outcome
from xoarena.records import GameRecord, Role


def test_record_survives_dict_round_trip():
    record = GameRecord(
        id="g1",
        player_x_id="alice",
        player_x_name="Alice",
        player_o_id="bob",
        player_o_name="Bob",
        game_name="Lunch",
        is_private=True,
        board=[X, O, X, "", "", "", "", "", ""],
        current_player=O,
        winning_cells=[0, 4, 8],
        rematch={X: True, O: False},
        created_at=datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc),
        version=7,
    )
    record.score.record(Outcome.WIN_X)

    payload = record.to_dict()
    assert payload["playerOName"] == "Bob"
    assert payload["createdAt"] == "2024-06-01T12:30:00+00:00"
    assert GameRecord.from_dict(payload) == record


def test_from_dict_fills_defaults():
    record = GameRecord.from_dict({"id": "g2", "playerXId": "alice"})

    assert record.board == [""] * 9
    assert record.current_player == X
    assert record.rematch == {X: False, O: False}
    assert record.status_message == "Waiting for opponent..."
    assert record.created_at.tzinfo is not None


def test_roles_and_names():
    record = GameRecord(id="g3", player_x_id="alice", player_x_name="Alice")

    assert record.role_of("alice") is Role.X
    assert record.role_of("bob") is Role.SPECTATOR
    assert record.has_open_seat
    assert record.name_of(X) == "Alice"
    assert record.name_of(O) is None
