"""Record store contract, checked against the in-memory and SQL backends."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from xoarena.exceptions import RecordNotFoundError, SubscriptionClosedError, WriteConflictError
from xoarena.game import X
from xoarena.records import GameRecord
from xoarena.sql_store import SQLRecordStore
from xoarena.store import RecordQuery, read_modify_write

PUBLIC = RecordQuery(field="is_private", value=False, order_by="created_at")


def make_record(game_id="", owner="alice", **overrides):
    return GameRecord(id=game_id, player_x_id=owner, player_x_name=owner.title(), **overrides)


def test_create_assigns_id_and_version(store):
    created = store.create(make_record(game_name="Friday"))

    assert created.id
    assert created.version == 1
    fetched = store.get(created.id)
    assert fetched is not None
    assert fetched.game_name == "Friday"
    assert fetched.created_at.tzinfo is not None


def test_create_rejects_duplicate_id(store):
    store.create(make_record("g1"))
    with pytest.raises(WriteConflictError):
        store.create(make_record("g1"))


def test_get_unknown_is_none(store):
    assert store.get("missing") is None


def test_get_returns_independent_copies(store):
    created = store.create(make_record())
    first = store.get(created.id)
    first.board[0] = X

    assert store.get(created.id).board[0] == ""


def test_conditional_write_bumps_version(store):
    created = store.create(make_record())
    created.board[4] = X

    written = store.update_if_version(created, expected_version=1)

    assert written.version == 2
    assert store.get(created.id).board[4] == X


def test_stale_write_is_rejected_without_change(store):
    created = store.create(make_record())
    first = store.get(created.id)
    second = store.get(created.id)
    first.board[0] = X
    store.update_if_version(first, first.version)

    second.board[8] = X
    with pytest.raises(WriteConflictError):
        store.update_if_version(second, second.version)

    stored = store.get(created.id)
    assert stored.board[0] == X
    assert stored.board[8] == ""
    assert stored.version == 2


def test_write_to_deleted_record_is_not_found(store):
    created = store.create(make_record())
    store.delete(created.id)

    with pytest.raises(RecordNotFoundError):
        store.update_if_version(created, created.version)
    assert store.delete(created.id) is None


def test_read_modify_write_retries_after_conflict(store):
    created = store.create(make_record())
    calls = []

    def mutate(record):
        calls.append(record.version)
        if len(calls) == 1:
            # Someone else writes between our read and our write.
            rival = store.get(record.id)
            rival.game_name = "renamed"
            store.update_if_version(rival, rival.version)
        record.player_o_id = "bob"
        return record

    written = read_modify_write(store, created.id, mutate)

    assert calls == [1, 2]
    assert written.version == 3
    assert written.player_o_id == "bob"
    assert written.game_name == "renamed"


def test_read_modify_write_gives_up_after_retries(store):
    created = store.create(make_record())

    def always_raced(record):
        rival = store.get(record.id)
        store.update_if_version(rival, rival.version)
        return record

    with pytest.raises(WriteConflictError):
        read_modify_write(store, created.id, always_raced, retries=2)


def test_read_modify_write_can_abandon(store):
    created = store.create(make_record())

    assert read_modify_write(store, created.id, lambda record: None) is None
    assert store.get(created.id).version == 1


def test_read_modify_write_missing_record(store):
    with pytest.raises(RecordNotFoundError):
        read_modify_write(store, "missing", lambda record: record)


def test_subscribe_delivers_initial_and_each_write_in_order(store):
    created = store.create(make_record())
    seen = []
    subscription = store.subscribe(created.id, lambda record: seen.append(record))

    for version in (1, 2, 3):
        current = store.get(created.id)
        current.game_name = f"v{version}"
        store.update_if_version(current, current.version)
    store.delete(created.id)

    assert [r.version for r in seen[:-1]] == [1, 2, 3, 4]
    assert seen[-1] is None
    subscription.close()
    subscription.close()


def test_closed_subscription_receives_nothing(store):
    created = store.create(make_record())
    seen = []
    subscription = store.subscribe(created.id, seen.append)
    subscription.close()

    store.update_if_version(store.get(created.id), 1)

    assert len(seen) == 1


def test_failing_subscriber_does_not_break_writer(store):
    created = store.create(make_record())

    def explode(record):
        if record is not None and record.version > 1:
            raise RuntimeError("boom")

    store.subscribe(created.id, explode)
    written = store.update_if_version(store.get(created.id), 1)

    assert written.version == 2


def test_disconnect_reports_error_to_subscribers(store):
    created = store.create(make_record())
    errors = []
    subscription = store.subscribe(created.id, lambda record: None, errors.append)

    assert store.hub.disconnect(created.id) == 1

    assert subscription.closed
    assert isinstance(errors[0], SubscriptionClosedError)
    assert store.hub.subscriber_count(created.id) == 0


def test_query_filters_and_orders_newest_first(store):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    store.create(make_record("old", created_at=base))
    store.create(make_record("new", created_at=base + timedelta(minutes=5)))
    store.create(make_record("hidden", is_private=True, created_at=base + timedelta(minutes=9)))

    assert [r.id for r in store.query(PUBLIC)] == ["new", "old"]


def test_query_subscription_tracks_collection(store):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    snapshots = []
    subscription = store.subscribe_query(PUBLIC, snapshots.append)

    store.create(make_record("a", created_at=base))
    store.create(make_record("b", created_at=base + timedelta(seconds=1)))
    store.delete("a")
    subscription.close()
    store.create(make_record("c", created_at=base + timedelta(seconds=2)))

    assert [[r.id for r in snap] for snap in snapshots] == [[], ["a"], ["b", "a"], ["b"]]


def test_sql_store_survives_concurrent_readers(session_factory):
    store = SQLRecordStore(session_factory)
    created = store.create(make_record())
    stop = threading.Event()
    errors = []

    def reader():
        try:
            while not stop.is_set():
                store.get(created.id)
                store.query(PUBLIC)
        except Exception as exc:
            errors.append(exc)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for thread in readers:
        thread.start()
    lost = 0
    try:
        for step in range(300):
            current = store.get(created.id)
            current.game_name = f"step {step}"
            written = store.update_if_version(current, current.version)
            if store.get(created.id).version != written.version:
                lost += 1
    finally:
        stop.set()
        for thread in readers:
            thread.join()

    assert errors == []
    assert lost == 0
    final = store.get(created.id)
    assert final.version == 301
    assert final.game_name == "step 299"
