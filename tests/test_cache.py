from datetime import datetime, timedelta, timezone

from tap_track.cache import LocalCache, sessions_key
from tap_track.models import OperationKind, PendingOperation, Session

START = datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)


def make_session(session_id: str, user_id: str = "user-1", seconds: int | None = None) -> Session:
    if seconds is None:
        return Session(id=session_id, user_id=user_id, date="2024-03-05", start_time=START)
    return Session(
        id=session_id,
        user_id=user_id,
        date="2024-03-05",
        start_time=START,
        end_time=START + timedelta(seconds=seconds),
        duration=seconds,
        task_name="review",
    )


def test_sessions_round_trip_through_the_slot(cache) -> None:
    sessions = [make_session("a", seconds=30), make_session("b")]

    cache.save_sessions("user-1", sessions)

    assert cache.load_sessions("user-1") == sessions
    assert cache.load_sessions("someone-else") == []


def test_unparseable_slot_is_treated_as_empty(cache) -> None:
    cache._conn.execute(
        "INSERT INTO slots (key, value) VALUES (?, ?)", (sessions_key("user-1"), "{not json")
    )

    assert cache.load_sessions("user-1") == []


def test_non_list_slot_is_treated_as_empty(cache) -> None:
    cache._conn.execute(
        "INSERT INTO slots (key, value) VALUES (?, ?)", (sessions_key("user-1"), '{"id": "a"}')
    )

    assert cache.load_sessions("user-1") == []


def test_malformed_rows_are_skipped(cache) -> None:
    payload = (
        '[{"id": "ok", "userId": "user-1", "date": "2024-03-05", '
        '"start_time": "2024-03-05T09:00:00Z", "end_time": null, "duration": null}, '
        '{"id": "bad", "userId": "user-1", "date": "yesterday"}]'
    )
    cache._conn.execute(
        "INSERT INTO slots (key, value) VALUES (?, ?)", (sessions_key("user-1"), payload)
    )

    assert [session.id for session in cache.load_sessions("user-1")] == ["ok"]


def test_pending_operations_keep_insertion_order(cache) -> None:
    first = cache.enqueue(PendingOperation(OperationKind.START, make_session("a")))
    second = cache.enqueue(PendingOperation(OperationKind.STOP, make_session("a", seconds=60)))
    cache.enqueue(PendingOperation(OperationKind.START, make_session("z", user_id="user-2")))

    pending = cache.pending_operations("user-1")

    assert [op.seq for op in pending] == [first.seq, second.seq]
    assert [op.kind for op in pending] == [OperationKind.START, OperationKind.STOP]
    assert pending[1].session.duration == 60
    assert cache.pending_count("user-1") == 2

    cache.remove_pending(first.seq)
    assert [op.seq for op in cache.pending_operations("user-1")] == [second.seq]


def test_malformed_pending_operation_is_dropped(cache) -> None:
    cache._conn.execute(
        "INSERT INTO pending_operations (user_id, kind, session_id, payload) VALUES (?, ?, ?, ?)",
        ("user-1", "teleport", "x", "{}"),
    )

    assert cache.pending_operations("user-1") == []
    assert cache.pending_count("user-1") == 0


def test_clear_user_only_touches_that_identity(cache) -> None:
    cache.save_sessions("user-1", [make_session("a")])
    cache.save_sessions("user-2", [make_session("b", user_id="user-2")])
    cache.enqueue(PendingOperation(OperationKind.START, make_session("a")))

    cache.clear_user("user-1")

    assert cache.load_sessions("user-1") == []
    assert cache.pending_count("user-1") == 0
    assert [session.id for session in cache.load_sessions("user-2")] == ["b"]


def test_cache_survives_reopening(tmp_path) -> None:
    path = tmp_path / "cache.sqlite3"
    first = LocalCache(path)
    first.save_sessions("user-1", [make_session("a", seconds=5)])
    first.enqueue(PendingOperation(OperationKind.START, make_session("a")))
    first.close()

    second = LocalCache(path)
    try:
        assert [session.id for session in second.load_sessions("user-1")] == ["a"]
        assert second.pending_count("user-1") == 1
    finally:
        second.close()
