from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tap_track.errors import (
    ActiveSessionConflictError,
    RemoteUnavailableError,
    SessionAlreadyCompletedError,
    SessionNotFoundError,
)
from tap_track.models import Session
from tap_track.remote import ChangeType, HttpRemoteStore, LocalRemoteStore
from tap_track.webapp import create_app

START = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def active(session_id: str = "s1", user_id: str = "user-1") -> Session:
    return Session(id=session_id, user_id=user_id, date="2024-01-01", start_time=START, task_name="code")


@pytest.fixture
def http_store(tmp_path):
    app = create_app(db_path=tmp_path / "sessions.sqlite3")
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return HttpRemoteStore("http://test", client=client)


@pytest.fixture(params=["http", "local"])
def store(request, tmp_path, http_store):
    if request.param == "http":
        return http_store
    return LocalRemoteStore(tmp_path / "local.sqlite3")


@pytest.mark.asyncio
async def test_insert_fetch_and_complete(store) -> None:
    session = active()

    stored = await store.insert_session(session, require_no_active=True)
    assert stored == session

    done = session.completed(START + timedelta(seconds=90), 90)
    await store.update_session(done)

    assert await store.fetch_sessions("user-1") == [done]
    assert await store.fetch_sessions("user-2") == []


@pytest.mark.asyncio
async def test_insert_twice_keeps_one_row(store) -> None:
    await store.insert_session(active())
    await store.insert_session(active(), require_no_active=True)

    assert len(await store.fetch_sessions("user-1")) == 1


@pytest.mark.asyncio
async def test_second_active_session_conflicts(store) -> None:
    await store.insert_session(active("s1"))

    with pytest.raises(ActiveSessionConflictError) as excinfo:
        await store.insert_session(active("s2"), require_no_active=True)

    assert excinfo.value.active_id == "s1"


@pytest.mark.asyncio
async def test_update_of_unknown_session(store) -> None:
    with pytest.raises(SessionNotFoundError):
        await store.update_session(active("ghost").completed(START + timedelta(seconds=5), 5))


@pytest.mark.asyncio
async def test_session_ends_only_once(store) -> None:
    await store.insert_session(active())
    done = active().completed(START + timedelta(seconds=90), 90)
    await store.update_session(done)

    assert await store.update_session(done) == done
    with pytest.raises(SessionAlreadyCompletedError):
        await store.update_session(active().completed(START + timedelta(seconds=300), 300))
    assert await store.fetch_sessions("user-1") == [done]


@pytest.mark.asyncio
async def test_ping(store) -> None:
    assert await store.ping() is True


@pytest.mark.asyncio
async def test_http_store_reports_network_failures() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://down")
    store = HttpRemoteStore("http://down", client=client)

    assert await store.ping() is False
    with pytest.raises(RemoteUnavailableError):
        await store.fetch_sessions("user-1")
    with pytest.raises(RemoteUnavailableError):
        await store.insert_session(active())


@pytest.mark.asyncio
async def test_http_store_treats_server_errors_as_unavailable() -> None:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        base_url="http://flaky",
    )
    store = HttpRemoteStore("http://flaky", client=client)

    with pytest.raises(RemoteUnavailableError):
        await store.fetch_sessions("user-1")


@pytest.mark.asyncio
async def test_http_store_drops_malformed_rows() -> None:
    body = {
        "sessions": [
            {"id": "ok", "userId": "user-1", "date": "2024-01-01", "start_time": START.isoformat()},
            {"id": "broken", "userId": "user-1"},
        ]
    }
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
        base_url="http://store",
    )
    store = HttpRemoteStore("http://store", client=client)

    sessions = await store.fetch_sessions("user-1")

    assert [session.id for session in sessions] == ["ok"]


@pytest.mark.asyncio
async def test_local_store_pushes_changes(tmp_path) -> None:
    store = LocalRemoteStore(tmp_path / "local.sqlite3")
    seen: list[tuple[ChangeType, str]] = []
    unsubscribe = store.subscribe("user-1", lambda change, session: seen.append((change, session.id)))

    await store.insert_session(active())
    await store.insert_session(active())
    await store.update_session(active().completed(START + timedelta(seconds=5), 5))
    await store.update_session(active().completed(START + timedelta(seconds=5), 5))
    await store.insert_session(active("other", user_id="user-2"))
    unsubscribe()
    await store.insert_session(active("late"))

    assert seen == [(ChangeType.CREATED, "s1"), (ChangeType.UPDATED, "s1")]
