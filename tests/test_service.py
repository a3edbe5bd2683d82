import pytest

from tap_track.errors import AuthenticationRequiredError
from tap_track.identity import IdentityProvider
from tap_track.models import Identity
from tap_track.service import TrackerService


@pytest.fixture
def provider() -> IdentityProvider:
    return IdentityProvider()


@pytest.fixture
def service(provider, remote, cache, clock) -> TrackerService:
    return TrackerService(provider, remote, cache, clock=clock)


@pytest.mark.asyncio
async def test_operations_require_an_identity(service) -> None:
    await service.open()

    with pytest.raises(AuthenticationRequiredError):
        await service.start()
    with pytest.raises(AuthenticationRequiredError):
        await service.stop()
    assert service.engine is None


@pytest.mark.asyncio
async def test_sign_in_builds_and_loads_an_engine(service, provider, identity) -> None:
    await service.open()
    await provider.sign_in(identity)

    engine = service.require_engine()
    assert engine.user_id == identity.user_id
    assert engine.initialized is True

    session = await service.start("standup")
    assert session.user_id == identity.user_id


@pytest.mark.asyncio
async def test_open_loads_identity_already_signed_in(provider, remote, cache, clock, identity) -> None:
    await provider.sign_in(identity)
    service = TrackerService(provider, remote, cache, clock=clock)

    await service.open()

    assert service.engine is not None
    assert service.engine.is_online is True


@pytest.mark.asyncio
async def test_engine_starts_offline_when_remote_is_unreachable(service, provider, remote, identity) -> None:
    remote.available = False
    await service.open()
    await provider.sign_in(identity)

    assert service.require_engine().is_online is False


@pytest.mark.asyncio
async def test_sign_out_discards_local_state(service, provider, remote, cache, identity) -> None:
    await service.open()
    await provider.sign_in(identity)
    remote.available = False
    await service.start()
    assert cache.pending_count(identity.user_id) == 1

    await provider.sign_out()

    assert service.engine is None
    assert cache.load_sessions(identity.user_id) == []
    assert cache.pending_count(identity.user_id) == 0


@pytest.mark.asyncio
async def test_switching_identity_reloads_for_the_new_user(service, provider, clock, identity) -> None:
    await service.open()
    await provider.sign_in(identity)
    await service.start()

    other = Identity(user_id="user-2", email="two@example.com")
    await provider.sign_in(other)

    engine = service.require_engine()
    assert engine.user_id == "user-2"
    assert engine.sessions == ()
    assert engine.active_session is None


@pytest.mark.asyncio
async def test_sign_out_replays_pending_work_first(service, provider, remote, clock, identity) -> None:
    await service.open()
    await provider.sign_in(identity)
    engine = service.require_engine()
    remote.available = False
    session = await service.start()
    remote.available = True

    await provider.sign_out()

    assert session.id in remote.rows
    assert engine.active_session is None
