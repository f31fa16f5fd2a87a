import pytest

from pgferry.clients.inmemory import InMemoryFleet
from pgferry.contracts import AppInfo
from pgferry.errors import LeaseError, TransportError
from pgferry.leases import LeaseManager

from ..conftest import make_node


@pytest.fixture
def fleet():
    fleet = InMemoryFleet()
    fleet.add_app(AppInfo(id="app-1", name="db", organization="acme"))
    fleet.add_node("db", make_node("node-a", "primary"))
    fleet.add_node("db", make_node("node-b", "replica"))
    return fleet


@pytest.mark.asyncio
async def test_acquire_tracks_nonce_until_release(fleet):
    manager = LeaseManager(fleet, "db")

    lease = await manager.acquire("node-a", ttl=120)

    assert lease.node_id == "node-a"
    assert not lease.is_expired()
    assert manager.held() == [lease]
    assert fleet.leases[("db", "node-a")] == lease.nonce

    await manager.release("node-a", lease.nonce)

    assert manager.held() == []
    assert fleet.leases == {}


@pytest.mark.asyncio
async def test_acquire_on_leased_node_raises(fleet):
    fleet.leases[("db", "node-b")] = "other"
    manager = LeaseManager(fleet, "db")

    with pytest.raises(LeaseError, match="node-b"):
        await manager.acquire("node-b", ttl=120)

    assert manager.held() == []


@pytest.mark.asyncio
async def test_release_with_unknown_nonce_skips_remote_call(fleet):
    manager = LeaseManager(fleet, "db")
    await manager.acquire("node-a", ttl=120)

    with pytest.raises(LeaseError, match="stale"):
        await manager.release("node-a", "not-the-nonce")

    with pytest.raises(LeaseError):
        await manager.release("node-b", "anything")

    assert fleet.calls("release_lease") == []
    assert len(manager.held()) == 1


@pytest.mark.asyncio
async def test_release_failure_keeps_lease_tracked(fleet):
    manager = LeaseManager(fleet, "db")
    lease = await manager.acquire("node-a", ttl=120)
    fleet.fail("release_lease", TransportError("connection refused"))

    with pytest.raises(LeaseError, match="connection refused"):
        await manager.release("node-a", lease.nonce)

    assert manager.held() == [lease]


@pytest.mark.asyncio
async def test_ensure_held_passes_for_live_leases(fleet):
    manager = LeaseManager(fleet, "db")
    await manager.acquire("node-a", ttl=120)
    await manager.acquire("node-b", ttl=120)

    manager.ensure_held(["node-a", "node-b"])


@pytest.mark.asyncio
async def test_ensure_held_rejects_missing_lease(fleet):
    manager = LeaseManager(fleet, "db")
    await manager.acquire("node-a", ttl=120)

    with pytest.raises(LeaseError, match="node-b holds no lease"):
        manager.ensure_held(["node-a", "node-b"])


@pytest.mark.asyncio
async def test_ensure_held_rejects_expired_lease(fleet):
    manager = LeaseManager(fleet, "db")
    await manager.acquire("node-a", ttl=120)
    await manager.acquire("node-b", ttl=0)

    with pytest.raises(LeaseError, match="lease on node-b expired"):
        manager.ensure_held(["node-a", "node-b"])
