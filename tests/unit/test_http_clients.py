"""HTTP adapter tests.

All HTTP calls are served by ``httpx.MockTransport``; no real API calls.
"""

import json

import httpx
import pytest

from pgferry.clients.http import HttpClusterClient, HttpFleetClient, HttpSecretsStore
from pgferry.config import ApiConfig, ClusterConfig
from pgferry.contracts import LaunchSpec
from pgferry.errors import ClientError, TransportError

API = ApiConfig(base_url="https://api.test", token="tok")


def fleet_with(handler):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url=API.base_url,
        headers={"Authorization": "Bearer tok"},
    )
    return HttpFleetClient(API, client=client)


MACHINES = [
    {
        "id": "m1",
        "region": "iad",
        "state": "started",
        "private_ip": "fdaa::1",
        "config": {"image": "flyio/postgres-flex:15", "metadata": {"fly-managed-postgres": "true"}},
        "image_ref": {"repository": "flyio/postgres-flex", "labels": {"fly.version": "v0.0.40"}},
        "checks": [{"name": "role", "status": "passing", "output": "primary"}],
    },
    {
        "id": "m2",
        "region": "ord",
        "state": "destroyed",
        "checks": [],
    },
]


@pytest.mark.asyncio
async def test_list_active_nodes_parses_and_filters():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=MACHINES)

    nodes = await fleet_with(handler).list_active_nodes("db")

    assert [node.id for node in nodes] == ["m1"]
    node = nodes[0]
    assert node.role == "leader"
    assert node.image_version == "v0.0.40"
    assert node.image_repository == "flyio/postgres-flex"
    assert requests[0].url.path == "/v1/apps/db/machines"
    assert requests[0].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_get_app_maps_organization():
    def handler(request):
        return httpx.Response(
            200,
            json={"id": "app-1", "name": "db", "organization": {"slug": "acme"}},
        )

    app = await fleet_with(handler).get_app("db")

    assert app.organization == "acme"
    assert app.is_postgres


@pytest.mark.asyncio
async def test_launch_node_sends_config():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"id": "w1", "region": "iad", "state": "created", "private_ip": "fdaa::9"}
        )

    spec = LaunchSpec(
        app_id="app-1",
        organization="acme",
        region="iad",
        image="codebaker/postgres-migrator:latest",
        vm_size="shared-cpu-2x",
        metadata={"process": "postgres-migrator"},
    )
    handle = await fleet_with(handler).launch_node("db", spec)

    assert handle.id == "w1"
    assert handle.address == "[fdaa::9]"
    assert seen["body"]["region"] == "iad"
    assert seen["body"]["config"]["size"] == "shared-cpu-2x"
    assert seen["body"]["config"]["metadata"] == {"process": "postgres-migrator"}


@pytest.mark.asyncio
async def test_destroy_node_passes_force():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    await fleet_with(handler).destroy_node("db", "w1", force=True)

    assert seen[0].method == "DELETE"
    assert seen[0].url.params["force"] == "true"


@pytest.mark.asyncio
async def test_lease_acquire_and_release():
    seen = []

    def handler(request):
        seen.append(request)
        if request.method == "POST":
            return httpx.Response(
                200,
                json={"status": "success", "data": {"nonce": "n-1", "expires_at": 1893456000}},
            )
        return httpx.Response(200)

    fleet = fleet_with(handler)
    lease = await fleet.acquire_lease("db", "m1", ttl=120)
    await fleet.release_lease("db", "m1", lease.nonce)

    assert lease.nonce == "n-1"
    assert lease.expires_at.year == 2030
    assert json.loads(seen[0].content) == {"ttl": 120}
    assert seen[1].method == "DELETE"
    assert seen[1].headers["fly-machine-lease-nonce"] == "n-1"


@pytest.mark.asyncio
async def test_error_status_becomes_client_error():
    def handler(request):
        return httpx.Response(404, json={"error": "machine not found"})

    with pytest.raises(ClientError, match="machine not found") as exc_info:
        await fleet_with(handler).get_node("db", "nope")

    assert exc_info.value.not_found


@pytest.mark.asyncio
async def test_connection_failure_becomes_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError, match="connection refused"):
        await fleet_with(handler).get_node("db", "m1")


@pytest.mark.asyncio
async def test_secrets_store_set_and_unset():
    seen = []

    def handler(request):
        seen.append(request)
        if request.method == "DELETE":
            return httpx.Response(200, json={"removed": ["A"]})
        return httpx.Response(200, json={})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=API.base_url)
    store = HttpSecretsStore(API, client=client)

    await store.set_secrets("db", {"A": "1"})
    removed = await store.unset_secrets("db", ["A", "B"])

    assert removed == ["A"]
    assert json.loads(seen[0].content) == {"secrets": {"A": "1"}}
    assert json.loads(seen[1].content) == {"keys": ["A", "B"]}


@pytest.mark.asyncio
async def test_cluster_client_user_commands():
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path == "/commands/users/list":
            return httpx.Response(200, json={"result": [{"username": "postgres"}]})
        return httpx.Response(200, json={"result": "ok"})

    cluster_conf = ClusterConfig()
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://db.internal:5500"
    )
    cluster = HttpClusterClient("db", cluster_conf, client=client)

    assert cluster.base_url == "http://db.internal:5500"
    assert await cluster.list_users() == ["postgres"]
    await cluster.create_user("pgferry_x", "pw", superuser=False)
    await cluster.delete_user("pgferry_x")

    assert json.loads(seen[1].content) == {
        "username": "pgferry_x",
        "password": "pw",
        "superuser": False,
    }
    assert seen[2].method == "DELETE"
    assert seen[2].url.path == "/commands/users/delete/pgferry_x"


@pytest.mark.asyncio
async def test_cluster_error_envelope_raises():
    def handler(request):
        return httpx.Response(200, json={"error": "role already exists"})

    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://db.internal:5500"
    )
    cluster = HttpClusterClient("db", ClusterConfig(), client=client)

    with pytest.raises(ClientError, match="role already exists"):
        await cluster.create_user("u", "p")


@pytest.mark.asyncio
async def test_non_json_success_body_becomes_client_error():
    def handler(request):
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(ClientError, match="not JSON"):
        await fleet_with(handler).get_app("db")


@pytest.mark.asyncio
async def test_machine_without_id_becomes_client_error():
    def handler(request):
        return httpx.Response(200, json=[{"region": "iad", "state": "started"}])

    with pytest.raises(ClientError, match="malformed machine payload"):
        await fleet_with(handler).list_active_nodes("db")


@pytest.mark.asyncio
async def test_launch_response_without_id_becomes_client_error():
    def handler(request):
        return httpx.Response(200, json={"state": "created"})

    spec = LaunchSpec(
        app_id="app-1",
        organization="acme",
        region="iad",
        image="codebaker/postgres-migrator:latest",
        vm_size="shared-cpu-2x",
    )
    with pytest.raises(ClientError, match="malformed machine payload"):
        await fleet_with(handler).launch_node("db", spec)
