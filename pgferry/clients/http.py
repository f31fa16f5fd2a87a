"""HTTP adapters for the fleet platform and the cluster admin API.

All three share one client lifecycle: a lazily created
``httpx.AsyncClient`` per service, closed with ``close()``. Every call is a
single round trip. Nothing here retries; retry policy belongs to the caller.
HTTP error statuses become ``ClientError`` and connection failures become
``TransportError``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..config import ApiConfig, ClusterConfig
from ..contracts import AppInfo, CheckStatus, LaunchSpec, Lease, NodeHandle, NodeInfo
from ..errors import ClientError, TransportError
from .base import ClusterClient, FleetAPI, SecretsStore

logger = logging.getLogger(__name__)

LEASE_NONCE_HEADER = "fly-machine-lease-nonce"
INACTIVE_STATES = ("destroying", "destroyed")


class _HttpService:
    """Owns an ``httpx.AsyncClient`` and maps its failures."""

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        proxy: Optional[str] = None,
    ) -> None:
        self.base_url = base_url
        self._headers = headers or {}
        self._timeout = timeout
        self._proxy = proxy
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: Dict[str, Any] = {
                "base_url": self.base_url,
                "headers": self._headers,
                "timeout": self._timeout,
            }
            if self._proxy:
                kwargs["proxy"] = self._proxy
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        client = self._get_client()
        logger.debug(f"{method} {self.base_url}{url}")
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            raise ClientError(
                f"{method} {url} returned {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ClientError(
                f"{method} {url} returned a body that is not JSON: {e}",
                status_code=response.status_code,
            ) from e


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)


def _parse_node(data: Dict[str, Any]) -> NodeInfo:
    try:
        config = data.get("config") or {}
        image_ref = data.get("image_ref") or {}
        return NodeInfo(
            id=data["id"],
            region=data.get("region", ""),
            state=data.get("state", ""),
            private_ip=data.get("private_ip", ""),
            image_repository=image_ref.get("repository", ""),
            image_labels=image_ref.get("labels") or {},
            metadata=config.get("metadata") or {},
            checks=[CheckStatus(**check) for check in data.get("checks") or []],
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ClientError(f"malformed machine payload: {e!r}") from e


def _parse_handle(app_name: str, data: Dict[str, Any]) -> NodeHandle:
    try:
        return NodeHandle(
            id=data["id"],
            app=app_name,
            region=data.get("region", ""),
            state=data.get("state", ""),
            private_ip=data.get("private_ip", ""),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ClientError(f"malformed machine payload: {e!r}") from e


class HttpFleetClient(_HttpService, FleetAPI):
    """Machines-style REST API of the fleet platform."""

    def __init__(self, config: ApiConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        headers = {"Authorization": f"Bearer {config.token}"} if config.token else {}
        super().__init__(config.base_url, headers, config.timeout, client)

    async def get_app(self, app_name: str) -> AppInfo:
        data = await self._request("GET", f"/v1/apps/{app_name}")
        try:
            organization = data.get("organization") or {}
            return AppInfo(
                id=data.get("id", app_name),
                name=data.get("name", app_name),
                organization=organization.get("slug", ""),
                app_type=data.get("app_type", "postgres"),
                platform_version=data.get("platform_version", "machines"),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ClientError(f"malformed app payload for {app_name}: {e!r}") from e

    async def list_active_nodes(self, app_name: str) -> List[NodeInfo]:
        data = await self._request("GET", f"/v1/apps/{app_name}/machines")
        nodes = [_parse_node(item) for item in data or []]
        return [node for node in nodes if node.state not in INACTIVE_STATES]

    async def launch_node(self, app_name: str, spec: LaunchSpec) -> NodeHandle:
        body = {
            "region": spec.region,
            "config": {
                "image": spec.image,
                "size": spec.vm_size,
                "metadata": spec.metadata,
            },
        }
        data = await self._request("POST", f"/v1/apps/{app_name}/machines", json=body)
        return _parse_handle(app_name, data)

    async def get_node(self, app_name: str, node_id: str) -> NodeHandle:
        data = await self._request("GET", f"/v1/apps/{app_name}/machines/{node_id}")
        return _parse_handle(app_name, data)

    async def destroy_node(self, app_name: str, node_id: str, force: bool = False) -> None:
        await self._request(
            "DELETE",
            f"/v1/apps/{app_name}/machines/{node_id}",
            params={"force": "true" if force else "false"},
        )

    async def acquire_lease(self, app_name: str, node_id: str, ttl: int) -> Lease:
        data = await self._request(
            "POST", f"/v1/apps/{app_name}/machines/{node_id}/lease", json={"ttl": ttl}
        )
        lease_data = data.get("data") or {}
        nonce = lease_data.get("nonce")
        if not nonce:
            raise ClientError(f"lease response for {node_id} carried no nonce")
        expires_at = lease_data.get("expires_at")
        if expires_at is None:
            return Lease.from_ttl(node_id, nonce, ttl, status=data.get("status", "success"))
        return Lease(
            node_id=node_id,
            nonce=nonce,
            expires_at=datetime.fromtimestamp(int(expires_at), tz=timezone.utc),
            status=data.get("status", "success"),
        )

    async def release_lease(self, app_name: str, node_id: str, nonce: str) -> None:
        await self._request(
            "DELETE",
            f"/v1/apps/{app_name}/machines/{node_id}/lease",
            headers={LEASE_NONCE_HEADER: nonce},
        )


class HttpSecretsStore(_HttpService, SecretsStore):
    """App secrets endpoint of the fleet platform."""

    def __init__(self, config: ApiConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        headers = {"Authorization": f"Bearer {config.token}"} if config.token else {}
        super().__init__(config.base_url, headers, config.timeout, client)

    async def set_secrets(self, app_name: str, secrets: Dict[str, str]) -> None:
        await self._request("POST", f"/v1/apps/{app_name}/secrets", json={"secrets": secrets})

    async def unset_secrets(self, app_name: str, keys: List[str]) -> List[str]:
        data = await self._request(
            "DELETE", f"/v1/apps/{app_name}/secrets", json={"keys": keys}
        )
        if data is None:
            return list(keys)
        return list(data.get("removed", []))


class HttpClusterClient(_HttpService, ClusterClient):
    """Admin API exposed by each node of a Postgres cluster.

    Responses are wrapped as ``{"result": ..., "error": ...}``.
    """

    def __init__(
        self,
        app_name: str,
        config: ClusterConfig,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        base_url = f"http://{app_name}.{config.internal_domain}:{config.admin_port}"
        super().__init__(base_url, timeout=timeout, client=client, proxy=config.proxy)

    async def _command(self, method: str, url: str, **kwargs: Any) -> Any:
        data = await self._request(method, url, **kwargs) or {}
        if data.get("error"):
            raise ClientError(str(data["error"]))
        return data.get("result")

    async def list_users(self) -> List[str]:
        result = await self._command("GET", "/commands/users/list")
        return [user["username"] for user in result or []]

    async def create_user(self, name: str, password: str, superuser: bool = False) -> None:
        await self._command(
            "POST",
            "/commands/users/create",
            json={"username": name, "password": password, "superuser": superuser},
        )

    async def delete_user(self, name: str) -> None:
        await self._command("DELETE", f"/commands/users/delete/{name}")
