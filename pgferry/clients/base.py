"""Interfaces of the external services pgferry drives."""

from __future__ import annotations

from typing import Dict, List, Protocol

from ..contracts import AppInfo, LaunchSpec, Lease, NodeHandle, NodeInfo


class FleetAPI(Protocol):
    """Node lifecycle and lease primitives of the fleet platform."""

    async def get_app(self, app_name: str) -> AppInfo:
        """Return the app or raise ``ClientError`` (404 when missing)."""

    async def list_active_nodes(self, app_name: str) -> List[NodeInfo]:
        """Return nodes that are not destroyed, in platform order."""

    async def launch_node(self, app_name: str, spec: LaunchSpec) -> NodeHandle:
        """Create and start a node."""

    async def get_node(self, app_name: str, node_id: str) -> NodeHandle:
        """Return the node's current state."""

    async def destroy_node(self, app_name: str, node_id: str, force: bool = False) -> None:
        """Destroy a node; ``force`` kills it even if it is running."""

    async def acquire_lease(self, app_name: str, node_id: str, ttl: int) -> Lease:
        """Claim a node for ``ttl`` seconds."""

    async def release_lease(self, app_name: str, node_id: str, nonce: str) -> None:
        """Release a lease previously acquired with ``nonce``."""


class SecretsStore(Protocol):
    """App-scoped secrets exposed to nodes as environment variables."""

    async def set_secrets(self, app_name: str, secrets: Dict[str, str]) -> None:
        """Set the given keys, leaving other keys untouched."""

    async def unset_secrets(self, app_name: str, keys: List[str]) -> List[str]:
        """Remove the given keys and return those that existed."""


class ClusterClient(Protocol):
    """User management on the target database cluster."""

    async def list_users(self) -> List[str]:
        """Return existing user names."""

    async def create_user(self, name: str, password: str, superuser: bool = False) -> None:
        """Create a login user."""

    async def delete_user(self, name: str) -> None:
        """Drop a user."""
