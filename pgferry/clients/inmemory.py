"""In-memory fleet, secrets and cluster services for testing."""

from __future__ import annotations

import uuid
from typing import Dict, List, Optional, Tuple

from ..contracts import AppInfo, LaunchSpec, Lease, NodeHandle, NodeInfo
from ..errors import ClientError
from .base import ClusterClient, FleetAPI, SecretsStore

Call = Tuple[str, ...]

INACTIVE_STATES = ("destroying", "destroyed")


class _Recorder:
    """Records calls and raises injected failures.

    Several fakes may share one ``journal`` so tests can assert on the
    global order of calls.
    """

    def __init__(self, journal: Optional[List[Call]] = None) -> None:
        self.journal: List[Call] = journal if journal is not None else []
        self.failures: Dict[str, BaseException] = {}

    def fail(self, operation: str, error: BaseException) -> None:
        """Make every later call to ``operation`` raise ``error``."""
        self.failures[operation] = error

    def _record(self, operation: str, *args: str) -> None:
        self.journal.append((operation, *args))
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def calls(self, operation: str) -> List[Call]:
        return [call for call in self.journal if call[0] == operation]


class InMemoryFleet(_Recorder, FleetAPI):
    """Fleet platform kept in local memory.

    Launched nodes move ``created -> starting -> started`` one step per
    ``get_node`` call, unless ``start_polls`` says otherwise. A negative
    ``start_polls`` keeps them starting forever.
    """

    def __init__(
        self,
        journal: Optional[List[Call]] = None,
        start_polls: int = 2,
    ) -> None:
        super().__init__(journal)
        self.apps: Dict[str, AppInfo] = {}
        self.nodes: Dict[str, Dict[str, NodeInfo]] = {}
        self.leases: Dict[Tuple[str, str], str] = {}
        self.start_polls = start_polls
        self._polls: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Seeding helpers
    def add_app(self, app: AppInfo) -> None:
        self.apps[app.name] = app
        self.nodes.setdefault(app.name, {})

    def add_node(self, app_name: str, node: NodeInfo) -> None:
        self.nodes.setdefault(app_name, {})[node.id] = node

    def _node(self, app_name: str, node_id: str) -> NodeInfo:
        node = self.nodes.get(app_name, {}).get(node_id)
        if node is None:
            raise ClientError(f"node {node_id} not found", status_code=404)
        return node

    # ------------------------------------------------------------------
    # FleetAPI
    async def get_app(self, app_name: str) -> AppInfo:
        self._record("get_app", app_name)
        app = self.apps.get(app_name)
        if app is None:
            raise ClientError(f"app {app_name} not found", status_code=404)
        return app

    async def list_active_nodes(self, app_name: str) -> List[NodeInfo]:
        self._record("list_active_nodes", app_name)
        return [
            node
            for node in self.nodes.get(app_name, {}).values()
            if node.state not in INACTIVE_STATES
        ]

    async def launch_node(self, app_name: str, spec: LaunchSpec) -> NodeHandle:
        self._record("launch_node", app_name, spec.region)
        node_id = uuid.uuid4().hex[:14]
        node = NodeInfo(
            id=node_id,
            region=spec.region,
            state="created",
            private_ip=f"fdaa:0:1::{len(self.nodes.get(app_name, {})) + 1}",
            image_labels={},
            metadata=dict(spec.metadata),
        )
        self.add_node(app_name, node)
        self._polls[node_id] = 0
        return NodeHandle(
            id=node.id,
            app=app_name,
            region=node.region,
            state=node.state,
            private_ip=node.private_ip,
        )

    async def get_node(self, app_name: str, node_id: str) -> NodeHandle:
        self._record("get_node", app_name, node_id)
        node = self._node(app_name, node_id)
        if node_id in self._polls and node.state in ("created", "starting"):
            self._polls[node_id] += 1
            if self.start_polls >= 0 and self._polls[node_id] >= self.start_polls:
                node.state = "started"
            else:
                node.state = "starting"
        return NodeHandle(
            id=node.id,
            app=app_name,
            region=node.region,
            state=node.state,
            private_ip=node.private_ip,
        )

    async def destroy_node(self, app_name: str, node_id: str, force: bool = False) -> None:
        self._record("destroy_node", app_name, node_id)
        node = self._node(app_name, node_id)
        if node.state == "started" and not force:
            raise ClientError(f"node {node_id} is running", status_code=412)
        node.state = "destroyed"

    async def acquire_lease(self, app_name: str, node_id: str, ttl: int) -> Lease:
        self._record("acquire_lease", app_name, node_id)
        self._node(app_name, node_id)
        if (app_name, node_id) in self.leases:
            raise ClientError(f"node {node_id} is already leased", status_code=409)
        nonce = uuid.uuid4().hex
        self.leases[(app_name, node_id)] = nonce
        return Lease.from_ttl(node_id, nonce, ttl)

    async def release_lease(self, app_name: str, node_id: str, nonce: str) -> None:
        self._record("release_lease", app_name, node_id)
        if self.leases.get((app_name, node_id)) != nonce:
            raise ClientError(f"no lease on {node_id} for nonce", status_code=404)
        del self.leases[(app_name, node_id)]


class InMemorySecretsStore(_Recorder, SecretsStore):
    """App secrets kept in local memory."""

    def __init__(self, journal: Optional[List[Call]] = None) -> None:
        super().__init__(journal)
        self.secrets: Dict[str, Dict[str, str]] = {}

    async def set_secrets(self, app_name: str, secrets: Dict[str, str]) -> None:
        self._record("set_secrets", app_name, *sorted(secrets))
        self.secrets.setdefault(app_name, {}).update(secrets)

    async def unset_secrets(self, app_name: str, keys: List[str]) -> List[str]:
        self._record("unset_secrets", app_name, *keys)
        stored = self.secrets.get(app_name, {})
        removed = [key for key in keys if key in stored]
        for key in removed:
            del stored[key]
        return removed


class InMemoryCluster(_Recorder, ClusterClient):
    """Database users kept in local memory."""

    def __init__(self, journal: Optional[List[Call]] = None) -> None:
        super().__init__(journal)
        self.users: Dict[str, Tuple[str, bool]] = {}

    async def list_users(self) -> List[str]:
        self._record("list_users")
        return list(self.users)

    async def create_user(self, name: str, password: str, superuser: bool = False) -> None:
        self._record("create_user", name)
        if name in self.users:
            raise ClientError(f"user {name} already exists", status_code=409)
        self.users[name] = (password, superuser)

    async def delete_user(self, name: str) -> None:
        self._record("delete_user", name)
        if name not in self.users:
            raise ClientError(f"user {name} not found", status_code=404)
        del self.users[name]
