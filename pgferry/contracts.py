"""Core data contracts for pgferry imports."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

ROLE_CHECK = "role"
LEADER_ROLES = ("leader", "primary")
REPLICA_ROLES = ("replica", "standby")

VERSION_LABEL = "fly.version"


class AppInfo(BaseModel):
    """Compact description of a fleet application."""

    id: str
    name: str
    organization: str
    app_type: str = "postgres"
    platform_version: str = "machines"

    @property
    def is_postgres(self) -> bool:
        return self.app_type == "postgres"


class CheckStatus(BaseModel):
    """Health check reported by a node."""

    name: str
    status: str = "passing"
    output: str = ""


class NodeInfo(BaseModel):
    """A node as reported by the fleet API."""

    id: str
    region: str
    state: str = "started"
    private_ip: str = ""
    image_repository: str = ""
    image_labels: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, str] = Field(default_factory=dict)
    checks: List[CheckStatus] = Field(default_factory=list)

    def check_output(self, name: str) -> Optional[str]:
        for check in self.checks:
            if check.name == name:
                return check.output.strip()
        return None

    @property
    def role(self) -> str:
        """Classify the node from its ``role`` check output."""
        output = (self.check_output(ROLE_CHECK) or "").lower()
        if output in LEADER_ROLES:
            return "leader"
        if output in REPLICA_ROLES:
            return "replica"
        return "unknown"

    @property
    def image_version(self) -> Optional[str]:
        return self.image_labels.get(VERSION_LABEL)


class LaunchSpec(BaseModel):
    """Input for launching a worker node."""

    app_id: str
    organization: str
    region: str
    image: str
    vm_size: str
    metadata: Dict[str, str] = Field(default_factory=dict)


class NodeHandle(BaseModel):
    """Handle to a node launched by this workflow."""

    id: str
    app: str
    region: str
    state: str = "created"
    private_ip: str = ""

    @property
    def address(self) -> str:
        """Private address usable as an ssh host."""
        if ":" in self.private_ip:
            return f"[{self.private_ip}]"
        return self.private_ip


class Lease(BaseModel):
    """A time-bounded claim on a node, released with its nonce."""

    node_id: str
    nonce: str
    expires_at: datetime
    status: str = "success"

    @classmethod
    def from_ttl(cls, node_id: str, nonce: str, ttl: int, status: str = "success") -> "Lease":
        return cls(
            node_id=node_id,
            nonce=nonce,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl),
            status=status,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


class Credential(BaseModel):
    kind: Literal["credential"] = "credential"
    name: str


class SecretSet(BaseModel):
    kind: Literal["secret_set"] = "secret_set"
    app_name: str
    keys: List[str]


class WorkerNode(BaseModel):
    kind: Literal["worker_node"] = "worker_node"
    app_name: str
    node_id: str


class LeaseClaim(BaseModel):
    kind: Literal["lease"] = "lease"
    node_id: str
    nonce: str


ProvisionedResource = Annotated[
    Union[Credential, SecretSet, WorkerNode, LeaseClaim], Field(discriminator="kind")
]


class ImportParams(BaseModel):
    """Inputs of a single import run."""

    app_name: str
    source_uri: str


class ImportResult(BaseModel):
    """Outcome of a successful import run."""

    app_name: str
    worker_id: str
    output: str
    leases_acquired: int = 0
    compensation_errors: List[str] = Field(default_factory=list)
