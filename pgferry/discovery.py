"""Preconditions and node discovery for the target cluster."""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from .config import VersionConfig
from .contracts import AppInfo, NodeInfo
from .errors import DiscoveryError, PreconditionError

logger = logging.getLogger(__name__)

UNSUPPORTED_PLATFORMS = ("nomad",)
STANDALONE_REPOSITORY = "flyio/postgres-standalone"

_VERSION_RE = re.compile(r"^v?(\d+(?:\.\d+)*)")


def parse_version(value: str) -> Tuple[int, ...]:
    """Parse ``v0.0.19``-style versions into comparable tuples."""
    match = _VERSION_RE.match(value.strip())
    if not match:
        raise ValueError(f"invalid version: {value!r}")
    return tuple(int(part) for part in match.group(1).split("."))


def check_app(app: AppInfo) -> None:
    """Reject apps that cannot be imported into."""
    if not app.is_postgres:
        raise PreconditionError(f"{app.name} is not a postgres app")
    if app.platform_version in UNSUPPORTED_PLATFORMS:
        raise PreconditionError(
            f"import is not supported on {app.platform_version} apps"
        )


def check_versions(nodes: List[NodeInfo], versions: VersionConfig) -> None:
    """Require every node to run an image new enough to support import."""
    for node in nodes:
        current = node.image_version
        if not current or current == "unknown":
            raise PreconditionError(
                f"node {node.id} runs an image that is not compatible with import"
            )
        if node.image_repository == STANDALONE_REPOSITORY:
            required = versions.min_standalone
        else:
            required = versions.min_ha
        try:
            too_old = parse_version(current) < parse_version(required)
        except ValueError as e:
            raise PreconditionError(f"node {node.id}: {e}") from e
        if too_old:
            raise PreconditionError(
                f"image version is not compatible. (Current: {current}, Required: >= {required})"
            )


def select_leader(nodes: List[NodeInfo]) -> NodeInfo:
    """Return the first node whose role classifies as leader."""
    if not nodes:
        raise DiscoveryError("no active nodes found")
    leader: Optional[NodeInfo] = next(
        (node for node in nodes if node.role == "leader"), None
    )
    if leader is None:
        raise DiscoveryError("no leader found among active nodes")
    logger.info(f"Leader is {leader.id} in {leader.region}")
    return leader
