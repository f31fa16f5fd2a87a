"""Node lease tracking on top of the fleet API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List

from .clients.base import FleetAPI
from .contracts import Lease
from .errors import LeaseError, PgferryError

logger = logging.getLogger(__name__)


class LeaseManager:
    """Acquires and releases leases on the nodes of one app.

    Mutual exclusion is enforced by the fleet API. This class only keeps
    the nonce of every lease it acquired so it can release it later.
    """

    def __init__(self, fleet: FleetAPI, app_name: str) -> None:
        self._fleet = fleet
        self._app_name = app_name
        self._held: Dict[str, Lease] = {}

    def held(self) -> List[Lease]:
        """Leases acquired and not yet released, in acquisition order."""
        return list(self._held.values())

    async def acquire(self, node_id: str, ttl: int) -> Lease:
        try:
            lease = await self._fleet.acquire_lease(self._app_name, node_id, ttl)
        except PgferryError as e:
            raise LeaseError(f"failed to obtain lease on {node_id}: {e}") from e
        self._held[node_id] = lease
        logger.info(f"Node {node_id}: lease {lease.status}")
        return lease

    async def release(self, node_id: str, nonce: str) -> None:
        lease = self._held.get(node_id)
        if lease is None or lease.nonce != nonce:
            logger.warning(f"Node {node_id}: no held lease matches the given nonce")
            raise LeaseError(f"unknown or stale lease nonce for {node_id}")

        try:
            await self._fleet.release_lease(self._app_name, node_id, nonce)
        except PgferryError as e:
            raise LeaseError(f"failed to release lease on {node_id}: {e}") from e
        del self._held[node_id]
        logger.info(f"Node {node_id}: lease released")

    def ensure_held(self, node_ids: List[str]) -> None:
        """Raise ``LeaseError`` unless every node holds an unexpired lease."""
        now = datetime.now(timezone.utc)
        for node_id in node_ids:
            lease = self._held.get(node_id)
            if lease is None:
                raise LeaseError(f"node {node_id} holds no lease")
            if lease.is_expired(now):
                raise LeaseError(
                    f"lease on {node_id} expired at {lease.expires_at.isoformat()}"
                )
