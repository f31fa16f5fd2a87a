"""Client factory and initialization."""

from __future__ import annotations

import os
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..config import PgferryConfig, load_config
from .base import ClusterClient, FleetAPI, SecretsStore
from .inmemory import InMemoryCluster, InMemoryFleet, InMemorySecretsStore


@dataclass
class Clients:
    """The external services one import run talks to."""

    fleet: FleetAPI
    secrets: SecretsStore
    cluster_factory: Callable[[str], ClusterClient]
    _opened: List[object] = field(default_factory=list)

    def cluster(self, app_name: str) -> ClusterClient:
        client = self.cluster_factory(app_name)
        self._opened.append(client)
        return client

    async def close(self) -> None:
        """Close every service that holds a connection.

        Every service is closed even when another one fails to close; the
        last failure is raised afterwards.
        """
        services = [self.fleet, self.secrets, *self._opened]
        self._opened.clear()
        async with AsyncExitStack() as stack:
            for service in services:
                close = getattr(service, "close", None)
                if close is not None:
                    stack.push_async_callback(close)


def get_clients(
    backend: Optional[str] = None, config: Optional[PgferryConfig] = None
) -> Clients:
    """Factory function to get the configured clients."""

    config = config or load_config()
    backend = (backend or os.getenv("PGFERRY_BACKEND") or config.backend).lower()

    if backend == "inmemory":
        cluster = InMemoryCluster()
        return Clients(
            fleet=InMemoryFleet(),
            secrets=InMemorySecretsStore(),
            cluster_factory=lambda app_name: cluster,
        )
    elif backend == "http":
        from .http import HttpClusterClient, HttpFleetClient, HttpSecretsStore

        if not config.api.token:
            raise ValueError(
                "An API token is required; set PGFERRY_API_TOKEN or api.token"
            )
        return Clients(
            fleet=HttpFleetClient(config.api),
            secrets=HttpSecretsStore(config.api),
            cluster_factory=lambda app_name: HttpClusterClient(
                app_name, config.cluster, timeout=config.api.timeout
            ),
        )
    else:
        raise ValueError(f"Unsupported client backend: {backend}")


__all__ = [
    "Clients",
    "ClusterClient",
    "FleetAPI",
    "SecretsStore",
    "InMemoryCluster",
    "InMemoryFleet",
    "InMemorySecretsStore",
    "get_clients",
]
