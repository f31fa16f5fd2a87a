"""Create/destroy pairs for the resources an import provisions.

Every operation is one call to the backing service. Nothing is retried;
failure policy is left to the saga.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from .clients.base import ClusterClient, FleetAPI, SecretsStore
from .contracts import LaunchSpec, NodeHandle
from .errors import PgferryError, ProvisioningError

logger = logging.getLogger(__name__)


class CredentialProvisioner:
    """Temporary database users on the target cluster."""

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    async def create(self, name: str, password: str, superuser: bool = False) -> None:
        """Create ``name``. An existing user with that name is an error."""
        try:
            if name in await self._cluster.list_users():
                raise ProvisioningError(f"user {name} already exists")
            await self._cluster.create_user(name, password, superuser)
        except ProvisioningError:
            raise
        except PgferryError as e:
            raise ProvisioningError(f"error creating user {name}: {e}") from e
        logger.info(f"Created user {name}")

    async def destroy(self, name: str) -> None:
        await self._cluster.delete_user(name)
        logger.info(f"Deleted user {name}")


class SecretProvisioner:
    """Secrets published on an app for its nodes to read."""

    def __init__(self, secrets: SecretsStore, app_name: str) -> None:
        self._secrets = secrets
        self._app_name = app_name

    async def publish(self, values: Dict[str, str]) -> None:
        try:
            await self._secrets.set_secrets(self._app_name, values)
        except PgferryError as e:
            raise ProvisioningError(f"error setting secrets: {e}") from e
        logger.info(f"Set secrets {', '.join(sorted(values))} on {self._app_name}")

    async def unpublish(self, keys: List[str]) -> List[str]:
        """Unset ``keys`` and return those that were not set.

        Missing keys are reported, never raised.
        """
        removed = await self._secrets.unset_secrets(self._app_name, keys)
        missing = [key for key in keys if key not in removed]
        if missing:
            logger.warning(
                f"Secrets {', '.join(missing)} were not set on {self._app_name}"
            )
        logger.info(f"Unset secrets on {self._app_name}")
        return missing


class WorkerProvisioner:
    """Temporary worker nodes."""

    def __init__(self, fleet: FleetAPI, app_name: str) -> None:
        self._fleet = fleet
        self._app_name = app_name

    async def launch(self, spec: LaunchSpec) -> NodeHandle:
        try:
            handle = await self._fleet.launch_node(self._app_name, spec)
        except PgferryError as e:
            raise ProvisioningError(f"error launching machine: {e}") from e
        logger.info(f"Launched worker {handle.id} in {handle.region}")
        return handle

    async def destroy(self, handle: NodeHandle, force: bool = False) -> None:
        await self._fleet.destroy_node(self._app_name, handle.id, force=force)
        logger.info(f"Destroyed worker {handle.id}")
