"""Import saga that provisions, leases, migrates and always cleans up.

The forward steps run in a fixed order. Every step that succeeds registers
its compensation on the workflow's stack straight away, so whatever ends the
run early, the stack holds exactly what has to be undone. The stack is
drained in reverse on every exit path. The first error is the one raised;
cleanup failures ride along on it as ``compensation_errors``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import List, Optional, Tuple

from .clients import Clients
from .config import PgferryConfig
from .contracts import (
    AppInfo,
    Credential,
    ImportParams,
    ImportResult,
    LaunchSpec,
    LeaseClaim,
    NodeHandle,
    NodeInfo,
    SecretSet,
    WorkerNode,
)
from .discovery import check_app, check_versions, select_leader
from .errors import DiscoveryError, PgferryError, PreconditionError
from .leases import LeaseManager
from .provisioner import CredentialProvisioner, SecretProvisioner, WorkerProvisioner
from .readiness import ReadinessWaiter
from .remote import Dialer, RemoteExecutor, SecureChannel
from .utils.strings import rand_string
from .workflow import Workflow, WorkflowState

logger = logging.getLogger(__name__)

SOURCE_URI_KEY = "SOURCE_DATABASE_URI"
TARGET_URI_KEY = "TARGET_DATABASE_URI"
USER_PREFIX = "pgferry_"


@dataclass
class ImportContext:
    """Everything an import run talks to, passed in explicitly."""

    clients: Clients
    config: PgferryConfig = field(default_factory=PgferryConfig)
    channel: Optional[SecureChannel] = None
    executor: Optional[RemoteExecutor] = None

    def __post_init__(self) -> None:
        if self.channel is None:
            self.channel = SecureChannel(self.config.ssh)
        if self.executor is None:
            self.executor = RemoteExecutor(timeout=self.config.ssh.command_timeout)


class ImportSaga:
    """Imports an external database into a cluster on the fleet."""

    def __init__(self, context: ImportContext) -> None:
        self._context = context
        self._config = context.config
        self.workflow: Optional[Workflow] = None

    async def run(self, params: ImportParams) -> ImportResult:
        """Run one import.

        Returns:
            The migrator's output and any cleanup warnings.

        Raises:
            PgferryError: The first failure, after every provisioned
                resource has been released.
        """
        workflow = Workflow(params.app_name, params.source_uri)
        self.workflow = workflow
        logger.info(f"Starting import {workflow.run_id} into {params.app_name}")

        try:
            worker, output, leases_acquired = await self._execute(workflow, params)
        except BaseException as e:
            workflow.fail(e)
            logger.error(f"Import {workflow.run_id} failed in {workflow.state.value}: {e}")
            raise
        finally:
            await self._settle(workflow)

        return ImportResult(
            app_name=params.app_name,
            worker_id=worker.id,
            output=output,
            leases_acquired=leases_acquired,
            compensation_errors=[str(e) for e in workflow.compensation_errors],
        )

    async def _settle(self, workflow: Workflow) -> None:
        if workflow.state == WorkflowState.DISCOVERING:
            workflow.transition(WorkflowState.FAILED)
            return

        await workflow.unwind()
        if workflow.compensation_errors:
            logger.warning(
                f"Import {workflow.run_id} left {len(workflow.compensation_errors)} "
                "cleanup step(s) unfinished"
            )
        primary = workflow.primary_error
        if isinstance(primary, PgferryError):
            primary.compensation_errors = list(workflow.compensation_errors)

    # ------------------------------------------------------------------
    # Forward steps
    async def _execute(
        self, workflow: Workflow, params: ImportParams
    ) -> Tuple[NodeHandle, str, int]:
        clients = self._context.clients
        stack = workflow.compensations

        app, nodes, leader = await self._discover(params.app_name)
        dialer = self._dial(app)

        workflow.transition(WorkflowState.PROVISIONING)
        credentials = CredentialProvisioner(clients.cluster(app.name))
        user = f"{USER_PREFIX}{rand_string(6)}"
        password = rand_string(16)

        logger.info("Creating temporary user on target cluster")
        await credentials.create(user, password, superuser=False)
        stack.push("delete-credential", Credential(name=user), partial(credentials.destroy, user))

        cluster_conf = self._config.cluster
        workflow.target_uri = (
            f"postgres://{user}:{password}@{app.name}.{cluster_conf.internal_domain}"
            f":{cluster_conf.database_port}/postgres"
        )
        secret_values = {
            SOURCE_URI_KEY: params.source_uri,
            TARGET_URI_KEY: workflow.target_uri,
        }
        secrets = SecretProvisioner(clients.secrets, app.name)

        logger.info("Setting secrets")
        await secrets.publish(secret_values)
        keys = list(secret_values)
        stack.push(
            "unset-secrets",
            SecretSet(app_name=app.name, keys=keys),
            partial(secrets.unpublish, keys),
        )

        migrator = self._config.migrator
        spec = LaunchSpec(
            app_id=app.id,
            organization=app.organization,
            region=leader.region,
            image=migrator.image,
            vm_size=migrator.vm_size,
            metadata={"process": migrator.process},
        )
        workers = WorkerProvisioner(clients.fleet, app.name)

        logger.info("Creating temporary machine")
        worker = await workers.launch(spec)
        stack.push(
            "destroy-worker",
            WorkerNode(app_name=app.name, node_id=worker.id),
            partial(workers.destroy, worker, force=True),
        )

        workflow.transition(WorkflowState.AWAITING_READY)
        logger.info(f"Waiting for machine {worker.id} to be ready")
        readiness = self._config.readiness
        waiter = ReadinessWaiter(clients.fleet, poll_interval=readiness.poll_interval)
        ready = await waiter.wait_for(worker, "started", timeout=readiness.timeout)

        workflow.transition(WorkflowState.LEASING)
        participants = [node.id for node in nodes] + [ready.id]
        leases = LeaseManager(clients.fleet, app.name)
        logger.info(f"Attempting to acquire {len(participants)} lease(s)")
        await self._acquire_leases(workflow, leases, participants)
        leases.ensure_held(participants)

        workflow.transition(WorkflowState.EXECUTING)
        logger.info("Running database import")
        raw = await self._context.executor.run(dialer, ready.address, migrator.command)
        output = raw.decode(errors="replace")
        logger.info("Import command completed")
        return ready, output, len(participants)

    async def _discover(self, app_name: str) -> Tuple[AppInfo, List[NodeInfo], NodeInfo]:
        fleet = self._context.clients.fleet
        try:
            app = await fleet.get_app(app_name)
        except PgferryError as e:
            if getattr(e, "not_found", False):
                raise PreconditionError(f"app {app_name} not found") from e
            raise DiscoveryError(f"error getting app {app_name}: {e}") from e
        check_app(app)

        try:
            nodes = await fleet.list_active_nodes(app.name)
        except PgferryError as e:
            raise DiscoveryError(f"machines could not be retrieved: {e}") from e
        check_versions(nodes, self._config.versions)
        leader = select_leader(nodes)
        return app, nodes, leader

    def _dial(self, app: AppInfo) -> Dialer:
        try:
            return self._context.channel.dial(app.organization)
        except ValueError as e:
            raise PreconditionError(f"can't build tunnel for {app.name}: {e}") from e

    async def _acquire_leases(
        self, workflow: Workflow, leases: LeaseManager, node_ids: List[str]
    ) -> None:
        """Lease every node, registering each release as soon as it is held."""
        ttl = self._config.leases.ttl
        stack = workflow.compensations

        if not self._config.leases.concurrent:
            for node_id in node_ids:
                lease = await leases.acquire(node_id, ttl)
                stack.push(
                    f"release-lease:{node_id}",
                    LeaseClaim(node_id=node_id, nonce=lease.nonce),
                    partial(leases.release, node_id, lease.nonce),
                )
            return

        async def acquire_one(node_id: str) -> None:
            lease = await leases.acquire(node_id, ttl)
            await stack.push_locked(
                f"release-lease:{node_id}",
                LeaseClaim(node_id=node_id, nonce=lease.nonce),
                partial(leases.release, node_id, lease.nonce),
            )

        # Every acquisition settles before raising, so nothing acquired
        # goes unregistered.
        results = await asyncio.gather(
            *(acquire_one(node_id) for node_id in node_ids), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
