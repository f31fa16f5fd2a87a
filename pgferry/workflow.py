"""Workflow state and the compensation stack of an import run."""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from .contracts import ProvisionedResource
from .errors import CompensationError, InvalidStateTransition

logger = logging.getLogger(__name__)


class WorkflowState(str, enum.Enum):
    DISCOVERING = "discovering"
    PROVISIONING = "provisioning"
    AWAITING_READY = "awaiting_ready"
    LEASING = "leasing"
    EXECUTING = "executing"
    UNWINDING = "unwinding"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS: Dict[WorkflowState, FrozenSet[WorkflowState]] = {
    WorkflowState.DISCOVERING: frozenset(
        {WorkflowState.PROVISIONING, WorkflowState.FAILED}
    ),
    WorkflowState.PROVISIONING: frozenset(
        {WorkflowState.AWAITING_READY, WorkflowState.UNWINDING}
    ),
    WorkflowState.AWAITING_READY: frozenset(
        {WorkflowState.LEASING, WorkflowState.UNWINDING}
    ),
    WorkflowState.LEASING: frozenset({WorkflowState.EXECUTING, WorkflowState.UNWINDING}),
    WorkflowState.EXECUTING: frozenset({WorkflowState.UNWINDING}),
    WorkflowState.UNWINDING: frozenset({WorkflowState.DONE, WorkflowState.FAILED}),
    WorkflowState.DONE: frozenset(),
    WorkflowState.FAILED: frozenset(),
}


class CompensationRecord(BaseModel):
    """Record of a compensation that has run."""

    name: str
    resource: ProvisionedResource
    status: str
    error: Optional[str] = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Compensation:
    """Undo action for one provisioned resource."""

    name: str
    resource: ProvisionedResource
    action: Callable[[], Awaitable[None]]


class CompensationStack:
    """Compensations pushed on success and run most-recent-first.

    ``push`` is for the sequential steps. Concurrent steps use
    ``push_locked`` so that pushes from several tasks are serialised.
    """

    def __init__(self) -> None:
        self._items: List[Compensation] = []
        self._lock = asyncio.Lock()
        self.executed: List[CompensationRecord] = []
        self.errors: List[CompensationError] = []

    def __len__(self) -> int:
        return len(self._items)

    @property
    def pending(self) -> List[Compensation]:
        """Registered compensations in registration order."""
        return list(self._items)

    def push(
        self,
        name: str,
        resource: ProvisionedResource,
        action: Callable[[], Awaitable[None]],
    ) -> None:
        self._items.append(Compensation(name=name, resource=resource, action=action))
        logger.debug(f"Registered compensation {name}")

    async def push_locked(
        self,
        name: str,
        resource: ProvisionedResource,
        action: Callable[[], Awaitable[None]],
    ) -> None:
        async with self._lock:
            self.push(name, resource, action)

    async def unwind(self) -> List[CompensationError]:
        """Run every compensation in reverse order and drain the stack.

        A failing compensation never stops the ones after it. Failures are
        collected in ``errors`` and returned, not raised. Each compensation
        runs in its own task, so a cancellation arriving mid-unwind neither
        interrupts it nor skips the rest. It is re-raised once the stack is
        empty.
        """
        errors = self.errors
        cancelled = False
        while self._items:
            compensation = self._items.pop()
            action = asyncio.ensure_future(compensation.action())
            while not action.done():
                try:
                    # wait() leaves the action running when this task is cancelled.
                    await asyncio.wait({action})
                except asyncio.CancelledError:
                    cancelled = True
            try:
                action.result()
            except asyncio.CancelledError as e:
                cancelled = True
                errors.append(self._failed(compensation, e))
            except Exception as e:
                errors.append(self._failed(compensation, e))
            else:
                logger.info(f"Compensation {compensation.name} completed")
                self.executed.append(
                    CompensationRecord(
                        name=compensation.name,
                        resource=compensation.resource,
                        status="completed",
                    )
                )
        if cancelled:
            raise asyncio.CancelledError()
        return list(errors)

    def _failed(self, compensation: Compensation, cause: BaseException) -> CompensationError:
        error = CompensationError(compensation.name, cause)
        logger.warning(f"Compensation {compensation.name} failed: {cause}")
        self.executed.append(
            CompensationRecord(
                name=compensation.name,
                resource=compensation.resource,
                status="failed",
                error=str(cause) or type(cause).__name__,
            )
        )
        return error


class Workflow:
    """One import run, owned by the saga for its whole lifetime."""

    def __init__(self, app_name: str, source_uri: str) -> None:
        self.run_id = str(uuid.uuid4())
        self.app_name = app_name
        self.source_uri = source_uri
        self.target_uri: Optional[str] = None
        self.state = WorkflowState.DISCOVERING
        self.history: List[WorkflowState] = [self.state]
        self.compensations = CompensationStack()
        self.primary_error: Optional[BaseException] = None
        self.compensation_errors: List[CompensationError] = []

    @property
    def status(self) -> Optional[str]:
        """``ok`` or ``failed`` once terminal, ``None`` before."""
        if self.state == WorkflowState.DONE:
            return "ok"
        if self.state == WorkflowState.FAILED:
            return "failed"
        return None

    def transition(self, state: WorkflowState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"cannot move workflow from {self.state.value} to {state.value}"
            )
        logger.debug(f"Workflow {self.run_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, error: BaseException) -> None:
        """Record the primary error; later errors never replace it."""
        if self.primary_error is None:
            self.primary_error = error

    async def unwind(self) -> None:
        """Move to ``UNWINDING``, drain compensations and settle the outcome."""
        self.transition(WorkflowState.UNWINDING)
        try:
            await self.compensations.unwind()
        finally:
            self.compensation_errors = list(self.compensations.errors)
            if self.primary_error is None:
                self.transition(WorkflowState.DONE)
            else:
                self.transition(WorkflowState.FAILED)
