from __future__ import annotations

import asyncio
import logging

from .clients.base import FleetAPI
from .contracts import NodeHandle
from .errors import PgferryError, ReadinessError, ReadinessTimeoutError

logger = logging.getLogger(__name__)

TERMINAL_STATES = ("failed", "destroying", "destroyed")


class ReadinessWaiter:
    """Polls a node until it reaches a lifecycle state."""

    def __init__(self, fleet: FleetAPI, poll_interval: float = 1.0) -> None:
        self._fleet = fleet
        self._poll_interval = poll_interval

    async def wait_for(
        self, handle: NodeHandle, target_state: str, timeout: float
    ) -> NodeHandle:
        """Return the node once it reports ``target_state``.

        Raises:
            ReadinessTimeoutError: The deadline passed first.
            ReadinessError: The node failed, or the fleet API could not be
                reached. Transport failures are never reported as timeouts.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                current = await self._fleet.get_node(handle.app, handle.id)
            except PgferryError as e:
                raise ReadinessError(f"error checking node {handle.id}: {e}") from e

            if current.state == target_state:
                logger.info(f"Node {handle.id} is {target_state}")
                return current
            if current.state in TERMINAL_STATES:
                raise ReadinessError(
                    f"node {handle.id} is {current.state}, expected {target_state}"
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ReadinessTimeoutError(
                    f"node {handle.id} did not reach {target_state} within {timeout:g}s"
                    f" (last state: {current.state})"
                )
            logger.debug(f"Node {handle.id} is {current.state}, waiting")
            await asyncio.sleep(min(self._poll_interval, remaining))
