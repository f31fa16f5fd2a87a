"""Secure channel to private node addresses and one-shot remote commands."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from typing import List, Optional

from pydantic import BaseModel

from .config import SSHConfig
from .errors import ExecutionError

logger = logging.getLogger(__name__)


class Dialer(BaseModel):
    """Connection options for the private network of one organization."""

    organization: str
    user: str = "root"
    identity_file: Optional[str] = None
    jump_host: Optional[str] = None
    connect_timeout: int = 30

    def ssh_args(self, address: str) -> List[str]:
        host = address.strip("[]")
        args = [
            "ssh",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "StrictHostKeyChecking=no",
            "-o", "BatchMode=yes",
        ]
        if self.identity_file:
            args.extend(["-i", os.path.expanduser(self.identity_file)])
        if self.jump_host:
            args.extend(["-J", self.jump_host])
        args.append(f"{self.user}@{host}")
        return args


class SecureChannel:
    """Builds dialers from the ssh section of the configuration."""

    def __init__(self, config: SSHConfig) -> None:
        self._config = config

    def dial(self, organization: str) -> Dialer:
        if not organization:
            raise ValueError("organization is required to build a dialer")
        jump_host = self._config.jump_host
        if jump_host:
            jump_host = jump_host.format(org=organization)
        return Dialer(
            organization=organization,
            user=self._config.user,
            identity_file=self._config.identity_file,
            jump_host=jump_host,
            connect_timeout=self._config.connect_timeout,
        )


class RemoteExecutor:
    """Runs one command per call over its own ssh process."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._timeout = timeout

    async def run(self, dialer: Dialer, address: str, command: str) -> bytes:
        """Run ``command`` on ``address`` and return its stdout.

        The ssh process is always reaped before returning, including on
        timeout and cancellation.
        """
        args = dialer.ssh_args(address) + [command]
        logger.debug(f"Running {command!r} on {address}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ExecutionError(f"ssh client not found: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ExecutionError(
                f"command {command!r} on {address} timed out after {self._timeout:g}s"
            ) from e
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            stderr_str = stderr.decode(errors="replace").strip() if stderr else ""
            raise ExecutionError(
                f"command {command!r} on {address} exited with {proc.returncode}: {stderr_str}",
                exit_code=proc.returncode,
                stderr=stderr_str,
            )
        return stdout or b""
