"""Exceptions raised by pgferry."""

from __future__ import annotations

from typing import List, Optional


class PgferryError(Exception):
    """Base error for pgferry.

    ``compensation_errors`` is filled in by the saga when cleanup failed
    after this error was raised.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.compensation_errors: List["CompensationError"] = []


class PreconditionError(PgferryError):
    """Target app cannot be imported into; nothing was touched."""


class DiscoveryError(PgferryError):
    """Active nodes or the leader could not be determined."""


class ProvisioningError(PgferryError):
    """A credential, secret set or worker node could not be created."""


class ReadinessError(PgferryError):
    """The worker node did not become ready."""


class ReadinessTimeoutError(ReadinessError):
    """The worker node did not reach the target state before the deadline."""


class LeaseError(PgferryError):
    """A lease could not be acquired or released."""


class ExecutionError(PgferryError):
    """The remote command failed."""

    def __init__(
        self, message: str, exit_code: Optional[int] = None, stderr: str = ""
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class CompensationError(PgferryError):
    """A cleanup step failed. Always secondary to the primary outcome."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"{step}: {cause}")
        self.step = step
        self.cause = cause


class InvalidStateTransition(PgferryError):
    """The workflow state machine was asked to make an illegal move."""


class ClientError(PgferryError):
    """An external API answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    @property
    def conflict(self) -> bool:
        return self.status_code == 409


class TransportError(PgferryError):
    """An external API could not be reached."""
