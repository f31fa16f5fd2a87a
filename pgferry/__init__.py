"""pgferry: import external Postgres databases into fleet-managed clusters."""

from .clients import Clients, get_clients
from .config import PgferryConfig, load_config
from .contracts import ImportParams, ImportResult
from .leases import LeaseManager
from .readiness import ReadinessWaiter
from .remote import RemoteExecutor, SecureChannel
from .saga import ImportContext, ImportSaga
from .workflow import CompensationStack, Workflow, WorkflowState

__version__ = "0.1.0"
__all__ = [
    "Clients",
    "CompensationStack",
    "ImportContext",
    "ImportParams",
    "ImportResult",
    "ImportSaga",
    "LeaseManager",
    "PgferryConfig",
    "ReadinessWaiter",
    "RemoteExecutor",
    "SecureChannel",
    "Workflow",
    "WorkflowState",
    "get_clients",
    "load_config",
]
