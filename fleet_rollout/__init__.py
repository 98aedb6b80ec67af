from .models import (
    Role, StepOutcome, Group, InstanceRef, SyncIndexes, SizeSnapshot,
    DeploymentPlan, DeploymentConfig, DeploymentResult
)
from .errors import (
    DeploymentError, ConfigurationError, OperatorUnavailable, DeploymentInterrupted,
    StepFailure, ProviderError, ResourceWaiterError, TeardownError,
    UnhealthyDeploymentError, ConsulServerNotSyncedError
)
from .engine import DeploymentOrchestrator
from .failure import FailureHandler
from .prompts import ConsoleOperator, PolicyOperator
from .wiring import build_orchestrator

__all__ = [
    "Role", "StepOutcome", "Group", "InstanceRef", "SyncIndexes", "SizeSnapshot",
    "DeploymentPlan", "DeploymentConfig", "DeploymentResult",
    "DeploymentError", "ConfigurationError", "OperatorUnavailable", "DeploymentInterrupted",
    "StepFailure", "ProviderError", "ResourceWaiterError", "TeardownError",
    "UnhealthyDeploymentError", "ConsulServerNotSyncedError",
    "DeploymentOrchestrator", "FailureHandler",
    "ConsoleOperator", "PolicyOperator", "build_orchestrator",
]
