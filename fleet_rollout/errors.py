from enum import Enum


class StepOutcome(str, Enum):
    SUCCESS = "success"
    UNHEALTHY_INSTANCE = "unhealthy_instance"
    CONSENSUS_NOT_REACHED = "consensus_not_reached"
    PROVIDER_ERROR = "provider_error"


class DeploymentError(Exception):
    """Base class for everything a step deployment can raise"""


class ConfigurationError(DeploymentError, ValueError):
    """Invalid configuration or deployment plan, raised before anything is mutated"""


class OperatorUnavailable(DeploymentError):
    """The operator port could not produce an answer"""


class DeploymentInterrupted(DeploymentError):
    """The operator confirmed an abort; no rollback is attempted"""


class StepFailure(DeploymentError):
    """A failure inside one deployment step, handed to the operator for retry or rollback"""

    outcome = None
    result = None  # DeploymentResult of the rolled-back deployment, when there was one

    def __init__(self, message, group=None, instance=None):
        super().__init__(message)
        self.group = group
        self.instance = instance

    def describe(self):
        parts = [f"group={self.group}"] if self.group else []
        if self.instance:
            parts.append(f"instance={self.instance}")
        parts.append(f"cause={self}")
        return ", ".join(parts)


class ProviderError(StepFailure):
    """The cloud provider rejected or failed a group operation"""

    outcome = StepOutcome.PROVIDER_ERROR

    def __init__(self, message, group=None, instance=None, cause=None):
        super().__init__(message, group=group, instance=instance)
        self.cause = cause


class ResourceWaiterError(ProviderError):
    """A group did not converge within the waiter budget"""


class TeardownError(ProviderError):
    """The old group could not be deleted; traffic migration is already complete"""


class UnhealthyDeploymentError(StepFailure):
    """A newly added instance failed health verification"""

    outcome = StepOutcome.UNHEALTHY_INSTANCE


class ConsulServerNotSyncedError(StepFailure):
    """A new coordination server did not catch up to the leader's log"""

    outcome = StepOutcome.CONSENSUS_NOT_REACHED
