from .errors import StepFailure
from .logger import get_logger

RETRY = "retry"
ROLLBACK = "rollback"


class FailureHandler:
    """Asks the operator whether a failed step should be retried or the deployment rolled back"""

    def __init__(self, operator, rollback):
        self.operator = operator
        self.rollback = rollback  # callable(target_group, source_group, snapshot)
        self.logger = get_logger("failure")

    @staticmethod
    def describe(error, target_group):
        if isinstance(error, StepFailure) and error.group:
            return error.describe()
        return f"group={target_group.name}, cause={error}"

    def decide(self, error, target_group, source_group, rollback_snapshot):
        details = self.describe(error, target_group)
        self.logger.error(f"Encountered failure state: {details}")

        choice = self.operator.ask_choice(
            f"Deployment of {target_group.name} failed ({details}). Select action from below:",
            [RETRY, ROLLBACK],
        )
        if choice == RETRY:
            self.logger.info("Retrying step deployment")
            return RETRY

        self.logger.warning(
            f"Rolling back: restoring {source_group.name} to {rollback_snapshot.desired_capacity} "
            f"instances and draining {target_group.name}"
        )
        self.rollback(target_group, source_group, rollback_snapshot)
        raise error
