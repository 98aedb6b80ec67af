import signal
import threading
from contextlib import contextmanager

from .errors import DeploymentInterrupted, OperatorUnavailable
from .logger import get_logger


@contextmanager
def abort_on_interrupt(operator):
    """Turn Ctrl-C into a confirmed abort for the duration of a deployment.

    A declined confirmation resumes the deployment where it was. Signal
    handlers can only be installed from the main thread; elsewhere this is a
    no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    logger = get_logger("engine")

    def handler(signum, frame):
        try:
            confirmed = operator.ask_yes_no("Are you sure you want to abort the deployment?")
        except OperatorUnavailable:
            # Nobody to ask, so the interrupt stands
            confirmed = True
        if confirmed:
            logger.error("Deployment interrupted by operator")
            raise DeploymentInterrupted("Deployment interrupted")
        logger.info("Abort declined, continuing deployment")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
