import re

from .errors import OperatorUnavailable
from .logger import get_logger

_INTEGER = re.compile(r"\A\d+\Z")


class ConsoleOperator:
    """Blocking terminal prompts. Waits as long as it takes for an answer."""

    def __init__(self, input_fn=input, output=print):
        self._input = input_fn
        self._output = output

    def _read(self, prompt):
        try:
            return self._input(prompt).strip()
        except EOFError as e:
            raise OperatorUnavailable("no operator input available (EOF on stdin)") from e

    def begin_deployment(self):
        pass

    def ask_yes_no(self, question):
        while True:
            answer = self._read(f"{question} (y/n): ").lower()
            if answer in ("y", "n"):
                return answer == "y"
            self._output("Invalid selection")

    def ask_choice(self, question, options):
        options = list(options)
        while True:
            self._output(f"\n{question}")
            for idx, option in enumerate(options, start=1):
                self._output(f"[{idx}] {option}")
            answer = self._read("> ")
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return options[int(answer) - 1]
            self._output("Invalid selection")

    def ask_integer(self, question):
        while True:
            answer = self._read(f"{question}: ")
            if _INTEGER.match(answer):
                return int(answer)
            self._output("Value must be an integer")


class PolicyOperator:
    """Answers operator questions from a fixed policy, for unattended pipelines.

    Step failures are retried up to ``max_retries`` times per deployment,
    after which every failure is rolled back.
    """

    def __init__(self, max_retries=0, confirm=None, integers=None):
        self.max_retries = max_retries
        self.confirm = confirm  # answer to yes/no questions, None means refuse to answer
        self.integers = list(integers or [])
        self.retries_used = 0
        self.logger = get_logger("prompts")

    def begin_deployment(self):
        self.retries_used = 0

    def ask_yes_no(self, question):
        if self.confirm is None:
            raise OperatorUnavailable(f"no policy answer for: {question}")
        self.logger.info(f"Policy answered {'yes' if self.confirm else 'no'} to: {question}")
        return self.confirm

    def ask_choice(self, question, options):
        options = list(options)
        if "retry" in options and self.retries_used < self.max_retries:
            self.retries_used += 1
            self.logger.info(f"Policy chose retry ({self.retries_used}/{self.max_retries})")
            return "retry"
        if "rollback" in options:
            self.logger.info("Policy chose rollback")
            return "rollback"
        raise OperatorUnavailable(f"no policy answer for: {question}")

    def ask_integer(self, question):
        if not self.integers:
            raise OperatorUnavailable(f"no policy answer for: {question}")
        return self.integers.pop(0)
