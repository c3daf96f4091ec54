"""Closed set of runner kinds."""

from ..config.schema import Execution, ExecutionKind
from .base import ConfigurationError, TestRunner
from .go_runner import GoTestRunner
from .shell_runner import ShellTestRunner

RUNNERS: dict[str, type[TestRunner]] = {
    ExecutionKind.GO.value: GoTestRunner,
    ExecutionKind.SHELL.value: ShellTestRunner,
}


def create_runner(execution: Execution) -> TestRunner:
    """Runner for the execution's kind.

    Raises:
        ConfigurationError: If the kind is unknown.
    """
    runner_cls = RUNNERS.get(execution.kind)
    if runner_cls is None:
        raise ConfigurationError(
            f"Unknown execution kind '{execution.kind}'. Must be one of: {', '.join(sorted(RUNNERS))}"
        )
    return runner_cls(execution)
