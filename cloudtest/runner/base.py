"""Runner kinds.

An execution is run by exactly one runner kind, chosen from its `kind`
field. Every kind lists its test entries up front and then runs a slice of
them against one cluster-set.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..cluster.instance import ClusterInstance, cluster_bindings
from ..config.schema import Execution
from ..utils.process import CancelScope, CommandResult, describe_result
from ..utils.substitution import build_environment
from ..reporting.model import TestCase


class ConfigurationError(Exception):
    """An execution cannot be run as declared."""


@dataclass(frozen=True)
class TestEntry:
    """A runnable unit of an execution."""
    __test__ = False

    name: str
    package_dir: Optional[Path] = None


class TestRunner(ABC):
    """Runs the entries of one execution against a cluster-set."""
    __test__ = False

    def __init__(self, execution: Execution):
        self.execution = execution

    @abstractmethod
    def entries(self) -> list[TestEntry]:
        """Entries to run, in reporting order.

        Raises:
            ConfigurationError: If the entries cannot be determined.
        """

    @abstractmethod
    def run_entry(
        self,
        entry: TestEntry,
        cluster_set: list[ClusterInstance],
        scope: CancelScope,
    ) -> TestCase:
        """Run a single entry and turn its outcome into a test case."""

    def run(
        self,
        entries: list[TestEntry],
        cluster_set: list[ClusterInstance],
        scope: CancelScope,
    ) -> list[TestCase]:
        """Run entries sequentially.

        Stops at the first entry that finds the scope cancelled; entries
        after it get no test case and are accounted for by the caller.
        """
        results: list[TestCase] = []
        for entry in entries:
            if scope.cancelled:
                break
            results.append(self.run_entry(entry, cluster_set, scope))
        return results

    def environment(self, cluster_set: list[ClusterInstance], test_name: str) -> dict[str, str]:
        """Child environment: process env, cluster bindings, declared env."""
        return build_environment(
            self.execution.env,
            bindings=cluster_bindings(cluster_set),
            args=self.arguments(cluster_set, test_name),
        )

    def arguments(self, cluster_set: list[ClusterInstance], test_name: str) -> dict[str, str]:
        """Values for $(name) placeholders while running test_name."""
        return {
            "test-name": test_name,
            "execution-name": self.execution.name,
            "cluster-name": ",".join(i.id for i in cluster_set),
        }

    def to_test_case(self, name: str, result: CommandResult, scope: CancelScope) -> TestCase:
        if result.ok:
            return TestCase.passing(name, duration=result.duration)

        reason = describe_result(result, self.execution.timeout)
        if result.timed_out:
            message = "Test timeout"
        elif result.cancelled:
            message = f"Test cancelled: {scope.reason or 'cancelled'}"
        else:
            message = "Test failed"
        contents = f"{message} ({reason})\n{result.output}"
        return TestCase.failing(name, contents, message=message, duration=result.duration)
