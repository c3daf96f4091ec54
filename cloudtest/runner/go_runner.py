"""Go test runner.

Each discovered test function runs as its own `go test` invocation so that
a hanging or panicking test only fails itself.
"""

import logging
from pathlib import Path

from ..cluster.instance import ClusterInstance
from ..utils.process import CancelScope, run_command
from .base import ConfigurationError, TestEntry, TestRunner
from .go_discovery import discover_go_tests, filter_tests
from ..reporting.model import TestCase

logger = logging.getLogger(__name__)

GO_BINARY = "go"
NO_TESTS_MARKER = "no tests to run"


class GoTestRunner(TestRunner):
    """Runs Go test functions found under the execution's package root."""

    def entries(self) -> list[TestEntry]:
        source = self.execution.source
        try:
            discovered = discover_go_tests(Path(self.execution.package_root), source.tags)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Go test discovery failed: {e}") from e

        selected = filter_tests(discovered, source.tests)
        logger.info(
            "Execution %s: %d of %d Go tests selected",
            self.execution.name, len(selected), len(discovered),
        )
        return [TestEntry(name=t.name, package_dir=t.package_dir) for t in selected]

    def command(self, entry: TestEntry) -> list[str]:
        cmd = [
            GO_BINARY, "test", ".",
            "-count=1",
            "-v",
            f"-timeout={self.execution.timeout}s",
            "-run", f"^{entry.name}$",
        ]
        if self.execution.source.tags:
            cmd += ["-tags", ",".join(self.execution.source.tags)]
        return cmd

    def run_entry(
        self,
        entry: TestEntry,
        cluster_set: list[ClusterInstance],
        scope: CancelScope,
    ) -> TestCase:
        logger.info("Execution %s: running %s", self.execution.name, entry.name)
        result = run_command(
            self.command(entry),
            env=self.environment(cluster_set, entry.name),
            cwd=entry.package_dir,
            timeout=self.execution.timeout,
            scope=scope,
        )

        if result.ok and NO_TESTS_MARKER in result.output:
            return TestCase.failing(
                entry.name,
                f"Test not found by go test\n{result.output}",
                message="Test not found",
                duration=result.duration,
            )

        test_case = self.to_test_case(entry.name, result, scope)
        logger.info(
            "Execution %s: %s %s in %.1fs",
            self.execution.name, entry.name,
            "FAILED" if test_case.failed else "passed", result.duration,
        )
        return test_case
