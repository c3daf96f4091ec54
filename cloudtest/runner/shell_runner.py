"""Shell script runner: the whole `run` script is one test case."""

import logging

from ..cluster.instance import ClusterInstance
from ..utils.process import CancelScope, run_script
from ..utils.substitution import substitute_variables
from .base import ConfigurationError, TestEntry, TestRunner
from ..reporting.model import TestCase

logger = logging.getLogger(__name__)


class ShellTestRunner(TestRunner):
    """Runs the execution's `run` script with bash."""

    def entries(self) -> list[TestEntry]:
        if not self.execution.run.strip():
            raise ConfigurationError(f"Shell execution '{self.execution.name}' has no run script")
        return [TestEntry(name=self.execution.name)]

    def run_entry(
        self,
        entry: TestEntry,
        cluster_set: list[ClusterInstance],
        scope: CancelScope,
    ) -> TestCase:
        env = self.environment(cluster_set, entry.name)
        script = substitute_variables(
            self.execution.run, env, self.arguments(cluster_set, entry.name)
        )

        logger.info(
            "Execution %s: running shell script on %s",
            self.execution.name, ", ".join(i.id for i in cluster_set),
        )
        # Bounded by the branch watchdog, whose budget for one entry is the execution timeout
        result = run_script(script, env=env, scope=scope)
        return self.to_test_case(entry.name, result, scope)
