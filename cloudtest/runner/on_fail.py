"""On-fail diagnostic hooks.

When a branch of an execution produced a failing test case, the
execution's `on_fail` script runs once per participating cluster instance
with KUBECONFIG bound to that instance. Its output is appended to every
failing test case of the branch; the hook never changes a verdict.
"""

import logging
from typing import Optional

from ..cluster.instance import ClusterInstance, cluster_bindings
from ..config.schema import Execution
from ..utils.process import CancelScope, describe_result, run_script
from ..utils.substitution import build_environment, substitute_variables
from ..reporting.model import TestCase

logger = logging.getLogger(__name__)

# Value of $(test-name) while a hook runs
HOOK_TEST_NAME = "OnFail"


class FailureHookRunner:
    """Runs an execution's on_fail script against each cluster of a branch."""

    def __init__(self, timeout: Optional[float] = None):
        """Initialize hook runner.

        Args:
            timeout: Limit per hook invocation. Default: the execution timeout.
        """
        self.timeout = timeout

    def run(
        self,
        execution: Execution,
        cluster_set: list[ClusterInstance],
        test_cases: list[TestCase],
    ) -> list[TestCase]:
        """Run the hook if needed and return the (possibly annotated) test cases."""
        if not execution.on_fail.strip() or not any(tc.failed for tc in test_cases):
            return test_cases

        ready = [instance for instance in cluster_set if instance.is_ready]
        if not ready:
            logger.info("OnFail: no ready clusters for %s, skipping hook", execution.name)
            return test_cases

        outputs = [self._run_on(execution, instance, cluster_set) for instance in ready]
        text = "\n".join(outputs)

        return [
            TestCase(name=tc.name, failure=tc.failure.append(text), duration=tc.duration)
            if tc.failed else tc
            for tc in test_cases
        ]

    def _run_on(
        self,
        execution: Execution,
        instance: ClusterInstance,
        cluster_set: list[ClusterInstance],
    ) -> str:
        logger.info("OnFail: running on fail script operations with %s", instance.id)

        args = {
            "test-name": HOOK_TEST_NAME,
            "execution-name": execution.name,
            "cluster-name": instance.id,
            "provider-name": instance.provider_name,
        }
        bindings = {**cluster_bindings(cluster_set), **instance.bindings()}
        env = build_environment(execution.env, bindings=bindings, args=args)
        script = substitute_variables(execution.on_fail, env, args)

        # Fresh scope: hooks still run after the branch was cancelled
        timeout = self.timeout or execution.timeout
        result = run_script(script, env=env, timeout=timeout, scope=CancelScope())

        if not result.ok:
            logger.warning(
                "OnFail: hook for %s on %s failed (%s)",
                execution.name, instance.id, describe_result(result, timeout),
            )

        return f"OnFail output ({instance.id}):\n{result.output}"
