"""Execution scheduler - orchestrates a cloudtest run.

Coordinates the full run:
1. Select executions and providers
2. Plan branches per execution (joint selector set or provider fan-out)
3. Acquire a scoped cluster-set per branch
4. Run the execution's runner under a watchdog
5. Run on-fail hooks for failing branches
6. Record results and roll them up into the report
"""

import logging
import math
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from ..cluster.pool import ClusterProviderPool, PoolClosedError, ProviderStartError
from ..config.schema import CloudTestConfig, ClusterProviderSpec, Execution
from ..reporting.junit_reporter import JUnitReporter
from ..reporting.model import ROOT_SUITE_NAME, Report, Suite, TestCase
from ..utils.process import CancelledError, CancelScope
from .base import ConfigurationError, TestEntry, TestRunner
from .kinds import create_runner
from .on_fail import FailureHookRunner
from .report_aggregator import ReportAggregator

logger = logging.getLogger(__name__)


@dataclass
class Arguments:
    """Run-time restrictions, usually from the command line."""
    providers: list[str] = field(default_factory=list)
    executions: list[str] = field(default_factory=list)


class FailedTestsError(Exception):
    """The run finished with failing test cases.

    The report of the run is attached as `report`.
    """

    def __init__(self, report: Report):
        super().__init__(f"there is failed tests {report.failures}")
        self.failures = report.failures
        self.report = report


@dataclass
class _Branch:
    """One cluster-set run of an execution.

    Sharded branches share their provider suite and carry a shard name;
    their shard suites are created once all results are known.
    """
    suite: Suite
    providers: list[str]
    entries: list[TestEntry]
    shard: Optional[str] = None
    results: list[TestCase] = field(default_factory=list)
    start_failed: bool = False


class ExecutionScheduler:
    """Runs every selected execution and builds the report.

    Executions run concurrently on `config.workers` threads; the branches of
    one execution run concurrently and are joined before its suite is
    attached to the root, in declaration order.
    """

    def __init__(
        self,
        config: CloudTestConfig,
        pool: ClusterProviderPool,
        aggregator: Optional[ReportAggregator] = None,
        arguments: Optional[Arguments] = None,
        hook_runner: Optional[FailureHookRunner] = None,
    ):
        self.config = config
        self.pool = pool
        self.aggregator = aggregator or ReportAggregator()
        self.arguments = arguments or Arguments()
        self.hook_runner = hook_runner or FailureHookRunner()
        self._run_scope = CancelScope()

    def cancel(self, reason: str = "Run cancelled") -> None:
        """Cancel every outstanding branch."""
        self._run_scope.cancel(reason)

    def run(self) -> Report:
        """Run all selected executions.

        Returns:
            Finalized report. Never raises for test failures.
        """
        root = self.aggregator.new_suite(ROOT_SUITE_NAME)
        executions = self._selected_executions()
        logger.info(
            "Running %d executions with %d workers, timeout %ds",
            len(executions), self.config.workers, self.config.timeout,
        )

        timer = threading.Timer(
            self.config.timeout,
            self._run_scope.cancel,
            args=(f"Run timeout after {self.config.timeout}s",),
        )
        timer.daemon = True
        timer.start()

        try:
            with ThreadPoolExecutor(
                max_workers=max(1, self.config.workers),
                thread_name_prefix="execution",
            ) as workers:
                futures = [workers.submit(self._run_execution, e) for e in executions]
                for future in futures:
                    self.aggregator.attach(root, future.result())
        finally:
            timer.cancel()

        report = self.aggregator.finalize(root)
        logger.info("Run finished: %d tests, %d failures", report.tests, report.failures)
        return report

    def _selected_executions(self) -> list[Execution]:
        wanted = self.arguments.executions
        if not wanted:
            return list(self.config.executions)
        return [e for e in self.config.executions if e.name in wanted]

    def _available_providers(self) -> list[ClusterProviderSpec]:
        return [p for p in self.config.providers if self._is_available(p)]

    def _is_available(self, provider: ClusterProviderSpec) -> bool:
        if not provider.enabled:
            return False
        return not self.arguments.providers or provider.name in self.arguments.providers

    def _run_execution(self, execution: Execution) -> Suite:
        suite = self.aggregator.new_suite(execution.name)

        if self._run_scope.cancelled:
            reason = self._run_scope.reason
            logger.warning("Execution %s not started: %s", execution.name, reason)
            self.aggregator.record(suite, [TestCase.failing(
                execution.name,
                f"{reason}: execution was not started",
                message="Run timeout",
            )])
            return suite

        try:
            runner = create_runner(execution)
            branches = self._plan(execution, suite, runner.entries())
        except ConfigurationError as e:
            logger.error("Execution %s: configuration error: %s", execution.name, e)
            return self._failed_suite(execution, str(e), "Configuration error")
        except Exception as e:
            logger.exception("Execution %s could not be planned", execution.name)
            return self._failed_suite(
                execution,
                f"Unexpected error: {type(e).__name__}: {e}\n{traceback.format_exc()}",
                "Internal error",
            )

        if not branches:
            logger.warning("Execution %s has no tests to run", execution.name)
            return suite

        with ThreadPoolExecutor(
            max_workers=len(branches),
            thread_name_prefix=f"branch-{execution.name}",
        ) as branch_workers:
            futures = [
                branch_workers.submit(self._run_branch, execution, runner, branch)
                for branch in branches
            ]
            for future in futures:
                future.result()

        self._record(branches)

        logger.info(
            "Execution %s done: %d tests, %d failures",
            execution.name, suite.tests, suite.failures,
        )
        return suite

    def _failed_suite(self, execution: Execution, contents: str, message: str) -> Suite:
        # Fresh suite: a partial plan may already have attached provider suites
        suite = self.aggregator.new_suite(execution.name)
        self.aggregator.record(suite, [TestCase.failing(execution.name, contents, message=message)])
        return suite

    def _plan(self, execution: Execution, suite: Suite, entries: list[TestEntry]) -> list[_Branch]:
        """Create the branch suites of an execution.

        Raises:
            ConfigurationError: Selector or provider set cannot satisfy the execution.
        """
        if not entries:
            return []

        if execution.cluster_selector:
            selector = execution.cluster_selector
            if len(selector) != execution.cluster_count:
                raise ConfigurationError(
                    f"cluster_selector names {len(selector)} providers "
                    f"but cluster_count is {execution.cluster_count}"
                )
            for name in selector:
                provider = self.config.provider(name)
                if provider is None:
                    raise ConfigurationError(f"Unknown cluster provider '{name}' in cluster_selector")
                if not self._is_available(provider):
                    raise ConfigurationError(f"Cluster provider '{name}' is not available")

            joint = self.aggregator.new_suite("-".join(selector))
            self.aggregator.attach(suite, joint)
            return [_Branch(suite=joint, providers=list(selector), entries=entries)]

        if execution.cluster_count > 1:
            raise ConfigurationError(
                f"cluster_count {execution.cluster_count} requires a cluster_selector"
            )

        providers = self._available_providers()
        if not providers:
            raise ConfigurationError("No cluster providers available")

        branches = []
        for provider in providers:
            provider_suite = self.aggregator.new_suite(provider.name)
            self.aggregator.attach(suite, provider_suite)

            shards = _split(entries, provider.instances)
            if len(shards) == 1:
                branches.append(_Branch(provider_suite, [provider.name], shards[0]))
                continue

            for index, shard in enumerate(shards, 1):
                branches.append(_Branch(
                    provider_suite, [provider.name], shard, shard=f"{provider.name}-{index}"
                ))

        return branches

    def _record(self, branches: list[_Branch]) -> None:
        """Record branch results into their suites.

        A provider whose every shard failed to start gets the failures on
        its own suite instead of one shard suite per failed instance.
        """
        groups: dict[int, list[_Branch]] = {}
        for branch in branches:
            groups.setdefault(id(branch.suite), []).append(branch)

        for group in groups.values():
            suite = group[0].suite
            if group[0].shard is None or all(b.start_failed for b in group):
                self.aggregator.record(suite, [tc for b in group for tc in b.results])
                continue

            for branch in group:
                shard_suite = self.aggregator.new_suite(branch.shard)
                self.aggregator.attach(suite, shard_suite)
                self.aggregator.record(shard_suite, branch.results)

    def _run_branch(self, execution: Execution, runner: TestRunner, branch: _Branch) -> None:
        scope = self._run_scope.child()

        try:
            with self.pool.cluster_set(branch.providers, scope) as cluster_set:
                results = self._run_with_watchdog(execution, runner, branch.entries, cluster_set, scope)
                results = self.hook_runner.run(execution, cluster_set, results)

        except ProviderStartError as e:
            logger.error("Execution %s: %s", execution.name, e)
            branch.start_failed = True
            results = [
                TestCase.failing(
                    instance.id,
                    f"Cluster instance {instance.id} failed to start\n{instance.output}",
                    message="Provider start failure",
                )
                for instance in e.failed
            ]

        except (CancelledError, PoolClosedError) as e:
            reason = scope.reason or str(e)
            logger.warning(
                "Execution %s on %s cancelled: %s",
                execution.name, branch.shard or branch.suite.name, reason,
            )
            results = _not_run(branch.entries, reason)

        except ValueError as e:
            logger.error("Execution %s: configuration error: %s", execution.name, e)
            results = [TestCase.failing(execution.name, str(e), message="Configuration error")]

        except Exception as e:
            logger.exception(
                "Execution %s on %s failed unexpectedly",
                execution.name, branch.shard or branch.suite.name,
            )
            results = [TestCase.failing(
                execution.name,
                f"Unexpected error: {type(e).__name__}: {e}\n{traceback.format_exc()}",
                message="Internal error",
            )]

        branch.results = results

    def _run_with_watchdog(
        self,
        execution: Execution,
        runner: TestRunner,
        entries: list[TestEntry],
        cluster_set,
        scope: CancelScope,
    ) -> list[TestCase]:
        budget = execution.timeout * len(entries)
        watchdog = threading.Timer(
            budget,
            scope.cancel,
            args=(f"Execution timeout after {budget}s",),
        )
        watchdog.daemon = True
        watchdog.start()

        try:
            results = runner.run(entries, cluster_set, scope)
        finally:
            watchdog.cancel()

        missing = entries[len(results):]
        if missing:
            results = results + _not_run(missing, scope.reason or "cancelled")
        return results


def _split(entries: list[TestEntry], shards: int) -> list[list[TestEntry]]:
    count = max(1, min(shards, len(entries)))
    size = math.ceil(len(entries) / count)
    return [entries[i:i + size] for i in range(0, len(entries), size)]


def _not_run(entries: list[TestEntry], reason: str) -> list[TestCase]:
    if reason.startswith("Run timeout"):
        message = "Run timeout"
    elif reason.startswith("Execution timeout"):
        message = "Execution timeout"
    else:
        message = "Cancelled"
    return [
        TestCase.failing(entry.name, f"{reason}: test was not run", message=message)
        for entry in entries
    ]


def perform_testing(
    config: CloudTestConfig,
    validation_factory=None,
    arguments: Optional[Arguments] = None,
) -> Report:
    """Run a complete test session.

    Cluster instances are always shut down, and the JUnit report is written
    when configured, before the verdict is returned.

    Args:
        config: Run configuration.
        validation_factory: Optional cluster readiness validation factory.
        arguments: Optional provider/execution restrictions.

    Returns:
        The report, if no test failed.

    Raises:
        FailedTestsError: If any test case failed. The report is attached.
    """
    pool = ClusterProviderPool(config.providers, config.config_root, validation_factory)
    scheduler = ExecutionScheduler(config, pool, ReportAggregator(), arguments)

    try:
        report = scheduler.run()
    finally:
        pool.shutdown_all()

    if config.reporting.junit_report_file:
        try:
            saved = JUnitReporter().save(report, config.reporting.junit_report_file)
            logger.info("JUnit report saved: %s", saved)
        except OSError as e:
            logger.warning("Failed to save JUnit report: %s", e)

    if report.failures > 0:
        raise FailedTestsError(report)
    return report
