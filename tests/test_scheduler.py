"""
End-to-end runs through perform_testing and ExecutionScheduler.

Providers are shell scripts and Go executions run against the stub `go`
from conftest, so every run here finishes in a few seconds.
"""

from pathlib import Path

import pytest

from cloudtest.cluster.pool import ClusterProviderPool
from cloudtest.config.schema import Execution, ExecutionSource
from cloudtest.reporting.model import Report, Suite
from cloudtest.runner.executor import Arguments, ExecutionScheduler, FailedTestsError, perform_testing
from cloudtest.runner.go_runner import GoTestRunner
from cloudtest.utils.log_keeper import LogKeeper


def go_execution(package: Path, name: str = "sample", **kwargs) -> Execution:
    return Execution(name=name, kind="go", package_root=str(package), timeout=30, **kwargs)


def shell_execution(name: str, run: str, **kwargs) -> Execution:
    return Execution(name=name, kind="shell", run=run, timeout=10, **kwargs)


def assert_rollup(suite: Suite) -> None:
    for node in suite.walk():
        expected_tests = sum(s.tests for s in node.suites) + len(node.test_cases)
        expected_failures = sum(s.failures for s in node.suites) + sum(
            1 for tc in node.test_cases if tc.failed
        )
        assert node.tests == expected_tests, f"tests mismatch at {node.name}"
        assert node.failures == expected_failures, f"failures mismatch at {node.name}"
        assert not (node.suites and node.test_cases), f"{node.name} mixes suites and test cases"


def run_failing(config, **kwargs) -> Report:
    with pytest.raises(FailedTestsError) as exc_info:
        perform_testing(config, **kwargs)
    report = exc_info.value.report
    assert str(exc_info.value) == f"there is failed tests {report.failures}"
    return report


# =============================================================================
# Scenarios
# =============================================================================


def test_failed_provider_start_fails_its_branches(config, create_provider, fake_go, sample_package):
    """A provider whose start script fails contributes only synthesized failures."""
    create_provider(config, "a_provider")
    b_provider = create_provider(config, "b_provider")
    b_provider.scripts["start"] = "echo starting b; exit 2"
    config.executions.append(go_execution(sample_package))

    with pytest.raises(FailedTestsError) as exc_info:
        perform_testing(config)

    assert str(exc_info.value) == "there is failed tests 3"
    report = exc_info.value.report
    assert_rollup(report.root)

    execution_suite = report.root.find("sample")
    assert [s.name for s in execution_suite.suites] == ["a_provider", "b_provider"]

    a_suite = execution_suite.find("a_provider")
    assert (a_suite.tests, a_suite.failures) == (6, 1)
    assert [s.name for s in a_suite.suites] == ["a_provider-1", "a_provider-2"]
    assert [s.tests for s in a_suite.suites] == [3, 3]

    b_suite = execution_suite.find("b_provider")
    assert (b_suite.tests, b_suite.failures) == (2, 2)
    assert b_suite.suites == [], "a provider that never started has no shard suites"
    assert len(b_suite.test_cases) == 2
    assert sorted(tc.name for tc in b_suite.test_cases) == ["b_provider-1", "b_provider-2"]
    for tc in b_suite.test_cases:
        assert tc.failure.message == "Provider start failure"
        assert "starting b" in tc.failure.contents


def test_filtered_tests_with_timeout(config, create_provider, fake_go, sample_package):
    """Only the filtered tests run; a timed out test counts as a failure."""
    create_provider(config, "a_provider", instances=1)
    config.executions.append(Execution(
        name="filtered",
        package_root=str(sample_package),
        timeout=2,
        source=ExecutionSource(tests=["TestPass", "TestTimeout", "TestFail"]),
    ))

    report = run_failing(config)

    assert report.failures == 2
    assert report.tests == 3
    execution_suite = report.root.find("filtered")
    assert len(execution_suite.suites) == 1

    cases = {tc.name: tc for tc in execution_suite.suites[0].test_cases}
    assert list(cases) == ["TestPass", "TestFail", "TestTimeout"]
    assert not cases["TestPass"].failed
    assert cases["TestTimeout"].failure.message == "Test timeout"
    assert cases["TestFail"].failure.message == "Test failed"
    assert "--- FAIL: TestFail" in cases["TestFail"].failure.contents


def test_go_on_fail_output_attached_to_failing_case(config, create_provider, fake_go, sample_package):
    """The on_fail output lands on the failing case only."""
    create_provider(config, "a_provider", instances=1)
    config.executions.append(go_execution(
        sample_package,
        source=ExecutionSource(tests=["TestPass", "TestFail", "TestPass2"]),
        on_fail="echo '>>>Running on fail script<<<'",
    ))

    report = run_failing(config)

    assert report.failures == 1
    cases = report.root.find("sample").find("a_provider").test_cases
    for tc in cases:
        if tc.name == "TestFail":
            assert ">>>Running on fail script<<<" in tc.failure.contents
        else:
            assert tc.failure is None, f"{tc.name} should pass"


def test_shell_on_fail_uses_bound_env(config, create_provider):
    """Hook-time substitution resolves $(test-name) to OnFail through execution env."""
    create_provider(config, "a_provider", instances=1)
    config.executions.append(shell_execution(
        "fail",
        run="echo )))",
        env=["name=$(test-name)"],
        on_fail="echo '>>>Running on fail script with ${name}<<<'",
    ))
    config.executions.append(shell_execution("pass", run="echo passing"))

    report = run_failing(config)

    assert report.failures == 1
    failed = report.root.find("fail").find("a_provider").test_cases[0]
    assert failed.name == "fail"
    assert ">>>Running on fail script with OnFail<<<" in failed.failure.contents

    passed = report.root.find("pass").find("a_provider").test_cases[0]
    assert passed.failure is None


def test_interdomain_hook_runs_once_per_participant(config, create_provider):
    """A selector execution runs its hook for every cluster of the set."""
    a_provider = create_provider(config, "a_provider", instances=1)
    b_provider = create_provider(config, "b_provider", instances=1)
    a_provider.scripts["config"] = "echo ./.tests/a_config"
    b_provider.scripts["config"] = "echo ./.tests/b_config"
    config.executions.append(shell_execution(
        "interdomain",
        run="echo ${KUBECONFIG_A_PROVIDER} ${KUBECONFIG_B_PROVIDER}; exit 1",
        cluster_count=2,
        cluster_selector=["a_provider", "b_provider"],
        on_fail="echo hook config=${KUBECONFIG}",
    ))

    with LogKeeper() as keeper:
        report = run_failing(config)

    assert keeper.message_count("OnFail: running on fail script operations with") == 2

    execution_suite = report.root.find("interdomain")
    assert [s.name for s in execution_suite.suites] == ["a_provider-b_provider"]
    case = execution_suite.suites[0].test_cases[0]
    assert "./.tests/a_config ./.tests/b_config" in case.failure.contents
    assert "hook config=./.tests/a_config" in case.failure.contents
    assert "hook config=./.tests/b_config" in case.failure.contents


# =============================================================================
# Verdict and report
# =============================================================================


def test_passing_run_returns_report(config, create_provider):
    """No failure means no error and a complete report."""
    create_provider(config, "a_provider")
    config.executions.append(shell_execution("ok", run="echo fine"))

    report = perform_testing(config)

    assert report.failures == 0
    assert report.tests == 1
    assert report.root.name == "All tests"
    assert report.timestamp


def test_junit_report_written_for_failing_run(tmp_path, config, create_provider):
    """The JUnit file is written before the verdict is raised."""
    create_provider(config, "a_provider")
    config.executions.append(shell_execution("broken", run="exit 3"))
    config.reporting.junit_report_file = str(tmp_path / "reports" / "junit.xml")

    run_failing(config)

    content = (tmp_path / "reports" / "junit.xml").read_text()
    assert "<testsuites" in content
    assert 'name="broken"' in content


def test_every_instance_is_stopped(tmp_path, config, create_provider, fake_go, sample_package):
    """Each started instance runs its stop script exactly once."""
    stops = tmp_path / "stops.log"
    provider = create_provider(config, "a_provider")
    provider.scripts["stop"] = f"echo $(cluster-name) >> {stops}"
    config.executions.append(go_execution(
        sample_package, source=ExecutionSource(tests=["TestPass", "TestPass2"])
    ))

    perform_testing(config)

    assert sorted(stops.read_text().split()) == ["a_provider-1", "a_provider-2"]


def test_empty_filter_records_nothing(config, create_provider, fake_go, sample_package):
    """An execution whose filter matches nothing has no test cases."""
    create_provider(config, "a_provider")
    config.executions.append(go_execution(
        sample_package, source=ExecutionSource(tests=["TestDoesNotExist"])
    ))

    report = perform_testing(config)

    assert report.tests == 0
    assert report.root.find("sample").suites == []


def test_build_tags_select_tagged_tests(config, create_provider, fake_go, sample_package):
    """Tagged test files only contribute when their tag is requested."""
    create_provider(config, "a_provider", instances=1)
    config.executions.append(go_execution(
        sample_package,
        source=ExecutionSource(tests=["TestFail1", "TestFail2", "TestPass"], tags=["failed_limit"]),
    ))

    report = run_failing(config)

    names = [tc.name for tc in report.root.find("sample").find("a_provider").test_cases]
    assert names == ["TestFail1", "TestFail2", "TestPass"]
    assert report.failures == 2


def test_executions_attached_in_declaration_order(config, create_provider):
    """Suite order follows the configuration, not completion order."""
    create_provider(config, "a_provider", instances=2)
    config.executions.append(shell_execution("slow", run="sleep 1"))
    config.executions.append(shell_execution("fast", run="true"))

    report = perform_testing(config)

    assert [s.name for s in report.root.suites] == ["slow", "fast"]


# =============================================================================
# Configuration problems
# =============================================================================


def test_selector_count_mismatch_is_a_failing_case(tmp_path, config, create_provider):
    """A selector that disagrees with cluster_count fails without starting clusters."""
    starts = tmp_path / "starts.log"
    provider = create_provider(config, "a_provider")
    provider.scripts["start"] = f"echo started >> {starts}"
    config.executions.append(shell_execution(
        "mismatch", run="true", cluster_count=2, cluster_selector=["a_provider"]
    ))

    report = run_failing(config)

    suite = report.root.find("mismatch")
    assert [tc.name for tc in suite.test_cases] == ["mismatch"]
    assert suite.test_cases[0].failure.message == "Configuration error"
    assert not starts.exists()


def test_cluster_count_without_selector(config, create_provider):
    """cluster_count above one needs a selector."""
    create_provider(config, "a_provider")
    config.executions.append(shell_execution("multi", run="true", cluster_count=2))

    report = run_failing(config)

    case = report.root.find("multi").test_cases[0]
    assert "requires a cluster_selector" in case.failure.contents


def test_unknown_selector_provider(config, create_provider):
    create_provider(config, "a_provider")
    config.executions.append(shell_execution(
        "unknown", run="true", cluster_count=1, cluster_selector=["z_provider"]
    ))

    report = run_failing(config)

    assert "z_provider" in report.root.find("unknown").test_cases[0].failure.contents


def test_missing_package_root(tmp_path, config, create_provider):
    create_provider(config, "a_provider")
    config.executions.append(go_execution(tmp_path / "nowhere", name="lost"))

    report = run_failing(config)

    case = report.root.find("lost").test_cases[0]
    assert case.failure.message == "Configuration error"
    assert "Go test discovery failed" in case.failure.contents


def test_no_available_providers(config, create_provider):
    provider = create_provider(config, "a_provider")
    provider.enabled = False
    config.executions.append(shell_execution("orphan", run="true"))

    report = run_failing(config)

    assert "No cluster providers available" in report.root.find("orphan").test_cases[0].failure.contents


def test_directory_named_like_a_test_file_is_skipped(config, create_provider, fake_go, sample_package):
    """Only regular files are scanned for tests."""
    (sample_package / "fixtures_test.go").mkdir()
    create_provider(config, "a_provider", instances=1)
    config.executions.append(go_execution(sample_package, source=ExecutionSource(tests=["TestPass"])))
    config.executions.append(shell_execution("other", run="true"))

    report = perform_testing(config)

    assert report.tests == 2
    assert [s.name for s in report.root.suites] == ["sample", "other"]


def test_unexpected_planning_error_fails_only_its_execution(config, create_provider, monkeypatch):
    """An execution that blows up while planning does not take the run down."""
    def explode(self):
        raise RuntimeError("discovery exploded")

    monkeypatch.setattr(GoTestRunner, "entries", explode)
    create_provider(config, "a_provider")
    config.executions.append(Execution(name="broken", package_root="."))
    config.executions.append(shell_execution("other", run="true"))

    report = run_failing(config)

    assert report.failures == 1
    case = report.root.find("broken").test_cases[0]
    assert case.failure.message == "Internal error"
    assert "RuntimeError: discovery exploded" in case.failure.contents
    assert report.root.find("other").failures == 0


# =============================================================================
# Arguments
# =============================================================================


def test_arguments_restrict_executions_and_providers(config, create_provider):
    """Only the named execution runs, only on the named provider."""
    create_provider(config, "a_provider")
    create_provider(config, "b_provider")
    config.executions.append(shell_execution("first", run="true"))
    config.executions.append(shell_execution("second", run="true"))

    report = perform_testing(
        config, arguments=Arguments(providers=["b_provider"], executions=["second"])
    )

    assert [s.name for s in report.root.suites] == ["second"]
    assert [s.name for s in report.root.suites[0].suites] == ["b_provider"]


def test_disabled_provider_is_skipped(config, create_provider):
    create_provider(config, "a_provider")
    create_provider(config, "b_provider").enabled = False
    config.executions.append(shell_execution("only_a", run="true"))

    report = perform_testing(config)

    assert [s.name for s in report.root.find("only_a").suites] == ["a_provider"]


# =============================================================================
# Cancellation
# =============================================================================


def test_run_timeout_cancels_in_flight_and_pending(config, create_provider, fake_go, sample_package):
    """Run timeout fails the running test, the rest of its branch and queued executions."""
    config.timeout = 1
    config.workers = 1
    create_provider(config, "a_provider", instances=1)
    config.executions.append(go_execution(
        sample_package, name="long", source=ExecutionSource(tests=["TestTimeout", "TestPass"])
    ))
    config.executions.append(shell_execution("queued", run="true"))

    report = run_failing(config)

    assert_rollup(report.root)
    long_cases = {tc.name: tc for tc in report.root.find("long").find("a_provider").test_cases}
    assert long_cases["TestTimeout"].failure.message.startswith("Test cancelled: Run timeout")
    assert long_cases["TestPass"].failure.message == "Run timeout"

    queued = report.root.find("queued").test_cases
    assert [tc.name for tc in queued] == ["queued"]
    assert queued[0].failure.message == "Run timeout"
    assert report.failures == 3


def test_scheduler_cancel_marks_branches_cancelled(config, create_provider):
    """An explicit cancel before run records every execution as not started."""
    create_provider(config, "a_provider")
    config.executions.append(shell_execution("never", run="true"))
    pool = ClusterProviderPool(config.providers, config.config_root)
    scheduler = ExecutionScheduler(config, pool)

    scheduler.cancel("Run timeout: stopped by test")
    report = scheduler.run()
    pool.shutdown_all()

    case = report.root.find("never").test_cases[0]
    assert "stopped by test" in case.failure.contents
    assert pool.live_instances == []


def test_on_fail_runs_after_execution_timeout(config, create_provider):
    """The watchdog cancels the script and the hook still reports."""
    create_provider(config, "a_provider", instances=1)
    config.executions.append(Execution(
        name="hanging", kind="shell", run="sleep 30", timeout=1, on_fail="echo HOOK-MARKER",
    ))

    report = run_failing(config)

    case = report.root.find("hanging").find("a_provider").test_cases[0]
    assert case.failure.message.startswith("Test cancelled: Execution timeout")
    assert "OnFail output (a_provider-1):\nHOOK-MARKER" in case.failure.contents


def test_on_fail_runs_after_run_timeout(config, create_provider):
    """Run-wide cancellation also leaves room for the hook."""
    config.timeout = 1
    create_provider(config, "a_provider", instances=1)
    config.executions.append(Execution(
        name="hanging", kind="shell", run="sleep 30", timeout=60, on_fail="echo HOOK-MARKER",
    ))

    report = run_failing(config)

    case = report.root.find("hanging").find("a_provider").test_cases[0]
    assert case.failure.message.startswith("Test cancelled: Run timeout")
    assert "HOOK-MARKER" in case.failure.contents
