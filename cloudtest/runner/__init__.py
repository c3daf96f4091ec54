"""Runner module - Test orchestration."""

from .base import ConfigurationError, TestEntry, TestRunner
from .executor import Arguments, ExecutionScheduler, FailedTestsError, perform_testing
from .go_runner import GoTestRunner
from .kinds import create_runner
from .on_fail import FailureHookRunner
from .report_aggregator import ReportAggregator
from .shell_runner import ShellTestRunner

__all__ = [
    "ConfigurationError",
    "TestEntry",
    "TestRunner",
    "Arguments",
    "ExecutionScheduler",
    "FailedTestsError",
    "perform_testing",
    "GoTestRunner",
    "create_runner",
    "FailureHookRunner",
    "ReportAggregator",
    "ShellTestRunner",
]
