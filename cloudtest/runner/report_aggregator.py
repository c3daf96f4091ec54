"""Report aggregation.

Builds the suite tree of a run while executions are still in flight and
keeps tests/failures rolled up at every node.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Optional

from ..reporting.model import Report, Suite, TestCase


class ReportAggregator:
    """Builds the suite tree and keeps its counters consistent.

    Concurrent workers mutate disjoint subtrees but share the counters of
    every ancestor, so all mutations go through one lock.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._started = time.monotonic()

    def new_suite(self, name: str) -> Suite:
        return Suite(name=name)

    def record(self, parent: Suite, test_cases: list[TestCase]) -> None:
        """Append test cases to a leaf suite.

        Raises:
            ValueError: If the suite already holds child suites.
        """
        with self._lock:
            if parent.suites:
                raise ValueError(f"Suite '{parent.name}' holds suites, cannot record test cases")
            parent.test_cases.extend(test_cases)
            parent.duration += sum(tc.duration for tc in test_cases)
            self._recount(parent)

    def attach(self, parent: Suite, child: Suite) -> None:
        """Append child to parent's suites.

        Raises:
            ValueError: If parent holds test cases or child is already attached.
        """
        with self._lock:
            if parent.test_cases:
                raise ValueError(f"Suite '{parent.name}' holds test cases, cannot attach suites")
            if child.parent is not None:
                raise ValueError(f"Suite '{child.name}' is already attached to '{child.parent.name}'")
            if child is parent:
                raise ValueError("Cannot attach a suite to itself")
            child.parent = parent
            parent.suites.append(child)
            self._recount(parent)

    def finalize(self, root: Suite) -> Report:
        """Snapshot the tree rooted at root into a Report."""
        with self._lock:
            return Report(
                suites=(_snapshot(root),),
                duration=time.monotonic() - self._started,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )

    def _recount(self, suite: Suite) -> None:
        node: Optional[Suite] = suite
        while node is not None:
            node.tests = sum(s.tests for s in node.suites) + len(node.test_cases)
            node.failures = sum(s.failures for s in node.suites) + sum(
                1 for tc in node.test_cases if tc.failed
            )
            if node.suites:
                node.duration = max(s.duration for s in node.suites)
            node = node.parent


def _snapshot(suite: Suite) -> Suite:
    return Suite(
        name=suite.name,
        tests=suite.tests,
        failures=suite.failures,
        suites=[_snapshot(s) for s in suite.suites],
        test_cases=list(suite.test_cases),
        duration=suite.duration,
    )
