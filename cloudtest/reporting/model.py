"""Result tree model.

Suites form a tree: the root holds one suite per execution, an execution
suite holds one suite per provider (or one joint suite for a selector),
and leaf suites hold test cases.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

ROOT_SUITE_NAME = "All tests"


@dataclass(frozen=True)
class Failure:
    """Diagnostic text of a failed test case."""
    contents: str
    message: str = "Failed"

    def append(self, text: str) -> "Failure":
        if not text:
            return self
        separator = "" if not self.contents or self.contents.endswith("\n") else "\n"
        return replace(self, contents=f"{self.contents}{separator}{text}")


@dataclass(frozen=True)
class TestCase:
    """A single test result."""
    __test__ = False

    name: str
    failure: Optional[Failure] = None
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.failure is not None

    @classmethod
    def passing(cls, name: str, duration: float = 0.0) -> "TestCase":
        return cls(name=name, duration=duration)

    @classmethod
    def failing(cls, name: str, contents: str, message: str = "Failed", duration: float = 0.0) -> "TestCase":
        return cls(name=name, failure=Failure(contents=contents, message=message), duration=duration)


@dataclass
class Suite:
    """A node of the result tree."""
    name: str
    tests: int = 0
    failures: int = 0
    suites: list["Suite"] = field(default_factory=list)
    test_cases: list[TestCase] = field(default_factory=list)
    duration: float = 0.0
    parent: Optional["Suite"] = field(default=None, repr=False, compare=False)

    def find(self, name: str) -> Optional["Suite"]:
        """First direct child suite with the given name."""
        for suite in self.suites:
            if suite.name == name:
                return suite
        return None

    def walk(self):
        """Yield this suite and every descendant, depth first."""
        yield self
        for suite in self.suites:
            yield from suite.walk()


@dataclass(frozen=True)
class Report:
    """Finalized snapshot of a run's result tree.

    Only the top level is frozen. The suites are copies detached from the
    live tree, so later recording does not reach them, but they are plain
    Suite objects and are not protected against mutation by readers.
    """
    suites: tuple[Suite, ...]
    duration: float = 0.0
    timestamp: str = ""

    @property
    def root(self) -> Suite:
        return self.suites[0]

    @property
    def tests(self) -> int:
        return sum(s.tests for s in self.suites)

    @property
    def failures(self) -> int:
        return sum(s.failures for s in self.suites)
