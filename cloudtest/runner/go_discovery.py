"""Go test discovery.

Finds `func TestXxx(t *testing.T)` entry points in `*_test.go` files under
a package root, honouring `//go:build` and `// +build` constraints.
"""

import platform
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

TEST_FUNC_PATTERN = re.compile(
    r"^func\s+(Test(?![a-z])\w*)\s*\(\s*\w+\s+\*testing\.T\s*\)",
    re.MULTILINE,
)
PACKAGE_PATTERN = re.compile(r"^package\s+\w+", re.MULTILINE)
GO_BUILD_PREFIX = "//go:build "
PLUS_BUILD_PREFIX = "// +build "

SKIPPED_DIRS = {"testdata", "vendor"}


@dataclass(frozen=True)
class GoTest:
    """A discovered Go test function."""
    name: str
    package_dir: Path
    file: Path


def discover_go_tests(
    package_root: Union[str, Path],
    tags: Optional[Iterable[str]] = None,
) -> list[GoTest]:
    """Discover Go tests under package_root in deterministic order.

    Files are visited in sorted path order, tests in source order.

    Raises:
        FileNotFoundError: If package_root does not exist.
    """
    root = Path(package_root)
    if not root.is_dir():
        raise FileNotFoundError(f"Package root not found: {root}")

    active_tags = default_tags() | set(tags or [])
    tests: list[GoTest] = []

    for file in sorted(root.rglob("*_test.go")):
        if not file.is_file():
            continue
        relative = file.relative_to(root)
        if any(part in SKIPPED_DIRS or part.startswith((".", "_")) for part in relative.parts):
            continue

        source = file.read_text(encoding="utf-8", errors="replace")
        if not build_constraints_satisfied(source, active_tags):
            continue

        for match in TEST_FUNC_PATTERN.finditer(source):
            tests.append(GoTest(name=match.group(1), package_dir=file.parent, file=file))

    return tests


def filter_tests(tests: list[GoTest], names: list[str]) -> list[GoTest]:
    """Keep tests named in names, in discovery order.

    An empty names list keeps everything; unknown names are ignored.
    """
    if not names:
        return list(tests)
    wanted = set(names)
    return [t for t in tests if t.name in wanted]


def default_tags() -> set[str]:
    """Tags the go tool sets implicitly for the host."""
    machine = platform.machine().lower()
    arch = {"x86_64": "amd64", "aarch64": "arm64"}.get(machine, machine)
    return {platform.system().lower(), arch, "gc"}


def build_constraints_satisfied(source: str, tags: set[str]) -> bool:
    """Evaluate the file's build constraints against tags."""
    header = _header(source)

    for line in header:
        if line.startswith(GO_BUILD_PREFIX):
            return _BuildExpression(line[len(GO_BUILD_PREFIX):]).evaluate(tags)

    for line in header:
        if line.startswith(PLUS_BUILD_PREFIX):
            options = line[len(PLUS_BUILD_PREFIX):].split()
            if not any(_plus_build_term(option, tags) for option in options):
                return False

    return True


def _header(source: str) -> list[str]:
    match = PACKAGE_PATTERN.search(source)
    head = source[:match.start()] if match else source
    return [line.strip() for line in head.splitlines()]


def _plus_build_term(option: str, tags: set[str]) -> bool:
    for term in option.split(","):
        negated = term.startswith("!")
        name = term.lstrip("!")
        if (name in tags) == negated:
            return False
    return True


class _BuildExpression:
    """Recursive descent evaluator for //go:build expressions."""

    TOKEN_PATTERN = re.compile(r"\s*(\(|\)|!|&&|\|\||[A-Za-z0-9_.]+)")

    def __init__(self, text: str):
        self.tokens = self._tokenize(text)
        self.pos = 0

    def evaluate(self, tags: set[str]) -> bool:
        self.tags = tags
        self.pos = 0
        value = self._or()
        if self.pos != len(self.tokens):
            raise ValueError(f"Unexpected token '{self.tokens[self.pos]}' in build constraint")
        return value

    def _tokenize(self, text: str) -> list[str]:
        tokens = []
        pos = 0
        text = text.strip()
        while pos < len(text):
            match = self.TOKEN_PATTERN.match(text, pos)
            if not match:
                raise ValueError(f"Invalid build constraint: {text}")
            tokens.append(match.group(1))
            pos = match.end()
        return tokens

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> str:
        token = self._peek()
        if token is None:
            raise ValueError("Unexpected end of build constraint")
        self.pos += 1
        return token

    def _or(self) -> bool:
        value = self._and()
        while self._peek() == "||":
            self._next()
            right = self._and()
            value = value or right
        return value

    def _and(self) -> bool:
        value = self._not()
        while self._peek() == "&&":
            self._next()
            right = self._not()
            value = value and right
        return value

    def _not(self) -> bool:
        if self._peek() == "!":
            self._next()
            return not self._not()
        return self._atom()

    def _atom(self) -> bool:
        token = self._next()
        if token == "(":
            value = self._or()
            if self._next() != ")":
                raise ValueError("Missing ')' in build constraint")
            return value
        if token in (")", "&&", "||"):
            raise ValueError(f"Unexpected token '{token}' in build constraint")
        return token in self.tags
