"""Variable substitution for scripts and env entries.

Two placeholder forms are supported:
    $(name)   - run arguments supplied by the caller (test-name, cluster-name, ...)
    ${NAME}   - environment variables

Unknown placeholders are left untouched so the shell can still expand them.
"""

import os
import re
from typing import Optional

ARGUMENT_PATTERN = re.compile(r"\$\(([A-Za-z0-9_.-]+)\)")
ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def substitute_variables(
    text: str,
    env: Optional[dict[str, str]] = None,
    args: Optional[dict[str, str]] = None,
) -> str:
    """Replace $(arg) and ${ENV} placeholders in text."""
    env = env or {}
    args = args or {}

    def _arg(match: re.Match) -> str:
        return args.get(match.group(1), match.group(0))

    def _env(match: re.Match) -> str:
        return env.get(match.group(1), match.group(0))

    text = ARGUMENT_PATTERN.sub(_arg, text)
    return ENV_PATTERN.sub(_env, text)


def parse_env_entry(entry: str) -> tuple[str, str]:
    """Split a KEY=VALUE entry.

    Raises:
        ValueError: If the entry has no '=' or an empty key.
    """
    key, sep, value = entry.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"Invalid env entry '{entry}', expected KEY=VALUE")
    return key, value


def build_environment(
    entries: list[str],
    bindings: Optional[dict[str, str]] = None,
    args: Optional[dict[str, str]] = None,
    base: Optional[dict[str, str]] = None,
) -> dict[str, str]:
    """Build a child process environment.

    Starts from base (default: the current process environment), adds the
    cluster bindings, then the declared KEY=VALUE entries in order. Entry
    values may reference arguments and any variable defined before them.
    """
    env = dict(os.environ if base is None else base)
    env.update(bindings or {})

    for entry in entries:
        key, value = parse_env_entry(entry)
        env[key] = substitute_variables(value, env, args)

    return env
