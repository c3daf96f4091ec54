"""Utilities - process execution, substitution and log capture."""

from .log_keeper import LogKeeper
from .process import CancelledError, CancelScope, CommandResult, run_command, run_script
from .substitution import build_environment, parse_env_entry, substitute_variables

__all__ = [
    "LogKeeper",
    "CancelledError",
    "CancelScope",
    "CommandResult",
    "run_command",
    "run_script",
    "build_environment",
    "parse_env_entry",
    "substitute_variables",
]
