"""Reporting module - result tree model and JUnit output."""

from .model import ROOT_SUITE_NAME, Failure, Report, Suite, TestCase
from .junit_reporter import JUnitReporter, generate_summary, to_json_string

__all__ = [
    "ROOT_SUITE_NAME",
    "Failure",
    "Report",
    "Suite",
    "TestCase",
    "JUnitReporter",
    "generate_summary",
    "to_json_string",
]
