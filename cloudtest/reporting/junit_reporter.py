"""JUnit report generator for cloudtest results.

Writes the suite tree as nested <testsuite> elements and produces the
flow-style JSON summary printed by the CLI.
"""

import json
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Optional, Union

from .model import Report, Suite


class JUnitReporter:
    """Generates JUnit XML reports from a finalized Report."""

    def generate(self, report: Report) -> ET.ElementTree:
        """Build the XML tree.

        Args:
            report: Finalized run report.

        Returns:
            ElementTree with a <testsuites> root.
        """
        root = ET.Element("testsuites", {
            "tests": str(report.tests),
            "failures": str(report.failures),
            "time": f"{report.duration:.3f}",
        })
        if report.timestamp:
            root.set("timestamp", report.timestamp)

        for suite in report.suites:
            root.append(self._suite_element(suite, prefix=""))

        return ET.ElementTree(root)

    def save(self, report: Report, path: Union[str, Path]) -> Path:
        """Save report to a JUnit XML file.

        Args:
            report: Finalized run report.
            path: Output file path.

        Returns:
            Path to the saved file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        tree = self.generate(report)
        ET.indent(tree)
        tree.write(path, encoding="utf-8", xml_declaration=True)

        return path

    def to_string(self, report: Report) -> str:
        """Convert report to an XML string."""
        tree = self.generate(report)
        ET.indent(tree)
        return ET.tostring(tree.getroot(), encoding="unicode")

    def _suite_element(self, suite: Suite, prefix: str) -> ET.Element:
        path = f"{prefix}.{suite.name}" if prefix else suite.name
        element = ET.Element("testsuite", {
            "name": suite.name,
            "tests": str(suite.tests),
            "failures": str(suite.failures),
            "time": f"{suite.duration:.3f}",
        })

        for child in suite.suites:
            element.append(self._suite_element(child, path))

        for test_case in suite.test_cases:
            case = ET.SubElement(element, "testcase", {
                "name": test_case.name,
                "classname": path,
                "time": f"{test_case.duration:.3f}",
            })
            if test_case.failure is not None:
                failure = ET.SubElement(case, "failure", {
                    "message": test_case.failure.message,
                    "type": "ERROR",
                })
                failure.text = test_case.failure.contents

        return element


def generate_summary(
    report: Report,
    report_path: Optional[str] = None,
) -> dict[str, Any]:
    """Generate flow CLI compatible JSON output.

    Follows the flow JSON output standard:
    {
        "success": bool,
        "command": "run",
        "data": { ... },
        "message": str
    }
    """
    failures = report.failures
    data: dict[str, Any] = {
        "total_tests": report.tests,
        "passed": report.tests - failures,
        "failed": failures,
        "duration_ms": int(report.duration * 1000),
        "executions": [
            {"name": s.name, "tests": s.tests, "failures": s.failures}
            for s in report.root.suites
        ],
    }

    if report_path:
        data["report_path"] = report_path

    if failures:
        message = f"there is failed tests {failures}"
    else:
        message = "All tests passed"

    return {
        "success": failures == 0,
        "command": "run",
        "data": data,
        "message": message,
    }


def to_json_string(output: dict[str, Any], pretty: bool = True) -> str:
    if pretty:
        return json.dumps(output, indent=2, ensure_ascii=False)
    return json.dumps(output, ensure_ascii=False)
