"""CLI entry point for cloudtest.

Usage:
    cloudtest run <config.yaml> [options]
    cloudtest validate <config.yaml>
"""

import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click

from .config.parser import parse_config
from .config.schema import CloudTestConfig
from .config.validator import validate_config
from .reporting.junit_reporter import generate_summary, to_json_string
from .runner.executor import Arguments, FailedTestsError, perform_testing
from .validators.cluster_validator import NoopValidationFactory, ScriptValidationFactory

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log debug output.")
def main(verbose: bool):
    """Run test executions against provider-managed clusters."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


@main.command()
@click.argument("config_file", type=click.Path(path_type=Path))
@click.option("--provider", "providers", multiple=True, help="Only use this provider (repeatable).")
@click.option("--execution", "executions", multiple=True, help="Only run this execution (repeatable).")
@click.option("--junit-report", type=click.Path(path_type=Path), default=None, help="JUnit report output file.")
@click.option("--timeout", type=int, default=None, help="Run timeout in seconds.")
@click.option("--workers", type=int, default=None, help="Executions run concurrently.")
@click.option("--validate-script", default=None, help="Readiness check run against every started cluster.")
@click.option("--pretty", is_flag=True, help="Pretty print output.")
def run(
    config_file: Path,
    providers: tuple[str, ...],
    executions: tuple[str, ...],
    junit_report: Optional[Path],
    timeout: Optional[int],
    workers: Optional[int],
    validate_script: Optional[str],
    pretty: bool,
):
    """Run the executions declared in CONFIG_FILE."""
    config = _load(config_file)
    config = _apply_overrides(config, junit_report, timeout, workers)

    factory = ScriptValidationFactory(validate_script) if validate_script else NoopValidationFactory()
    arguments = Arguments(providers=list(providers), executions=list(executions))
    report_path = config.reporting.junit_report_file

    start_time = time.time()
    try:
        report = perform_testing(config, factory, arguments)
    except FailedTestsError as e:
        click.echo(to_json_string(generate_summary(e.report, report_path), pretty))
        sys.exit(1)
    except KeyboardInterrupt:
        duration_ms = int((time.time() - start_time) * 1000)
        output_error("Run interrupted by user", duration_ms=duration_ms)
        sys.exit(130)

    click.echo(to_json_string(generate_summary(report, report_path), pretty))


@main.command()
@click.argument("config_file", type=click.Path(path_type=Path))
def validate(config_file: Path):
    """Check CONFIG_FILE without running anything."""
    config = _load(config_file, fail_on_invalid=False)
    result = validate_config(config)

    for error in result.errors:
        click.echo(f"ERROR   {error.path}: {error.message}")
    for warning in result.warnings:
        click.echo(f"WARNING {warning.path}: {warning.message}")
    click.echo(str(result))

    if not result.valid:
        sys.exit(1)


def _load(config_file: Path, fail_on_invalid: bool = True) -> CloudTestConfig:
    try:
        config = parse_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        output_error(f"Failed to parse config: {e}")
        sys.exit(1)

    if fail_on_invalid:
        validation = validate_config(config)
        if not validation.valid:
            errors_str = "; ".join(f"{e.path}: {e.message}" for e in validation.errors)
            output_error(f"Invalid config: {errors_str}")
            sys.exit(1)

    return config


def _apply_overrides(
    config: CloudTestConfig,
    junit_report: Optional[Path],
    timeout: Optional[int],
    workers: Optional[int],
) -> CloudTestConfig:
    if junit_report is not None:
        config = replace(config, reporting=replace(config.reporting, junit_report_file=str(junit_report)))
    if timeout is not None:
        config = replace(config, timeout=timeout)
    if workers is not None:
        config = replace(config, workers=workers)
    return config


def output_error(message: str, **extra):
    """Output error in flow JSON format."""
    output = {
        "success": False,
        "command": "run",
        "data": extra or None,
        "message": message,
    }
    click.echo(to_json_string(output, pretty=False))


if __name__ == "__main__":
    main()
