"""Configuration validator for cloudtest.

Validates parsed CloudTestConfig objects against run rules.
"""

from .schema import (
    CloudTestConfig,
    ExecutionKind,
    ValidationError,
    ValidationResult,
    REQUIRED_PROVIDER_SCRIPTS,
    VALID_EXECUTION_KINDS,
)
from ..utils.substitution import parse_env_entry


def validate_config(config: CloudTestConfig) -> ValidationResult:
    """Validate a parsed configuration.

    Checks:
    - Run settings (timeout, workers)
    - Provider names, scripts and instance bounds
    - Execution kinds and required fields per kind
    - Env entry format

    Selector/count mismatches are only warnings: they are reported as a
    failing test case when the run reaches that execution.

    Args:
        config: Parsed configuration to validate.

    Returns:
        ValidationResult with errors and warnings.
    """
    errors: list[ValidationError] = []
    warnings: list[ValidationError] = []

    if config.timeout <= 0:
        errors.append(ValidationError(
            path="timeout",
            message=f"Timeout must be positive, got {config.timeout}.",
        ))
    if config.workers <= 0:
        errors.append(ValidationError(
            path="workers",
            message=f"Workers must be positive, got {config.workers}.",
        ))

    _validate_providers(config, errors, warnings)
    _validate_executions(config, errors, warnings)

    if not config.executions:
        warnings.append(ValidationError(
            path="executions",
            message="No executions defined.",
            severity="warning",
        ))

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
    )


def _validate_providers(
    config: CloudTestConfig,
    errors: list[ValidationError],
    warnings: list[ValidationError],
) -> None:
    seen: set[str] = set()

    for i, provider in enumerate(config.providers):
        path = f"providers[{i}]"

        if not provider.name:
            errors.append(ValidationError(
                path=f"{path}.name",
                message="Provider 'name' is required and must not be empty.",
            ))
        elif provider.name in seen:
            errors.append(ValidationError(
                path=f"{path}.name",
                message=f"Duplicate provider name '{provider.name}'.",
            ))
        seen.add(provider.name)

        for action in sorted(REQUIRED_PROVIDER_SCRIPTS):
            if not provider.script(action).strip():
                errors.append(ValidationError(
                    path=f"{path}.scripts.{action}",
                    message=f"Provider '{provider.name}' requires a '{action}' script.",
                ))

        if not provider.script("stop").strip():
            warnings.append(ValidationError(
                path=f"{path}.scripts.stop",
                message=f"Provider '{provider.name}' has no 'stop' script; instances are never torn down.",
                severity="warning",
            ))

        if provider.instances <= 0:
            errors.append(ValidationError(
                path=f"{path}.instances",
                message=f"Instances must be positive, got {provider.instances}.",
            ))

        if provider.timeout <= 0:
            errors.append(ValidationError(
                path=f"{path}.timeout",
                message=f"Timeout must be positive, got {provider.timeout}.",
            ))

        _validate_env(provider.env, f"{path}.env", errors)

    if config.providers and not any(p.enabled for p in config.providers):
        warnings.append(ValidationError(
            path="providers",
            message="All providers are disabled.",
            severity="warning",
        ))


def _validate_executions(
    config: CloudTestConfig,
    errors: list[ValidationError],
    warnings: list[ValidationError],
) -> None:
    seen: set[str] = set()
    provider_names = {p.name for p in config.providers}

    for i, execution in enumerate(config.executions):
        path = f"executions[{i}]"

        if not execution.name:
            errors.append(ValidationError(
                path=f"{path}.name",
                message="Execution 'name' is required and must not be empty.",
            ))
        elif execution.name in seen:
            errors.append(ValidationError(
                path=f"{path}.name",
                message=f"Duplicate execution name '{execution.name}'.",
            ))
        seen.add(execution.name)

        if execution.kind not in VALID_EXECUTION_KINDS:
            errors.append(ValidationError(
                path=f"{path}.kind",
                message=f"Invalid kind '{execution.kind}'. Must be one of: {', '.join(sorted(VALID_EXECUTION_KINDS))}",
            ))
        elif execution.kind == ExecutionKind.SHELL.value and not execution.run.strip():
            errors.append(ValidationError(
                path=f"{path}.run",
                message="'shell' execution requires 'run'.",
            ))
        elif execution.kind == ExecutionKind.GO.value and not execution.package_root:
            errors.append(ValidationError(
                path=f"{path}.package_root",
                message="'go' execution requires 'package_root'.",
            ))

        if execution.timeout <= 0:
            errors.append(ValidationError(
                path=f"{path}.timeout",
                message=f"Timeout must be positive, got {execution.timeout}.",
            ))

        _validate_env(execution.env, f"{path}.env", errors)

        if execution.cluster_selector:
            if len(execution.cluster_selector) != execution.cluster_count:
                warnings.append(ValidationError(
                    path=f"{path}.cluster_selector",
                    message=(
                        f"Selector names {len(execution.cluster_selector)} providers "
                        f"but cluster_count is {execution.cluster_count}."
                    ),
                    severity="warning",
                ))
            for name in execution.cluster_selector:
                if name not in provider_names:
                    warnings.append(ValidationError(
                        path=f"{path}.cluster_selector",
                        message=f"Unknown provider '{name}' in selector.",
                        severity="warning",
                    ))
        elif execution.cluster_count > 1:
            warnings.append(ValidationError(
                path=f"{path}.cluster_count",
                message="cluster_count > 1 requires a cluster_selector.",
                severity="warning",
            ))


def _validate_env(entries: list[str], path: str, errors: list[ValidationError]) -> None:
    for j, entry in enumerate(entries):
        try:
            parse_env_entry(entry)
        except ValueError as e:
            errors.append(ValidationError(path=f"{path}[{j}]", message=str(e)))
