"""YAML configuration parser for cloudtest.

Parses YAML run configuration files into CloudTestConfig objects.
Keys may be written with dashes (config-root, package-root, ...).
"""

from pathlib import Path
from typing import Any, Union

import yaml

from .schema import (
    ClusterProviderSpec,
    CloudTestConfig,
    Execution,
    ExecutionSource,
    Reporting,
)

# Keys whose YAML spelling differs from the field name
KEY_ALIASES = {
    "junit_report": "junit_report_file",
    "cluster_providers": "providers",
}


def parse_config(file_path: Union[str, Path]) -> CloudTestConfig:
    """Parse a YAML configuration file.

    Args:
        file_path: Path to the YAML configuration file.

    Returns:
        Parsed CloudTestConfig object.

    Raises:
        FileNotFoundError: If the configuration file doesn't exist.
        ValueError: If the YAML is malformed or missing required fields.
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    if file_path.suffix not in (".yaml", ".yml"):
        raise ValueError(f"Expected .yaml or .yml file, got: {file_path.suffix}")

    with open(file_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Malformed YAML in {file_path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty config file: {file_path}")

    return parse_config_data(data, source=str(file_path))


def parse_config_data(data: dict, source: str = "<inline>") -> CloudTestConfig:
    """Parse a configuration from a dictionary (already loaded YAML).

    Raises:
        ValueError: If required fields are missing or malformed.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Config must be a YAML mapping, got {type(data).__name__}")

    data = _normalize_keys(data)

    providers = [
        _parse_provider(p, i, source)
        for i, p in enumerate(_require_list(data, "providers", source))
    ]
    executions = [
        _parse_execution(e, i, source)
        for i, e in enumerate(_require_list(data, "executions", source))
    ]

    reporting_data = data.get("reporting") or {}
    if not isinstance(reporting_data, dict):
        raise ValueError(f"'reporting' must be a mapping in {source}")
    reporting = Reporting(**_known_fields(_normalize_keys(reporting_data), Reporting))

    settings = _known_fields(data, CloudTestConfig)
    for key in ("providers", "executions", "reporting"):
        settings.pop(key, None)
    if "config_root" in settings:
        settings["config_root"] = str(settings["config_root"])

    return CloudTestConfig(
        providers=providers,
        executions=executions,
        reporting=reporting,
        **settings,
    )


def _parse_provider(data: Any, index: int, source: str) -> ClusterProviderSpec:
    context = f"providers[{index}]"
    if not isinstance(data, dict):
        raise ValueError(f"Provider {index} must be a mapping in {source}")
    data = _normalize_keys(data)
    _require_fields(data, ["name"], context, source)

    scripts = data.get("scripts") or {}
    if not isinstance(scripts, dict):
        raise ValueError(f"'scripts' must be a mapping in {context} ({source})")

    fields = _known_fields(data, ClusterProviderSpec)
    fields["scripts"] = {str(k): str(v) for k, v in scripts.items()}
    fields["env"] = _string_list(data.get("env"), f"{context}.env", source)
    return ClusterProviderSpec(**fields)


def _parse_execution(data: Any, index: int, source: str) -> Execution:
    context = f"executions[{index}]"
    if not isinstance(data, dict):
        raise ValueError(f"Execution {index} must be a mapping in {source}")
    data = _normalize_keys(data)
    _require_fields(data, ["name"], context, source)

    source_data = data.get("source") or {}
    if not isinstance(source_data, dict):
        raise ValueError(f"'source' must be a mapping in {context} ({source})")

    fields = _known_fields(data, Execution)
    fields["source"] = ExecutionSource(
        tests=_string_list(source_data.get("tests"), f"{context}.source.tests", source),
        tags=_string_list(source_data.get("tags"), f"{context}.source.tags", source),
    )
    fields["env"] = _string_list(data.get("env"), f"{context}.env", source)
    fields["cluster_selector"] = _string_list(
        data.get("cluster_selector"), f"{context}.cluster_selector", source
    )
    return Execution(**fields)


def _normalize_keys(data: dict) -> dict:
    normalized = {}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        normalized[KEY_ALIASES.get(name, name)] = value
    return normalized


def _known_fields(data: dict, cls: type) -> dict:
    return {k: v for k, v in data.items() if k in cls.__dataclass_fields__}


def _require_list(data: dict, key: str, source: str) -> list:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list in {source}")
    return value


def _string_list(value: Any, context: str, source: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{context}' must be a list in {source}")
    return [str(v) for v in value]


def _require_fields(
    data: dict, fields: list[str], context: str, source: str
) -> None:
    """Check that required fields exist in a dictionary."""
    for field_name in fields:
        if field_name not in data:
            raise ValueError(
                f"Missing required field '{field_name}' in {context} ({source})"
            )
