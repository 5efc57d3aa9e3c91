"""Project definition parsing.

This is the config-provider boundary: untyped mappings (or YAML files) are
validated into a ProjectProfile here, before any descriptor reaches the
dependency graph.
"""

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from switchr_orchestration.errors import ProjectParseError
from switchr_orchestration.models import ProjectProfile

# Pattern for environment variable substitution: ${VAR_NAME}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def parse_project(path: Path) -> ProjectProfile:
    """Parse a project from a YAML file with environment variable substitution.

    When the file omits ``path``, the file's directory is used.

    Args:
        path: Path to the project YAML file.

    Returns:
        Validated ProjectProfile.

    Raises:
        ProjectParseError: If the file cannot be read, YAML is invalid,
            environment variables are missing, or validation fails.

    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ProjectParseError(f"Project file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ProjectParseError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ProjectParseError(f"Cannot read project file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ProjectParseError(f"Project file {path} must contain a mapping")

    data = cast(dict[str, Any], _substitute_env_vars(data, path))
    data.setdefault("path", str(path.parent.resolve()))

    return parse_project_from_dict(data)


def _substitute_env_vars(value: Any, path: Path) -> Any:  # noqa: ANN401
    """Recursively substitute ${VAR_NAME} patterns with environment values.

    Raises:
        ProjectParseError: If an environment variable is not defined.

    """
    if isinstance(value, str):
        return _substitute_string(value, path)
    if isinstance(value, dict):
        dict_value = cast(dict[str, Any], value)
        return {k: _substitute_env_vars(v, path) for k, v in dict_value.items()}
    if isinstance(value, list):
        list_value = cast(list[Any], value)
        return [_substitute_env_vars(item, path) for item in list_value]
    return value


def _substitute_string(value: str, path: Path) -> str:
    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ProjectParseError(
                f"Environment variable '{var_name}' is not defined "
                f"(referenced in {path})"
            )
        return env_value

    return _ENV_VAR_PATTERN.sub(replace_match, value)


def parse_project_from_dict(data: dict[str, Any]) -> ProjectProfile:
    """Parse a project directly from a dictionary.

    No environment variable substitution is performed. Service keys may use
    either snake_case or the camelCase spelling of the project file format
    (``workingDirectory``, ``autoRestart``).

    Raises:
        ProjectParseError: If the dict structure is invalid.

    """
    normalised = dict(data)
    services = normalised.get("services")
    if isinstance(services, list):
        normalised["services"] = [
            _normalise_service_keys(s) if isinstance(s, dict) else s
            for s in cast(list[Any], services)
        ]

    try:
        return ProjectProfile.model_validate(normalised)
    except ValidationError as e:
        raise ProjectParseError(f"Invalid project structure: {e}") from e


_CAMEL_CASE_KEYS = {
    "workingDirectory": "working_directory",
    "autoRestart": "auto_restart",
}


def _normalise_service_keys(service: dict[str, Any]) -> dict[str, Any]:
    return {_CAMEL_CASE_KEYS.get(key, key): value for key, value in service.items()}
