"""Configuration loading for the build loop."""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from jsonschema import Draft7Validator

from agentic_build_loop.constants import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_CAP_EXPONENT,
    BUILD_POLL_INTERVAL_SECONDS,
    BUILD_TIMEOUT_SECONDS,
    DEFAULT_BASE_DIR,
    DEFAULT_EXTRACTION_MODE,
    LOOP_MAX_ITERATIONS,
    MAX_RECOVERIES,
    MAX_RETRIES_PER_STATE,
    RESPONSE_TIMEOUT_SECONDS,
    STABILITY_WINDOW_SECONDS,
    STEP_DELAY_SECONDS,
)
from agentic_build_loop.loop_state import ExtractionMode

ENV_PREFIX = "BUILDLOOP_"


@dataclass
class LoopConfig:
    """Build loop configuration loaded from environment and an optional loop file."""

    base_dir: Path = Path(DEFAULT_BASE_DIR).expanduser()
    max_iterations: int = LOOP_MAX_ITERATIONS
    max_retries_per_state: int = MAX_RETRIES_PER_STATE
    max_recoveries: int = MAX_RECOVERIES
    backoff_base_seconds: float = BACKOFF_BASE_SECONDS
    backoff_cap_exponent: int = BACKOFF_CAP_EXPONENT
    step_delay_seconds: float = STEP_DELAY_SECONDS
    response_timeout_seconds: float = RESPONSE_TIMEOUT_SECONDS
    build_timeout_seconds: float = BUILD_TIMEOUT_SECONDS
    build_poll_interval_seconds: float = BUILD_POLL_INTERVAL_SECONDS
    stability_window_seconds: float = STABILITY_WINDOW_SECONDS
    extraction_mode: ExtractionMode = ExtractionMode(DEFAULT_EXTRACTION_MODE)
    build_command: Optional[str] = None
    webhook_url: Optional[str] = None


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


_POSITIVE_INT = {"type": "integer", "minimum": 1}
_NON_NEGATIVE_INT = {"type": "integer", "minimum": 0}
_NON_NEGATIVE_NUMBER = {"type": "number", "minimum": 0}
_POSITIVE_NUMBER = {"type": "number", "exclusiveMinimum": 0}

LOOP_FILE_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "base_dir": {"type": "string", "minLength": 1},
        "max_iterations": _POSITIVE_INT,
        "max_retries_per_state": _NON_NEGATIVE_INT,
        "max_recoveries": _NON_NEGATIVE_INT,
        "backoff_base_seconds": _NON_NEGATIVE_NUMBER,
        "backoff_cap_exponent": {"type": "integer", "minimum": 0, "maximum": 16},
        "step_delay_seconds": _NON_NEGATIVE_NUMBER,
        "response_timeout_seconds": _POSITIVE_NUMBER,
        "build_timeout_seconds": _POSITIVE_NUMBER,
        "build_poll_interval_seconds": _POSITIVE_NUMBER,
        "stability_window_seconds": _NON_NEGATIVE_NUMBER,
        "extraction_mode": {"enum": [m.value for m in ExtractionMode]},
        "build_command": {"type": "string", "minLength": 1},
        "webhook_url": {"type": ["string", "null"]},
    },
}


def load_loop_file(path: Path) -> dict:
    """
    Load loop settings from YAML or JSON.

    Raises:
        ConfigError: If the file cannot be parsed or fails schema validation.
    """
    content = path.read_text()

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ConfigError(f"Unsupported config file type: {path.suffix}. Use .yaml, .yml, or .json")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e

    if data is None:
        return {}

    errors = sorted(
        Draft7Validator(LOOP_FILE_SCHEMA).iter_errors(data),
        key=lambda err: list(err.path),
    )
    if errors:
        lines = []
        for err in errors:
            location = ".".join(str(p) for p in err.path) or "<root>"
            lines.append(f"  {location}: {err.message}")
        raise ConfigError(f"Invalid config file {path}:\n" + "\n".join(lines))

    return data


def _env_overrides() -> dict:
    """Collect BUILDLOOP_* variables keyed by config field name."""
    overrides = {}
    for f in fields(LoopConfig):
        value = os.environ.get(ENV_PREFIX + f.name.upper())
        if value is not None and value != "":
            overrides[f.name] = value
    return overrides


def _coerce(name: str, value: Any, target: Any) -> Any:
    try:
        if name == "base_dir":
            return Path(str(value)).expanduser()
        if name == "extraction_mode":
            return ExtractionMode(str(value).upper())
        if isinstance(target, bool):
            raise TypeError("boolean settings are not supported")
        if isinstance(target, int):
            return int(value)
        if isinstance(target, float):
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e


def _check_bounds(config: LoopConfig) -> None:
    problems = []
    if config.max_iterations < 1:
        problems.append("max_iterations must be at least 1")
    if config.max_retries_per_state < 0:
        problems.append("max_retries_per_state must not be negative")
    if config.max_recoveries < 0:
        problems.append("max_recoveries must not be negative")
    if config.backoff_base_seconds < 0:
        problems.append("backoff_base_seconds must not be negative")
    if not 0 <= config.backoff_cap_exponent <= 16:
        problems.append("backoff_cap_exponent must be between 0 and 16")
    if config.step_delay_seconds < 0:
        problems.append("step_delay_seconds must not be negative")
    for name in ("response_timeout_seconds", "build_timeout_seconds", "build_poll_interval_seconds"):
        if getattr(config, name) <= 0:
            problems.append(f"{name} must be positive")
    if config.stability_window_seconds < 0:
        problems.append("stability_window_seconds must not be negative")
    if problems:
        raise ConfigError("Invalid configuration:\n" + "\n".join(f"  {p}" for p in problems))


def load_config(
    config_file: Optional[Path] = None,
    require_build_command: bool = True,
) -> LoopConfig:
    """
    Load configuration from a loop file and environment variables.

    Environment variables (BUILDLOOP_<FIELD>) override values from the file.

    Args:
        config_file: Optional YAML or JSON loop file.
        require_build_command: If True, raises ConfigError when no build
                               command is configured.

    Returns:
        LoopConfig

    Raises:
        ConfigError: If configuration is invalid or a required value is missing.
    """
    load_dotenv()

    values: dict[str, Any] = {}
    if config_file is not None:
        values.update(load_loop_file(Path(config_file)))
    values.update(_env_overrides())

    defaults = LoopConfig()
    kwargs = {
        name: _coerce(name, value, getattr(defaults, name))
        for name, value in values.items()
        if value is not None
    }
    config = LoopConfig(**kwargs)
    _check_bounds(config)

    if require_build_command and not config.build_command:
        raise ConfigError(
            "Missing required setting: build_command\n"
            f"Set {ENV_PREFIX}BUILD_COMMAND in your environment or .env file,\n"
            "or add build_command to the loop config file."
        )

    return config
