# src/opsbox/config.py
"""
Configuration management for opsbox.

This module handles loading, validation, and management of the container
task runner configuration, with support for TOML files and environment
variables.

Configuration Hierarchy:
    1. Default values (defined in this module)
    2. TOML config file (~/.opsbox/config.toml, ``[opsbox]`` table)
    3. Environment variables (OPSBOX_*)
    4. Runtime overrides (passed to load_config)

Example TOML configuration:
    [opsbox]
    project_root = "~/work/my-project"
    ai_service = "anthropic"
    interactive = true

    [opsbox.container]
    image = "ubuntu:24.04"
    working_dir = "/"

    [opsbox.loop]
    max_commands = 100
    max_context_messages = 25
    max_context_tokens = 2048
    max_output_length = 2048

    [opsbox.fallback]
    disable_ai_service_fallback = false

    [opsbox.registry]
    path = "~/.cache/opsbox/containers.json"

    [opsbox.logging]
    console_enabled = false
    file_directory = "~/.local/share/opsbox/logs"
"""

import copy
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import ConfigError
from .models import TaskOptions

logger = logging.getLogger(__name__)

ENV_PREFIX = "OPSBOX_"

# Default configuration values
DEFAULT_CONFIG: dict[str, Any] = {
    "project_root": ".",
    "ai_service": None,
    "interactive": True,
    "container": {
        "image": "ubuntu:latest",
        "working_dir": "/",
        "stop_timeout": 10,
    },
    "loop": {
        "max_commands": 100,
        "max_context_messages": 25,
        "max_context_tokens": 2048,
        "max_output_length": 2048,
        "finish_warning_remaining": 10,
        "temperature": 0.7,
        "confirm_task_end": False,
    },
    "fallback": {
        "disable_ai_service_fallback": False,
    },
    "registry": {
        "path": "~/.cache/opsbox/containers.json",
    },
    "logging": {},
}


@dataclass
class ContainerConfig:
    """Container image and exec defaults."""

    image: str = "ubuntu:latest"
    working_dir: str = "/"
    stop_timeout: int = 10


@dataclass
class LoopConfig:
    """Command execution loop limits and context budget thresholds."""

    max_commands: int = 100
    max_context_messages: int = 25
    max_context_tokens: int = 2048
    max_output_length: int = 2048
    finish_warning_remaining: int = 10
    temperature: float = 0.7
    confirm_task_end: bool = False

    def __post_init__(self) -> None:
        if self.max_commands < 1:
            raise ConfigError(f"loop.max_commands must be positive, got {self.max_commands}")
        if self.max_output_length < 1:
            raise ConfigError(f"loop.max_output_length must be positive, got {self.max_output_length}")


@dataclass
class FallbackConfig:
    """Model provider fallback behaviour."""

    disable_ai_service_fallback: bool = False


@dataclass
class RegistryConfig:
    """Location of the persisted container-id registry."""

    path: str = "~/.cache/opsbox/containers.json"

    def resolved_path(self) -> Path:
        return Path(os.path.expanduser(self.path))


@dataclass
class OpsboxConfig:
    """
    Complete opsbox configuration.

    Holds the project root that bounds every host path touched by file
    transfers, plus the container, loop, fallback, registry and logging
    sections.
    """

    project_root: str = "."
    ai_service: str | None = None
    interactive: bool = True
    container: ContainerConfig = field(default_factory=ContainerConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    logging: dict[str, Any] = field(default_factory=dict)

    def resolved_project_root(self) -> Path:
        return Path(os.path.expanduser(self.project_root)).resolve()

    def task_options(self) -> TaskOptions:
        """Build the runtime options shared by the loop, handlers and fallback coordinator."""
        return TaskOptions(
            project_root=self.resolved_project_root(),
            ai_service=self.ai_service,
            interactive=self.interactive,
            disable_ai_service_fallback=self.fallback.disable_ai_service_fallback,
            confirm_task_end=self.loop.confirm_task_end,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in override take precedence. Nested dictionaries are merged recursively.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Environment variables follow the pattern:
        OPSBOX_<KEY>=value            (top-level, e.g. OPSBOX_PROJECT_ROOT)
        OPSBOX_<SECTION>_<KEY>=value  (nested, e.g. OPSBOX_LOOP_MAX_COMMANDS)

    OPSBOX_LOGGING_LEVEL is consumed by the logging setup and ignored here.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        name = key[len(ENV_PREFIX):].lower()

        if name in config and not isinstance(config[name], dict):
            config[name] = _parse_env_value(value)
            continue

        section, _, nested_key = name.partition("_")
        if section in config and isinstance(config[section], dict):
            if nested_key in config[section] or section == "logging" and nested_key != "level":
                config[section][nested_key] = _parse_env_value(value)

    return config


def _parse_env_value(value: str) -> Any:
    """
    Parse environment variable value to appropriate type.

    Returns:
        Parsed value (bool, int, float, list, or string)
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [v.strip() for v in value.split(",")]

    return value


def load_toml_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load the ``[opsbox]`` table from a TOML file.

    Args:
        config_path: Path to TOML file (default: ~/.opsbox/config.toml).
            An explicitly given path must exist.

    Returns:
        Configuration dictionary (empty if the default file is absent)

    Raises:
        ConfigError: If an explicit path is missing or the file is not valid TOML
    """
    explicit = config_path is not None
    if config_path is None:
        config_path = Path.home() / ".opsbox" / "config.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        logger.debug(f"Config file not found: {config_path}")
        return {}

    try:
        with open(config_path, "rb") as f:
            full_config = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}") from e

    logger.debug(f"Loaded opsbox config from {config_path}")
    return full_config.get("opsbox", {})


def load_config(
    config_path: Path | None = None, overrides: dict[str, Any] | None = None
) -> OpsboxConfig:
    """
    Load complete opsbox configuration.

    Configuration is loaded and merged in order:
        1. Default values
        2. TOML config file
        3. Environment variables
        4. Runtime overrides

    Args:
        config_path: Optional path to TOML config file
        overrides: Optional runtime overrides

    Returns:
        OpsboxConfig instance

    Raises:
        ConfigError: On unreadable files or invalid values
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    toml_config = load_toml_config(config_path)
    if toml_config:
        config = _deep_merge(config, toml_config)

    config = _apply_env_overrides(config)

    if overrides:
        config = _deep_merge(config, overrides)

    try:
        return OpsboxConfig(
            project_root=str(config.get("project_root", ".")),
            ai_service=config.get("ai_service"),
            interactive=bool(config.get("interactive", True)),
            container=ContainerConfig(**config["container"]),
            loop=LoopConfig(**config["loop"]),
            fallback=FallbackConfig(**config["fallback"]),
            registry=RegistryConfig(**config["registry"]),
            logging=dict(config.get("logging", {})),
        )
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
