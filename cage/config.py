"""
Cage Configuration System

Layered configuration with YAML files, environment variables, schema
validation and runtime overrides.

Configuration Sources (in order of precedence):
    1. Environment variables (CAGE_*)
    2. Runtime overrides
    3. Config file (./cage.yaml, ./config/cage.yaml, ~/.cage/config.yaml)
    4. Default values

The ``deployment`` section holds the three parameters baked into a
controller instance. Changing any of them yields a different policy id, so a
running token has to be migrated to the new instance.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import jsonschema
import yaml

T = TypeVar("T")

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "config.schema.json"


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            try:
                return int(value)  # type: ignore
            except ValueError as e:
                raise ConfigValidationError(f"{self.env_var}: expected integer, got {value!r}") from e
        return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class DeploymentConfig:
    """Parameters baked into a controller instance."""
    version: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="CAGE_VERSION",
        description="Version tag of the controller instance",
        validator=lambda x: isinstance(x, int) and x >= 0,
    ))
    process_window_ms: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=86_400_000,
        env_var="CAGE_PROCESS_WINDOW_MS",
        description="Oracle-exclusive processing window after submission (ms)",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))
    retract_window_ms: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=86_400_000,
        env_var="CAGE_RETRACT_WINDOW_MS",
        description="Requester-exclusive retract window after processing (ms)",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))


@dataclass
class LedgerConfig:
    """Parameters of the in-memory ledger used for simulation."""
    min_output_lovelace: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=2_000_000,
        env_var="CAGE_MIN_OUTPUT_LOVELACE",
        description="Smallest lovelace quantity any ledger output may hold",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="CAGE_LOG_LEVEL",
        description="Log level (debug, info, warning, error, critical)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="CAGE_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class CageConfig:
    """Root configuration for Cage."""
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False)


def schema_validator(path: Path = SCHEMA_PATH) -> jsonschema.Draft202012Validator:
    schema = json.loads(Path(path).read_text(encoding="utf-8"))
    return jsonschema.Draft202012Validator(schema)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = CageConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next access starts from defaults."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> CageConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file after schema validation."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not data:
            return

        errors = sorted(schema_validator().iter_errors(data), key=lambda e: list(e.path))
        if errors:
            where = ".".join(str(p) for p in errors[0].path) or "<root>"
            raise ConfigValidationError(f"invalid cage config: {path}: {where}: {errors[0].message}")

        self._apply_dict(data)
        self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load the first default configuration file that exists."""
        default_paths = [
            Path("cage.yaml"),
            Path("config/cage.yaml"),
            Path.home() / ".cage" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                self.load_from_file(path)
                return

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                if hasattr(config_obj, key):
                    attr = getattr(config_obj, key)
                    if isinstance(attr, ConfigValue):
                        attr.set(value)
                    elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                        apply_to_config(attr, value)

        apply_to_config(self._config, data)

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: manager.set("deployment.process_window_ms", 60_000)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: manager.get("deployment.version")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        paths, self._config_paths = self._config_paths, []
        for path in paths:
            if path.exists():
                self.load_from_file(path)

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
                    return
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors


def get_config() -> CageConfig:
    """Get the current Cage configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
