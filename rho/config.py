"""
Rho Configuration System

Configuration for the canonicalizer, content store, executor, policy parser and
logging, with YAML files, environment variables and runtime overrides.

Configuration Sources (in order of precedence):
    1. Environment variables (RHO_*)
    2. Runtime overrides (ConfigManager.set)
    3. YAML file loaded with ConfigManager.load_from_file
    4. Default values

None of these values can change what a canonical byte sequence or a CID looks
like; they only bound resource usage.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            value = self._coerce(os.environ[self.env_var])
            if self.validator and not self.validator(value):
                raise ConfigError(f"Invalid value for {self.env_var}: {value!r}")
            return value
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigError(f"Invalid value for config: {value!r}")
        self._value = value

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
                raise ConfigError(f"{self.env_var} must be an integer, got {value!r}") from e
        return value  # type: ignore


@dataclass
class CanonConfig:
    """Configuration for the canonicalizer."""
    max_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=128,
        env_var="RHO_CANON_MAX_DEPTH",
        description="Maximum nesting depth of a canonicalized value",
        validator=lambda x: 0 < x <= 512,
    ))


@dataclass
class CasConfig:
    """Configuration for the content-addressable store."""
    max_blob_bytes: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=16 * 1024 * 1024,  # 16MB
        env_var="RHO_CAS_MAX_BLOB_BYTES",
        description="Largest blob accepted by ContentStore.put",
        validator=lambda x: x > 0,
    ))


@dataclass
class ExecutorConfig:
    """Configuration for the bytecode executor."""
    max_call_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=16,
        env_var="RHO_EXEC_MAX_CALL_DEPTH",
        description="Maximum nesting of the exec opcode",
        validator=lambda x: 0 < x <= 256,
    ))
    max_stack_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=256,
        env_var="RHO_EXEC_MAX_STACK_DEPTH",
        description="Maximum operand stack depth",
        validator=lambda x: 0 < x <= 4096,
    ))


@dataclass
class PolicyConfig:
    """Configuration for the policy parser."""
    max_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=64,
        env_var="RHO_POLICY_MAX_DEPTH",
        description="Maximum nesting of hybrid-and / hybrid-or",
        validator=lambda x: 0 < x <= 512,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="warning",
        env_var="RHO_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: str(x).lower() in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="RHO_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class RhoConfig:
    """
    Root configuration for rho.

    Aggregates all component configurations.
    """
    canon: CanonConfig = field(default_factory=CanonConfig)
    cas: CasConfig = field(default_factory=CasConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)


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

        self._config = RhoConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> RhoConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {path}")
            self._apply_dict(data)
            self._config_paths.append(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("executor.max_call_depth", 8)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("policy.max_depth")
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

    def reset(self) -> None:
        """Drop runtime overrides and loaded files."""
        self._config = RhoConfig()
        self._config_paths = []

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
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors


def get_config() -> RhoConfig:
    """Get the current rho configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
