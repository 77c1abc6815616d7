"""Configuration loading: config file, environment variables and thresholds."""

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

import pytz
import yaml

from kube_health.errors import ConfigError
from kube_health.output import COLOR_MODES

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"
DEFAULT_KUBECTL_TIMEOUT = 30
ENV_PREFIX = "KUBE_HEALTH_"


class Thresholds:
    """Threshold configuration for alerts"""

    CPU_WARNING = 80
    CPU_CRITICAL = 90
    MEMORY_WARNING = 85
    MEMORY_CRITICAL = 95
    NODE_USAGE_WARNING = 85
    POD_CAPACITY_WARNING = 80
    RESTART_WARNING = 5
    CERT_WARNING_DAYS = 30
    CERT_CRITICAL_DAYS = 7
    ETCD_DB_SIZE_WARNING_MB = 2048
    COMPLIANCE_GOOD = 90
    COMPLIANCE_FAIR = 70


@dataclass
class Settings:
    """Effective run settings after merging config file, environment and CLI."""

    output: Optional[str] = None
    verbose: bool = False
    parallel: bool = False
    checks_dir: Optional[str] = None
    kube_context: Optional[str] = None
    timezone: str = DEFAULT_TIMEZONE
    color: str = "auto"
    max_parallel: Optional[int] = None
    check_timeout: Optional[float] = None

    @classmethod
    def from_sources(cls, config: dict, overrides: dict) -> "Settings":
        """Build settings from a loaded config dict and explicit CLI overrides.

        Overrides whose value is None (or False for flags) leave the config
        value in place.
        """
        known = {f.name for f in fields(cls)}
        merged = {}
        for key, value in config.items():
            if key in known:
                merged[key] = value
            else:
                logger.warning(f"Ignoring unknown config key: {key}")
        for key, value in overrides.items():
            if key in known and value not in (None, False):
                merged[key] = value
        settings = cls(**merged)
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.color not in COLOR_MODES:
            raise ConfigError(f"Invalid color mode '{self.color}'. Choose from: {', '.join(COLOR_MODES)}")
        try:
            pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError:
            raise ConfigError(f"Unknown timezone: {self.timezone}")
        for key in ("verbose", "parallel"):
            setattr(self, key, _to_bool(key, getattr(self, key)))
        if self.max_parallel is not None:
            self.max_parallel = _to_number(int, "max_parallel", self.max_parallel)
            if self.max_parallel < 1:
                raise ConfigError("max_parallel must be at least 1")
        if self.check_timeout is not None:
            self.check_timeout = _to_number(float, "check_timeout", self.check_timeout)
            if self.check_timeout <= 0:
                raise ConfigError("check_timeout must be positive")


def _to_bool(key: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
    raise ConfigError(f"{key} must be true or false, got {value!r}")


def _to_number(kind, key: str, value):
    # YAML gives booleans for yes/no, which int() would silently accept
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}")


class ConfigLoader:
    """Load configuration from YAML/JSON files with environment variable support."""

    ENV_MAPPING = {
        "KUBE_HEALTH_OUTPUT": "output",
        "KUBE_HEALTH_VERBOSE": "verbose",
        "KUBE_HEALTH_PARALLEL": "parallel",
        "KUBE_HEALTH_CHECKS_DIR": "checks_dir",
        "KUBE_HEALTH_KUBE_CONTEXT": "kube_context",
        "KUBE_HEALTH_TIMEZONE": "timezone",
        "KUBE_HEALTH_COLOR": "color",
        "KUBE_HEALTH_MAX_PARALLEL": "max_parallel",
        "KUBE_HEALTH_CHECK_TIMEOUT": "check_timeout",
    }
    BOOL_KEYS = ("verbose", "parallel")
    INT_KEYS = ("max_parallel",)
    FLOAT_KEYS = ("check_timeout",)

    @staticmethod
    def load(config_path: Optional[str] = None) -> dict:
        """Read the config file (if any) and overlay environment variables.

        Raises:
            ConfigError: If the file is missing, unparseable or not a mapping
        """
        config = {}
        if config_path:
            if not os.path.exists(config_path):
                raise ConfigError(f"Config file not found: {config_path}")
            with open(config_path, "r") as f:
                content = f.read()
            try:
                if config_path.endswith((".yaml", ".yml")):
                    config = yaml.safe_load(content) or {}
                else:
                    config = json.loads(content)
            except (yaml.YAMLError, json.JSONDecodeError) as e:
                raise ConfigError(f"Cannot parse config file {config_path}: {e}")
            if not isinstance(config, dict):
                raise ConfigError(f"Config file {config_path} must contain a mapping")
            # Allow both snake_case and dashed keys in files
            config = {str(k).replace("-", "_"): v for k, v in config.items()}
        config.update(ConfigLoader._load_from_env())
        return config

    @staticmethod
    def _load_from_env() -> dict:
        config = {}
        for env_var, config_key in ConfigLoader.ENV_MAPPING.items():
            value = os.environ.get(env_var)
            if value:
                if config_key in ConfigLoader.BOOL_KEYS:
                    config[config_key] = value.lower() in ("true", "1", "yes")
                elif config_key in ConfigLoader.INT_KEYS:
                    try:
                        config[config_key] = int(value)
                    except ValueError:
                        pass
                elif config_key in ConfigLoader.FLOAT_KEYS:
                    try:
                        config[config_key] = float(value)
                    except ValueError:
                        pass
                else:
                    config[config_key] = value
        return config
