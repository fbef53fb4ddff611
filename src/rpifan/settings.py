"""Runtime settings loaded from an optional YAML file."""

import os
from dataclasses import dataclass, fields
from typing import Optional

import yaml

from .device import DEFAULT_DEVICE_PATH
from .errors import ConfigError
from .thermal import DEFAULT_THERMAL_PATH

CONFIG_ENV_VAR = "RPIFAN_CONFIG"


@dataclass
class Settings:
    """Paths and defaults shared by the dispatcher and the governor."""

    device_path: str = DEFAULT_DEVICE_PATH
    thermal_path: str = DEFAULT_THERMAL_PATH
    pid_file: str = "/run/rpifan/adaptive.pid"
    process_name: str = "adaptive_rpifan_pwm"
    default_interval_ms: int = 5000
    debug: bool = False


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings from YAML.

    The path comes from the argument or the RPIFAN_CONFIG environment
    variable. Without either, built-in defaults are returned.

    Raises:
        ConfigError: If the file is missing, not valid YAML, not a mapping,
            contains unknown keys or a value of the wrong type.
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if not config_path:
        return Settings()

    try:
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing config file: {e}")

    if cfg is None:
        return Settings()
    if not isinstance(cfg, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(cfg) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {config_path}: {', '.join(unknown)}")

    for f in fields(Settings):
        if f.name not in cfg:
            continue
        value = cfg[f.name]
        expected = type(f.default)
        # bool is a subclass of int, so check it explicitly
        if (type(value) is bool and expected is not bool) or not isinstance(value, expected):
            raise ConfigError(
                f"{f.name} in {config_path} must be {expected.__name__}, got {value!r}"
            )

    settings = Settings(**cfg)
    if settings.default_interval_ms <= 0:
        raise ConfigError("default_interval_ms must be positive")
    return settings
