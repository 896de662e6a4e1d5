"""Settings loading from YAML config plus environment secrets.

Only the CLI calls `load_settings`; everything else receives its settings
through constructor arguments.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

import yaml
from dotenv import load_dotenv

from .collectors.retry import RetryPolicy

ENV_OVERRIDES = {
    "CURTAIL_DB_PATH": "db_path",
    "CURTAIL_MARKET_URL": "market_url",
    "CURTAIL_MARKET_API_KEY": "market_api_key",
    "CURTAIL_DEVICES_URL": "devices_url",
    "CURTAIL_DEVICE_API_KEY": "devices_api_key",
}


class ConfigError(ValueError):
    pass


@dataclass
class Settings:
    db_path: Path | None = None  # None = default database location
    market_url: str | None = None
    market_api_key: str | None = None
    market_timeout: float = 15.0
    devices_url: str | None = None
    devices_api_key: str | None = None
    devices_timeout: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    alert_cooldown_seconds: int = 0
    recent_logs_limit: int = 20
    active_alerts_limit: int = 10


def get_config_path(explicit: Path | None = None) -> Path | None:
    """Find the curtail.yaml config file, or None if there is none."""
    if explicit is not None:
        if not Path(explicit).exists():
            raise ConfigError(f"Config file not found: {explicit}")
        return Path(explicit)

    candidates = [
        Path.cwd() / "config" / "curtail.yaml",
        Path.home() / ".config" / "curtail" / "curtail.yaml",
    ]
    for path in candidates:
        if path.exists():
            return path
    return None


def settings_from_dict(data: dict) -> Settings:
    """Build Settings from the parsed YAML structure."""
    market = data.get("market") or {}
    devices = data.get("devices") or {}
    retry = data.get("retry") or {}
    alerts = data.get("alerts") or {}
    analytics = data.get("analytics") or {}

    try:
        return Settings(
            db_path=Path(data["db_path"]).expanduser() if data.get("db_path") else None,
            market_url=market.get("base_url"),
            market_api_key=market.get("api_key"),
            market_timeout=float(market.get("timeout", 15.0)),
            devices_url=devices.get("base_url"),
            devices_api_key=devices.get("api_key"),
            devices_timeout=float(devices.get("timeout", 30.0)),
            retry=RetryPolicy(
                max_attempts=int(retry.get("max_attempts", 3)),
                initial_delay=float(retry.get("initial_delay", 1.0)),
                max_delay=float(retry.get("max_delay", 8.0)),
            ),
            alert_cooldown_seconds=int(alerts.get("cooldown_seconds", 0)),
            recent_logs_limit=int(analytics.get("recent_logs_limit", 20)),
            active_alerts_limit=int(analytics.get("active_alerts_limit", 10)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_settings(
    config_path: Path | None = None, environ: Mapping[str, str] | None = None
) -> Settings:
    """Load settings from YAML, then apply environment overrides.

    Secrets such as API keys are expected in the environment (or a .env file)
    rather than in the YAML file.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    path = get_config_path(config_path)
    data = {}
    if path is not None:
        with open(path) as f:
            data = yaml.safe_load(f) or {}

    settings = settings_from_dict(data)

    for env_name, attr in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            setattr(settings, attr, Path(value).expanduser() if attr == "db_path" else value)

    return settings
