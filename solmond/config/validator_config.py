"""
Monitor configuration loader.

Reads ``config.yaml`` into a validated pydantic model. Secrets may also
come from a ``.env`` file or the environment, which take precedence
over the file.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from solmond.monitoring.alert_scheduler import parse_alert_time

logger = structlog.get_logger(__name__)

CONFIG_FILE_NAME = "config.yaml"
DEFAULT_CONFIG_DIR = Path("~/.solana-mc/config").expanduser()

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

# skip rate and delegation alerts are not implemented
UNSUPPORTED_ALERTS = ("delegation_alerts", "skip_rate_alerts")


class ConfigError(Exception):
    """Configuration is missing or invalid."""


def parse_duration(value: str) -> float:
    """
    Parse a duration such as ``5s``, ``1m30s`` or ``500ms`` into seconds.

    Raises:
        ValueError: If the string is not a positive duration
    """
    text = value.strip()
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"Invalid duration: {value!r}")

    seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return seconds


class Endpoints(BaseModel):
    rpc_endpoint: str
    network_rpc: str

    @field_validator("rpc_endpoint", "network_rpc")
    @classmethod
    def _not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("endpoint must not be empty")
        return v.strip()


class ValidatorDetails(BaseModel):
    validator_name: str = ""
    pub_key: str
    vote_key: str

    @field_validator("pub_key", "vote_key")
    @classmethod
    def _not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("key must not be empty")
        return v.strip()


class EnableAlerts(BaseModel):
    enable_telegram_alerts: bool = False
    enable_email_alerts: bool = False
    enable_slack_alerts: bool = False


class RegularStatusAlerts(BaseModel):
    alert_timings: List[str] = Field(default_factory=list)

    @field_validator("alert_timings")
    @classmethod
    def _valid_timings(cls, timings: List[str]) -> List[str]:
        for timing in timings:
            try:
                parse_alert_time(timing)
            except ValueError:
                raise ValueError(f"invalid alert timing {timing!r}, expected e.g. '3:04PM'")
        return timings


class AlerterPreferences(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    delegation_alerts: str = "no"
    account_balance_change_alerts: str = "no"
    block_diff_alerts: str = "no"
    node_health_alert: str = "yes"
    epoch_diff_alerts: str = Field("no", validation_alias=AliasChoices("epoch_diff_alerts", "epoch_diff_alrets"))
    skip_rate_alerts: str = "no"
    startup_alerts: str = "no"
    new_epoch_alerts: str = "no"

    def enabled(self, name: str) -> bool:
        return str(getattr(self, name, "no")).strip().lower() in ("yes", "true", "on")

    def unsupported_enabled(self) -> List[str]:
        """Switches that are accepted in the file but have no alert behind them."""
        return [name for name in UNSUPPORTED_ALERTS if self.enabled(name)]


class AlertingThresholds(BaseModel):
    block_diff_threshold: int = 0
    balance_change_threshold: float = 0.0
    epoch_diff_threshold: int = 0
    skip_rate_threshold: int = 0


class Scraper(BaseModel):
    rate: str = "5s"

    @field_validator("rate")
    @classmethod
    def _valid_rate(cls, v: str) -> str:
        parse_duration(v)
        return v

    @property
    def interval_seconds(self) -> float:
        return parse_duration(self.rate)


class Telegram(BaseModel):
    tg_bot_token: str = ""
    tg_chat_id: Optional[int] = None


class SendGrid(BaseModel):
    sendgrid_token: str = ""
    receiver_email_address: str = ""
    account_email: str = ""
    sendgrid_account_name: str = ""


class Slack(BaseModel):
    webhook_url: str = ""


class Prometheus(BaseModel):
    listen_address: str
    prometheus_address: str = ""

    @field_validator("listen_address")
    @classmethod
    def _valid_listen_address(cls, v: str) -> str:
        _split_listen_address(v)
        return v

    def host_port(self) -> Tuple[str, int]:
        return _split_listen_address(self.listen_address)


class Dedup(BaseModel):
    backend: Literal["local", "prometheus"] = "local"


class MonitorConfig(BaseModel):
    """Complete monitor configuration."""
    model_config = ConfigDict(populate_by_name=True)

    endpoints: Endpoints = Field(validation_alias=AliasChoices("rpc_and_lcd_endpoints", "endpoints"))
    validator_details: ValidatorDetails
    enable_alerts: EnableAlerts = Field(default_factory=EnableAlerts)
    regular_status_alerts: RegularStatusAlerts = Field(default_factory=RegularStatusAlerts)
    alerter_preferences: AlerterPreferences = Field(default_factory=AlerterPreferences)
    alerting_thresholds: AlertingThresholds = Field(
        default_factory=AlertingThresholds,
        validation_alias=AliasChoices("alerting_thresholds", "alerting_threholds"),
    )
    scraper: Scraper = Field(default_factory=Scraper)
    telegram: Telegram = Field(default_factory=Telegram)
    sendgrid: SendGrid = Field(default_factory=SendGrid)
    slack: Slack = Field(default_factory=Slack)
    prometheus: Prometheus
    dedup: Dedup = Field(default_factory=Dedup)

    @model_validator(mode="after")
    def _channels_have_credentials(self) -> "MonitorConfig":
        if self.enable_alerts.enable_telegram_alerts:
            if not self.telegram.tg_bot_token or self.telegram.tg_chat_id is None:
                raise ValueError("telegram alerts enabled but tg_bot_token/tg_chat_id missing")
        if self.enable_alerts.enable_email_alerts:
            sg = self.sendgrid
            if not (sg.sendgrid_token and sg.receiver_email_address and sg.account_email):
                raise ValueError("email alerts enabled but sendgrid settings incomplete")
        if self.enable_alerts.enable_slack_alerts and not self.slack.webhook_url:
            raise ValueError("slack alerts enabled but webhook_url missing")
        if self.dedup.backend == "prometheus" and not self.prometheus.prometheus_address:
            raise ValueError("prometheus dedup backend requires prometheus_address")
        return self

    @model_validator(mode="after")
    def _enabled_alerts_have_thresholds(self) -> "MonitorConfig":
        prefs, thresholds = self.alerter_preferences, self.alerting_thresholds
        required = (
            ("block_diff_alerts", "block_diff_threshold"),
            ("account_balance_change_alerts", "balance_change_threshold"),
            ("epoch_diff_alerts", "epoch_diff_threshold"),
        )
        for switch, threshold in required:
            if prefs.enabled(switch) and getattr(thresholds, threshold) <= 0:
                raise ValueError(f"{switch} enabled but {threshold} is not positive")
        return self


def _split_listen_address(address: str) -> Tuple[str, int]:
    host, sep, port = address.strip().rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"listen_address must look like ':9090' or 'host:9090', got {address!r}")
    return host or "0.0.0.0", int(port)


def find_config_file(config_path: Optional[Path] = None) -> Path:
    """Locate the config file using the documented search order."""
    candidates = []
    if config_path is not None:
        candidates.append(Path(config_path))
    env_path = os.getenv("CONFIG_PATH")
    if env_path:
        env = Path(env_path)
        candidates.append(env if env.suffix else env / CONFIG_FILE_NAME)
    candidates.extend([
        Path(".") / CONFIG_FILE_NAME,
        Path("..") / CONFIG_FILE_NAME,
        DEFAULT_CONFIG_DIR / CONFIG_FILE_NAME,
    ])

    for candidate in candidates:
        if candidate.is_file():
            return candidate

    searched = ", ".join(str(c) for c in candidates)
    raise ConfigError(f"Configuration file not found (searched: {searched})")


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    overrides = {
        ("telegram", "tg_bot_token"): os.getenv("TELEGRAM_BOT_TOKEN"),
        ("telegram", "tg_chat_id"): os.getenv("TELEGRAM_CHAT_ID"),
        ("sendgrid", "sendgrid_token"): os.getenv("SENDGRID_API_KEY"),
        ("slack", "webhook_url"): os.getenv("SLACK_WEBHOOK_URL"),
    }
    for (section, key), value in overrides.items():
        if value:
            data.setdefault(section, {})
            if data[section] is None:
                data[section] = {}
            data[section][key] = value
    return data


def load_config(config_path: Optional[Path] = None) -> MonitorConfig:
    """
    Load and validate the monitor configuration.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    load_dotenv()

    path = find_config_file(config_path)
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error reading {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        config = MonitorConfig.model_validate(_apply_env_overrides(data))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    for name in config.alerter_preferences.unsupported_enabled():
        logger.warning("Alert type is not supported, ignoring", alert=name)
    return config
