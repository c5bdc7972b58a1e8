"""Configuration management for the heartbeat monitor."""

import os
from typing import Dict, Any, Optional
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError


# Settings the process cannot start without, keyed by environment variable.
REQUIRED_ENV = {
    "ELASTICSEARCH_URI": "elasticsearch_uri",
    "ELASTICSEARCH_INDEX": "elasticsearch_index",
    "SIGNALFX_API_KEY": "signalfx_api_key",
    "METRIC_NAME": "metric_name",
    "COMPONENT_NAME": "component_name",
    "DEPLOY_ENV": "environment",
}

OPTIONAL_ENV = {
    "LOG_LEVEL": "log_level",
    "LOG_FORMAT": "log_format",
    "POLL_INTERVAL_SECONDS": "poll_interval_seconds",
    "INVENTORY_TTL_SECONDS": "inventory_ttl_seconds",
    "REQUEST_TIMEOUT_SECONDS": "request_timeout_seconds",
    "HEARTBEAT_WINDOW": "heartbeat_window",
    "MAX_HOSTS": "max_hosts",
    "HEARTBEAT_TITLE": "heartbeat_title",
    "HOSTNAME_FIELD": "hostname_field",
    "TIMESTAMP_FIELD": "timestamp_field",
    "ADDRESS_HOST_PREFIXES": "address_host_prefixes",
    "SIGNALFX_INGEST_URL": "signalfx_ingest_url",
    "AWS_REGION": "aws_region",
}


class MonitorConfig(BaseModel):
    """Immutable settings for one monitor process."""

    model_config = ConfigDict(frozen=True)

    # Log store
    elasticsearch_uri: str = Field(description="Elasticsearch endpoint")
    elasticsearch_index: str = Field(description="Index or index pattern holding heartbeat logs")
    heartbeat_title: str = Field(default="heartbeat", description="Value of the title field on heartbeat entries")
    hostname_field: str = Field(default="hostname", description="Field used to bucket heartbeats by host")
    timestamp_field: str = Field(default="timestamp", description="Timestamp field aggregated with max")
    heartbeat_window: str = Field(default="1h", description="Trailing window searched for heartbeats")
    max_hosts: int = Field(default=200, gt=0, description="Maximum number of host buckets")

    # Metrics sink
    signalfx_api_key: str = Field(description="SignalFx ingest token")
    signalfx_ingest_url: str = Field(default="https://ingest.signalfx.com", description="SignalFx ingest endpoint")
    metric_name: str = Field(description="Metric name prefix for the heartbeat gauges")
    component_name: str = Field(description="Value of the component dimension")
    environment: str = Field(description="Value of the environment dimension")

    # Inventory
    aws_region: Optional[str] = Field(default=None, description="AWS region; falls back to the AWS default chain")
    inventory_ttl_seconds: float = Field(default=60.0, gt=0, description="Running-instance cache lifetime")
    address_host_prefixes: tuple[str, ...] = Field(
        default=("ip-",), description="Hostname prefixes that encode a private IP address"
    )

    # Scheduling
    poll_interval_seconds: float = Field(default=15.0, gt=0, description="Delay between completed cycles")
    request_timeout_seconds: float = Field(default=15.0, gt=0, description="Timeout for every network call")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="console or json")


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def load_config(config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> MonitorConfig:
    """Load configuration from an optional YAML file, then environment variables.

    Raises ConfigurationError naming every required variable that is missing.
    """
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = env.get("HEARTBEAT_MONITOR_CONFIG", "config/heartbeat-monitor.yaml")

    config_data: Dict[str, Any] = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        config_data.update(loaded)

    # Override with environment variables; empty values count as unset
    for env_name, key in {**REQUIRED_ENV, **OPTIONAL_ENV}.items():
        value = env.get(env_name)
        if value:
            if key == "address_host_prefixes":
                value = _split_csv(value)
            config_data[key] = value

    missing = [name for name, key in REQUIRED_ENV.items() if not config_data.get(key)]
    if missing:
        raise ConfigurationError(f"Must specify env variable(s) {', '.join(missing)}")

    try:
        return MonitorConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
