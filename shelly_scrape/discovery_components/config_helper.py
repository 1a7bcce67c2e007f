"""
Configuration Helper - scraper settings from arguments, environment and YAML

Precedence: explicit argument > environment variable > config file > default.
"""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

from ..core.exceptions import ConfigError

DEFAULT_NETWORK = "192.168.1.0/24"
DEFAULT_INFLUX_URL = "http://localhost:8086"
DEFAULT_DATABASE = "shelly_data"
DEFAULT_INTERVAL = 60

ENV_VARS = {
    'shelly_ip': 'SHELLY_IP',
    'network': 'SHELLY_NETWORK',
    'influx_url': 'INFLUX_URL',
    'database': 'INFLUX_DATABASE',
    'influx_username': 'INFLUX_USERNAME',
    'influx_password': 'INFLUX_PASSWORD',
    'interval': 'SCRAPE_INTERVAL',
}


@dataclass
class ScraperConfig:
    """Runtime settings for discovery, polling and forwarding"""
    shelly_ips: List[str] = field(default_factory=list)
    discover: bool = False
    network: str = DEFAULT_NETWORK
    influx_url: str = DEFAULT_INFLUX_URL
    database: str = DEFAULT_DATABASE
    influx_username: Optional[str] = None
    influx_password: Optional[str] = None
    interval: int = DEFAULT_INTERVAL
    verbose: bool = False
    workers: int = 1
    scan_timeout: float = 300.0
    request_timeout: float = 5.0
    rediscover_cycles: int = 0
    signatures_file: Optional[str] = None

    def validate(self) -> "ScraperConfig":
        if not self.discover and not self.shelly_ips:
            raise ConfigError("Either specify --shelly-ip or use --discover to find devices")
        if self.interval <= 0:
            raise ConfigError(f"interval must be positive, got {self.interval}")
        if self.workers < 1:
            raise ConfigError(f"workers must be at least 1, got {self.workers}")
        if self.scan_timeout <= 0 or self.request_timeout <= 0:
            raise ConfigError("timeouts must be positive")
        if self.rediscover_cycles < 0:
            raise ConfigError(f"rediscover_cycles cannot be negative, got {self.rediscover_cycles}")
        if not self.influx_url.startswith(("http://", "https://")):
            raise ConfigError(f"influx_url must be an http(s) URL, got {self.influx_url}")
        return self


def load_config_file(path: str) -> Dict[str, Any]:
    """Load a YAML config file; keys use the ScraperConfig field names"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping")

    known = {f.name for f in fields(ScraperConfig)} | {'shelly_ip'}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")
    return data


def _split_ips(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [ip.strip() for ip in value.split(',') if ip.strip()]
    return [str(ip).strip() for ip in value if str(ip).strip()]


def _coerce(name: str, value: Any, target_type: type) -> Any:
    try:
        return target_type(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e


def create_scraper_config(config_file: Optional[str] = None,
                          environ: Optional[Dict[str, str]] = None,
                          **overrides: Any) -> ScraperConfig:
    """
    Create scraper configuration.

    Args:
        config_file: Optional YAML file with defaults
        environ: Environment mapping (os.environ when omitted)
        **overrides: Explicit values; None means "not given"

    Returns:
        Validated ScraperConfig
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    if config_file:
        values.update(load_config_file(config_file))

    for name, env_var in ENV_VARS.items():
        if environ.get(env_var):
            values[name] = environ[env_var]

    values.update({k: v for k, v in overrides.items() if v is not None})

    if 'shelly_ip' in values:
        values['shelly_ips'] = _split_ips(values.pop('shelly_ip'))
    elif 'shelly_ips' in values:
        values['shelly_ips'] = _split_ips(values['shelly_ips'])

    config = ScraperConfig()
    for f in fields(ScraperConfig):
        if f.name not in values:
            continue
        value = values[f.name]
        if f.name == 'shelly_ips':
            setattr(config, f.name, value)
        elif isinstance(getattr(config, f.name), bool):
            if isinstance(value, str):
                value = value.strip().lower() in ('1', 'true', 'yes', 'on')
            setattr(config, f.name, bool(value))
        elif isinstance(getattr(config, f.name), int):
            setattr(config, f.name, _coerce(f.name, value, int))
        elif isinstance(getattr(config, f.name), float):
            setattr(config, f.name, _coerce(f.name, value, float))
        else:
            setattr(config, f.name, value if value is None else str(value))

    return config.validate()
