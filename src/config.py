import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))

# Environment variables (secrets)
BOT_TOKEN = os.getenv("BOT_TOKEN", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CONFIG_FILE = os.getenv("CONFIG_FILE", "./configs/default.yaml")

REQUIRED_SECTIONS = ['engine', 'scanner', 'notifications', 'database']


def _substitute_env(value: Any, default: Any = None) -> Any:
    """Replace "${VAR}" strings (also inside dicts/lists) with environment values."""
    if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
        return os.getenv(value[2:-1], default)
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


class ConfigLoader:
    """Loads and validates YAML configuration with environment variable substitution."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self._config: Optional[Dict[str, Any]] = None
        self._load()

    def _load(self):
        """Load YAML config file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._config = yaml.safe_load(f) or {}

        # Validate required sections
        for section in REQUIRED_SECTIONS:
            if section not in self._config:
                raise ValueError(f"Missing required config section: {section}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get config value by dot-notation path.
        Example: config.get('scanner.interval_seconds') -> 120
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
                if value is None:
                    return default
            else:
                return default

        return _substitute_env(value, default)

    @property
    def raw(self) -> Dict[str, Any]:
        """Get raw config dict."""
        return self._config


# Global config instance (lazy-loaded)
_config_instance: Optional[ConfigLoader] = None


def get_config() -> ConfigLoader:
    """Get global config instance (singleton pattern)."""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigLoader(os.getenv("CONFIG_FILE", CONFIG_FILE))
    return _config_instance


def _int_in_range(value: Any, default: int, low: int, high: Optional[int] = None) -> int:
    try:
        number = int(value)
    except (ValueError, TypeError):
        return default
    if number < low or (high is not None and number > high):
        return default
    return number


def _section(key_path: str) -> Dict[str, Any]:
    section = get_config().get(key_path, {})
    if not isinstance(section, dict):
        section = {}
    return section


# Helper functions for common config access
def get_engine_name() -> str:
    return get_config().get('engine.name', 'Alert Engine')


def get_engine_version() -> str:
    return get_config().get('engine.version', '1.0.0')


def get_scanner_config() -> Dict[str, Any]:
    """Get scanner config with validation and safe defaults."""
    scanner_config = _section('scanner')

    scanner_config['interval_seconds'] = _int_in_range(
        scanner_config.get('interval_seconds', 120), 120, 5, 3600
    )
    scanner_config['symbol_timeout_seconds'] = _int_in_range(
        scanner_config.get('symbol_timeout_seconds', 10), 10, 1, 120
    )
    scanner_config['max_concurrent_symbols'] = _int_in_range(
        scanner_config.get('max_concurrent_symbols', 10), 10, 1
    )
    scanner_config.setdefault('rearm_on_sweep', True)

    return scanner_config


def get_provider_config() -> Dict[str, Any]:
    """Market data provider settings."""
    provider_config = _section('provider')

    provider_type = str(provider_config.get('type', 'binance')).lower()
    if provider_type not in ('binance', 'static'):
        provider_type = 'binance'
    provider_config['type'] = provider_type

    provider_config.setdefault('base_url', 'https://api.binance.com')
    provider_config['timeout_seconds'] = _int_in_range(
        provider_config.get('timeout_seconds', 10), 10, 1, 120
    )
    quotes = provider_config.get('quotes')
    provider_config['quotes'] = quotes if isinstance(quotes, dict) else {}

    return provider_config


def get_notification_config() -> Dict[str, Any]:
    """Notification defaults and channel settings."""
    notif_config = _section('notifications')

    priority = notif_config.get('default_priority', 'medium')
    if priority not in ('low', 'medium', 'high', 'critical'):
        priority = 'medium'
    notif_config['default_priority'] = priority

    notif_config['retention_days'] = _int_in_range(notif_config.get('retention_days', 30), 30, 1)
    expires = _int_in_range(notif_config.get('expires_after_days'), 0, 1)
    notif_config['expires_after_days'] = expires or None

    channels = notif_config.get('channels')
    if not isinstance(channels, dict):
        channels = {}
    for name in ('push', 'email'):
        if not isinstance(channels.get(name), dict):
            channels[name] = {}
    channels['push'].setdefault('enabled', True)
    channels['email'].setdefault('enabled', False)
    notif_config['channels'] = channels

    return notif_config


def get_quote_stream_config() -> Dict[str, Any]:
    stream_config = _section('quote_stream')
    stream_config.setdefault('enabled', False)
    stream_config.setdefault('url', 'wss://stream.binance.com:9443/stream')
    stream_config.setdefault('symbols', [])
    return stream_config


def get_healthcheck_config() -> Dict[str, Any]:
    health_config = _section('healthcheck')
    health_config.setdefault('enabled', False)
    health_config.setdefault('host', '0.0.0.0')
    health_config['port'] = _int_in_range(health_config.get('port', 8080), 8080, 1, 65535)
    return health_config


def get_database_cleanup_config() -> Dict[str, Any]:
    """Retention cleanup settings."""
    cleanup_config = _section('database.cleanup')
    cleanup_config.setdefault('enabled', True)
    cleanup_config['triggered_retention_days'] = _int_in_range(
        cleanup_config.get('triggered_retention_days', 30), 30, 1
    )
    # Falls back to notifications.retention_days
    notif_retention = get_notification_config()['retention_days']
    cleanup_config['notification_retention_days'] = _int_in_range(
        cleanup_config.get('notification_retention_days', notif_retention), notif_retention, 1
    )
    cleanup_config['schedule_hour_utc'] = _int_in_range(
        cleanup_config.get('schedule_hour_utc', 3), 3, 0, 23
    )
    return cleanup_config
