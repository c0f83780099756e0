"""Tests for configuration loading and validation."""
import pytest
from pathlib import Path
import yaml
from src.config import (
    ConfigLoader,
    get_database_cleanup_config,
    get_healthcheck_config,
    get_notification_config,
    get_provider_config,
    get_scanner_config,
)


class TestConfigLoaderBasics:
    """Tests for basic ConfigLoader functionality."""

    def test_config_loader_init(self, test_config_yaml: Path):
        """ConfigLoader should initialize with valid YAML file."""
        loader = ConfigLoader(str(test_config_yaml))
        assert loader is not None
        assert loader._config is not None

    def test_config_loader_missing_file(self):
        """ConfigLoader should raise FileNotFoundError for missing file."""
        with pytest.raises(FileNotFoundError):
            ConfigLoader("/nonexistent/path/config.yaml")

    def test_config_loader_missing_section(self, tmp_path: Path):
        """ConfigLoader should raise ValueError for missing required sections."""
        config = {
            'engine': {'name': 'x'},
            'scanner': {}
            # Missing: notifications, database
        }

        config_file = tmp_path / 'invalid_config.yaml'
        with open(config_file, 'w') as f:
            yaml.dump(config, f)

        with pytest.raises(ValueError, match="Missing required config section"):
            ConfigLoader(str(config_file))

    def test_config_loader_empty_file(self, tmp_path: Path):
        """Empty YAML is treated as a config with no sections."""
        config_file = tmp_path / 'empty.yaml'
        config_file.write_text("")

        with pytest.raises(ValueError, match="engine"):
            ConfigLoader(str(config_file))

    def test_config_loader_raw_property(self, test_config_yaml: Path):
        """ConfigLoader.raw should return the raw config dictionary."""
        loader = ConfigLoader(str(test_config_yaml))
        raw = loader.raw
        assert isinstance(raw, dict)
        assert 'scanner' in raw
        assert 'notifications' in raw


class TestConfigLoaderDotNotation:
    """Tests for dot-notation config access."""

    def test_get_simple_key(self, test_config_yaml: Path):
        loader = ConfigLoader(str(test_config_yaml))
        assert loader.get('engine.name') == 'Alert Engine Test'

    def test_get_nested_key(self, test_config_yaml: Path):
        loader = ConfigLoader(str(test_config_yaml))
        assert loader.get('scanner.interval_seconds') == 60

    def test_get_deep_nested_key(self, test_config_yaml: Path):
        loader = ConfigLoader(str(test_config_yaml))
        assert loader.get('database.cleanup.schedule_hour_utc') == 3

    def test_get_nonexistent_key_with_default(self, test_config_yaml: Path):
        loader = ConfigLoader(str(test_config_yaml))
        assert loader.get('nonexistent.key', 'default_value') == 'default_value'

    def test_get_nonexistent_key_no_default(self, test_config_yaml: Path):
        loader = ConfigLoader(str(test_config_yaml))
        assert loader.get('nonexistent.key') is None

    def test_get_partial_path_none_intermediate(self, test_config_yaml: Path):
        """Path through a scalar returns the default."""
        loader = ConfigLoader(str(test_config_yaml))
        assert loader.get('engine.name.deep', 'fallback') == 'fallback'


class TestEnvSubstitution:
    """Tests for ${VAR} substitution."""

    def test_scalar_substitution(self, test_config_yaml: Path, monkeypatch):
        monkeypatch.setenv('CHANNEL_CHAT_ID', '-100555')
        loader = ConfigLoader(str(test_config_yaml))
        assert loader.get('notifications.channels.push.default_chat_id') == '-100555'

    def test_nested_substitution(self, test_config_yaml: Path, monkeypatch):
        """Substitution also applies inside returned dicts."""
        monkeypatch.setenv('CHANNEL_CHAT_ID', '-100777')
        loader = ConfigLoader(str(test_config_yaml))
        push = loader.get('notifications.channels.push')
        assert push['default_chat_id'] == '-100777'

    def test_missing_env_returns_default(self, test_config_yaml: Path, monkeypatch):
        monkeypatch.delenv('CHANNEL_CHAT_ID', raising=False)
        loader = ConfigLoader(str(test_config_yaml))
        assert loader.get('notifications.channels.push.default_chat_id', 'none') == 'none'


class TestScannerConfig:
    """Tests for scanner config validation and safe defaults."""

    def test_values_from_yaml(self, test_env_vars):
        config = get_scanner_config()
        assert config['interval_seconds'] == 60
        assert config['symbol_timeout_seconds'] == 5
        assert config['max_concurrent_symbols'] == 4
        assert config['rearm_on_sweep'] is True

    def test_interval_out_of_range_falls_back(self, write_config, test_config_dict):
        test_config_dict['scanner']['interval_seconds'] = 2
        write_config(test_config_dict)
        assert get_scanner_config()['interval_seconds'] == 120

    def test_interval_not_a_number_falls_back(self, write_config, test_config_dict):
        test_config_dict['scanner']['interval_seconds'] = 'often'
        write_config(test_config_dict)
        assert get_scanner_config()['interval_seconds'] == 120

    def test_timeout_too_high_falls_back(self, write_config, test_config_dict):
        test_config_dict['scanner']['symbol_timeout_seconds'] = 500
        write_config(test_config_dict)
        assert get_scanner_config()['symbol_timeout_seconds'] == 10

    def test_empty_scanner_section_defaults(self, write_config, test_config_dict):
        test_config_dict['scanner'] = {}
        write_config(test_config_dict)
        config = get_scanner_config()
        assert config['interval_seconds'] == 120
        assert config['symbol_timeout_seconds'] == 10
        assert config['max_concurrent_symbols'] == 10


class TestOtherAccessors:
    """Tests for provider, notification, cleanup and healthcheck accessors."""

    def test_provider_static(self, test_env_vars):
        config = get_provider_config()
        assert config['type'] == 'static'
        assert config['quotes']['PETR4']['price'] == 36.0

    def test_provider_unknown_type_falls_back(self, write_config, test_config_dict):
        test_config_dict['provider']['type'] = 'bloomberg'
        write_config(test_config_dict)
        assert get_provider_config()['type'] == 'binance'

    def test_notification_invalid_priority(self, write_config, test_config_dict):
        test_config_dict['notifications']['default_priority'] = 'urgent'
        write_config(test_config_dict)
        assert get_notification_config()['default_priority'] == 'medium'

    def test_notification_channels_defaults(self, write_config, test_config_dict):
        test_config_dict['notifications'] = {}
        write_config(test_config_dict)
        config = get_notification_config()
        assert config['channels']['push']['enabled'] is True
        assert config['channels']['email']['enabled'] is False
        assert config['expires_after_days'] is None

    def test_cleanup_defaults(self, write_config, test_config_dict):
        test_config_dict['database'] = {}
        write_config(test_config_dict)
        config = get_database_cleanup_config()
        assert config['enabled'] is True
        assert config['triggered_retention_days'] == 30
        assert config['notification_retention_days'] == 30
        assert config['schedule_hour_utc'] == 3

    def test_cleanup_notification_retention_follows_notifications(self, write_config, test_config_dict):
        test_config_dict['database'] = {}
        test_config_dict['notifications']['retention_days'] = 14
        write_config(test_config_dict)
        assert get_database_cleanup_config()['notification_retention_days'] == 14

    def test_cleanup_bad_hour_falls_back(self, write_config, test_config_dict):
        test_config_dict['database']['cleanup']['schedule_hour_utc'] = 25
        write_config(test_config_dict)
        assert get_database_cleanup_config()['schedule_hour_utc'] == 3

    def test_healthcheck_defaults(self, test_env_vars):
        config = get_healthcheck_config()
        assert config['enabled'] is False
        assert config['port'] == 8080
