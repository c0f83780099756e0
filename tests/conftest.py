"""Shared test fixtures and configuration."""
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml

from src.notif.inbox import NotificationInbox
from src.rules.lifecycle import RuleLifecycleManager
from src.rules.rule_defs import MarketSample, RuleSpec
from src.storage.db import make_engine, make_session_factory
from src.storage.models import Base
from src.storage.repo import NotificationStore, PreferenceStore, RuleStore


@pytest.fixture
def test_config_dict() -> Dict[str, Any]:
    """Minimal valid engine config."""
    return {
        'engine': {
            'name': 'Alert Engine Test',
            'version': '2.0.0'
        },
        'scanner': {
            'interval_seconds': 60,
            'symbol_timeout_seconds': 5,
            'max_concurrent_symbols': 4
        },
        'provider': {
            'type': 'static',
            'quotes': {
                'PETR4': {'price': 36.0, 'volume': 1500000, 'change_percent': 3.5}
            }
        },
        'notifications': {
            'default_priority': 'medium',
            'retention_days': 30,
            'channels': {
                'push': {'enabled': True, 'default_chat_id': '${CHANNEL_CHAT_ID}'},
                'email': {'enabled': False}
            }
        },
        'database': {
            'cleanup': {
                'enabled': True,
                'triggered_retention_days': 30,
                'notification_retention_days': 30,
                'schedule_hour_utc': 3
            }
        }
    }


@pytest.fixture
def test_config_yaml(tmp_path: Path, test_config_dict: Dict[str, Any]) -> Path:
    """Create a temporary test config YAML file."""
    config_file = tmp_path / 'test_config.yaml'
    with open(config_file, 'w', encoding='utf-8') as f:
        yaml.dump(test_config_dict, f)

    return config_file


@pytest.fixture
def write_config(tmp_path: Path, monkeypatch):
    """Write a config dict to YAML and point the process config at it."""
    def _write(config: Dict[str, Any], name: str = 'config.yaml') -> Path:
        config_file = tmp_path / name
        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(config, f)
        monkeypatch.setenv('CONFIG_FILE', str(config_file))
        monkeypatch.setattr('src.config._config_instance', None)
        return config_file
    return _write


@pytest.fixture
def test_env_vars(monkeypatch, test_config_yaml: Path):
    """Set test environment variables."""
    monkeypatch.setenv('CHANNEL_CHAT_ID', '-1001234567890')
    monkeypatch.setenv('SMTP_PASSWORD', 'smtp-secret')
    monkeypatch.setenv('CONFIG_FILE', str(test_config_yaml))
    monkeypatch.setenv('LOG_LEVEL', 'DEBUG')
    monkeypatch.setattr('src.config._config_instance', None)


@pytest.fixture
def session_factory(tmp_path: Path):
    """Fresh SQLite database file per test."""
    engine = make_engine(f"sqlite:///{tmp_path / 'alerts_test.db'}")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def rule_store(session_factory) -> RuleStore:
    return RuleStore(session_factory)


@pytest.fixture
def lifecycle(rule_store) -> RuleLifecycleManager:
    return RuleLifecycleManager(rule_store)


@pytest.fixture
def inbox(session_factory) -> NotificationInbox:
    return NotificationInbox(NotificationStore(session_factory), PreferenceStore(session_factory))


@pytest.fixture
def price_spec() -> RuleSpec:
    """PETR4 above 35.00."""
    return RuleSpec(
        owner_id='user-1',
        symbol='petr4',
        kind='price',
        condition_type='above',
        target_value=35.0,
    )


@pytest.fixture
def make_sample():
    """Factory for MarketSample with sensible defaults."""
    def _make(price: float = 36.0, symbol: str = 'PETR4', **kwargs) -> MarketSample:
        return MarketSample(
            symbol=symbol,
            price=price,
            volume=kwargs.get('volume', 1_000_000.0),
            change_percent=kwargs.get('change_percent', 0.0),
            indicators=kwargs.get('indicators', {}),
            observed_at=kwargs.get('observed_at', datetime(2025, 1, 15, 12, 0)),
        )
    return _make
