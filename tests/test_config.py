import json

import pytest

from config import ConfigManager
from exceptions import ConfigurationError


def test_defaults(config):
    cls_cfg = config.classification
    assert cls_cfg.rule_types == ["severity", "category", "impact", "source"]
    assert cls_cfg.processing_order == cls_cfg.rule_types
    assert cls_cfg.default_priority == 100
    assert cls_cfg.default_confidence == 1.0
    assert cls_cfg.underperformer_threshold == 0.70
    assert cls_cfg.stale_window_days == 30
    assert cls_cfg.record_tester_runs is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("VIGIL_PROCESSING_ORDER", "Category, severity")
    monkeypatch.setenv("VIGIL_UNDERPERFORMER_THRESHOLD", "0.5")
    monkeypatch.setenv("VIGIL_STALE_WINDOW_DAYS", "7")
    monkeypatch.setenv("VIGIL_RECORD_TESTER_RUNS", "yes")
    monkeypatch.setenv("VIGIL_LOG_LEVEL", "debug")

    config = ConfigManager().load()

    assert config.classification.processing_order == ["category", "severity"]
    assert config.classification.underperformer_threshold == 0.5
    assert config.classification.stale_window_days == 7
    assert config.classification.record_tester_runs is True
    assert config.system.log_level == "DEBUG"


@pytest.mark.parametrize("name, value", [
    ("VIGIL_PROCESSING_ORDER", "severity,weather"),
    ("VIGIL_PROCESSING_ORDER", "severity,severity"),
    ("VIGIL_UNDERPERFORMER_THRESHOLD", "1.5"),
    ("VIGIL_UNDERPERFORMER_THRESHOLD", "high"),
    ("VIGIL_STALE_WINDOW_DAYS", "0"),
    ("VIGIL_DEFAULT_PRIORITY", "ten"),
])
def test_invalid_settings_fail_fast(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigurationError):
        ConfigManager().load()


def test_file_then_environment(tmp_path, monkeypatch):
    path = tmp_path / "vigil.json"
    path.write_text(json.dumps({
        "classification": {
            "rule_types": ["Severity", "Region"],
            "processing_order": ["region", "severity"],
            "default_priority": 10,
            "stale_window_days": 14
        }
    }))
    monkeypatch.setenv("VIGIL_STALE_WINDOW_DAYS", "3")

    config = ConfigManager(str(path)).load()

    assert config.classification.rule_types == ["severity", "region"]
    assert config.classification.processing_order == ["region", "severity"]
    assert config.classification.default_priority == 10
    assert config.classification.stale_window_days == 3


def test_missing_or_malformed_file(tmp_path):
    with pytest.raises(ConfigurationError):
        ConfigManager(str(tmp_path / "missing.json")).load()

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(ConfigurationError):
        ConfigManager(str(broken)).load()


def test_config_property_requires_load():
    manager = ConfigManager()
    with pytest.raises(ConfigurationError):
        _ = manager.config
    loaded = manager.load()
    assert manager.config is loaded
