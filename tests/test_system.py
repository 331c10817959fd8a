import yaml
import pytest

import cli
from config import ConfigManager
from exceptions import ConfigurationError
from main import VigilSystem


@pytest.fixture
def seed_file(tmp_path):
    path = tmp_path / "seed.yaml"
    path.write_text(yaml.safe_dump({
        "processing_order": ["severity", "category"],
        "rules": [
            {"rule_type": "severity", "pattern": "(extreme|severe)", "value": "Severe", "priority": 100},
            {"rule_type": "category", "pattern": "flood|storm", "value": "Weather"}
        ]
    }))
    return path


def test_seed_rules_imported_once(monkeypatch, seed_file):
    monkeypatch.setenv("VIGIL_SEED_RULES_PATH", str(seed_file))

    with VigilSystem(ConfigManager().load()) as system:
        assert len(system.engine.list_rules()) == 2
        assert all(r.created_by == "seed" for r in system.engine.list_rules())
        assert system.engine.get_processing_order() == ["severity", "category"]

    with VigilSystem(ConfigManager().load()) as system:
        assert len(system.engine.list_rules()) == 2


def test_missing_seed_path_fails_startup(monkeypatch, tmp_path):
    monkeypatch.setenv("VIGIL_SEED_RULES_PATH", str(tmp_path / "missing.yaml"))
    with pytest.raises(ConfigurationError):
        VigilSystem(ConfigManager().load())


def test_shutdown_flushes_buffered_counters(monkeypatch):
    monkeypatch.setenv("VIGIL_PERFORMANCE_WRITE_THROUGH", "false")

    with VigilSystem(ConfigManager().load()) as system:
        rule = system.engine.create_rule({
            "rule_type": "severity", "condition_pattern": "severe", "classification_value": "Severe"
        })
        system.engine.classify("severe storm")
        assert system.engine.tracker.pending_writes == 1

    with VigilSystem(ConfigManager().load()) as system:
        assert system.store.load_performance(rule.id).successful_matches == 1


def test_cli_import_classify_and_stats(seed_file, capsys):
    assert cli.main(["import", str(seed_file), "--author", "ops"]) == 0
    assert cli.main(["classify", "Severe storm approaching"]) == 0

    assert "Imported 2 rule(s)" in capsys.readouterr().out

    with VigilSystem(ConfigManager().load()) as system:
        assert {r.created_by for r in system.engine.list_rules()} == {"ops"}
        assert system.engine.tracker.get_record(system.engine.list_rules()[0].id).successful_matches == 1

    assert cli.main(["stats"]) == 0
    assert cli.main(["test"]) == 0
    assert cli.main(["order", "category", "severity"]) == 0


def test_cli_export_writes_file(seed_file, tmp_path):
    out = tmp_path / "out.yaml"
    assert cli.main(["import", str(seed_file)]) == 0
    assert cli.main(["export", "--output", str(out)]) == 0
    assert len(yaml.safe_load(out.read_text())["rules"]) == 2


def test_cli_reports_errors(tmp_path, capsys):
    broken = tmp_path / "broken.yaml"
    broken.write_text(yaml.safe_dump([{"rule_type": "severity", "pattern": "(unclosed", "value": "X"}]))

    assert cli.main(["import", str(broken)]) == 1
    assert "condition_pattern" in capsys.readouterr().out

    assert cli.main(["order", "severity", "weather"]) == 1


def test_cli_without_command_prints_help(capsys):
    assert cli.main([]) == 0
    assert "Vigil CLI" in capsys.readouterr().out
