import pytest
import yaml

from classification.models import RuleDraft, RuleUpdate
from exceptions import (
    ImmutableFieldError,
    PatternCompileError,
    RuleNotFoundError,
    UnknownRuleTypeError,
    ValidationError
)
from metrics import MetricsCollector


def _draft(**overrides):
    data = {
        "rule_type": "severity",
        "condition_pattern": "severe",
        "classification_value": "Severe",
        "confidence_score": 0.9,
        "priority": 100
    }
    data.update(overrides)
    return data


def _field_names(error):
    return [e["field"] for e in error.errors]


def test_create_rule_applies_defaults(engine):
    rule = engine.create_rule(RuleDraft(
        rule_type="Severity",
        condition_pattern="extreme",
        classification_value=" Extreme ",
        created_by="ops"
    ))

    assert rule.rule_type == "severity"
    assert rule.classification_value == "Extreme"
    assert rule.priority == 100
    assert rule.confidence_score == 1.0
    assert rule.is_active is True
    assert rule.created_by == "ops"
    assert engine.store.load_active_rules("severity")[0].id == rule.id


def test_invalid_pattern_is_rejected(engine):
    with pytest.raises(PatternCompileError) as exc_info:
        engine.create_rule(_draft(condition_pattern="(unclosed"))

    assert _field_names(exc_info.value) == ["condition_pattern"]
    assert engine.store.load_active_rules() == []


@pytest.mark.parametrize("confidence", [1.5, -0.1])
def test_out_of_range_confidence_is_rejected(engine, confidence):
    with pytest.raises(ValidationError) as exc_info:
        engine.create_rule(_draft(confidence_score=confidence))

    assert "confidence_score" in _field_names(exc_info.value)
    assert engine.store.load_active_rules() == []


def test_empty_pattern_is_rejected(engine):
    with pytest.raises(ValidationError):
        engine.create_rule(_draft(condition_pattern=""))
    assert engine.store.load_rules() == []


def test_unknown_rule_type_is_rejected(engine):
    with pytest.raises(UnknownRuleTypeError) as exc_info:
        engine.create_rule(_draft(rule_type="weather"))
    assert _field_names(exc_info.value) == ["rule_type"]


def test_missing_fields_are_reported(engine):
    with pytest.raises(ValidationError) as exc_info:
        engine.create_rule({"rule_type": "severity"})
    assert {"condition_pattern", "classification_value"} <= set(_field_names(exc_info.value))


def test_update_rule_fields(engine, make_rule):
    rule = make_rule()

    updated = engine.update_rule(rule.id, {"condition_pattern": "extreme|severe", "confidence_score": 0.5})

    assert updated.condition_pattern == "extreme|severe"
    assert updated.confidence_score == 0.5
    assert updated.updated_at is not None
    assert updated.created_at == rule.created_at
    assert engine.classify("Extreme heat").get("severity").confidence_score == 0.5


def test_update_rejects_invalid_pattern(engine, make_rule):
    rule = make_rule()

    with pytest.raises(PatternCompileError):
        engine.update_rule(rule.id, RuleUpdate(condition_pattern="[a-"))

    assert engine.get_rule(rule.id).condition_pattern == "severe"


def test_update_rejects_out_of_range_confidence(engine, make_rule):
    rule = make_rule()
    with pytest.raises(ValidationError):
        engine.update_rule(rule.id, {"confidence_score": 1.5})
    assert engine.get_rule(rule.id).confidence_score == 0.9


def test_rule_type_is_immutable(engine, make_rule):
    rule = make_rule()

    with pytest.raises(ImmutableFieldError) as exc_info:
        engine.update_rule(rule.id, {"rule_type": "category"})

    assert _field_names(exc_info.value) == ["rule_type"]
    assert engine.get_rule(rule.id).rule_type == "severity"
    assert engine.update_rule(rule.id, {"rule_type": "SEVERITY"}).rule_type == "severity"


def test_update_unknown_rule(engine):
    with pytest.raises(RuleNotFoundError):
        engine.update_rule("missing", {"priority": 1})


def test_deactivate_and_activate(engine, make_rule):
    rule = make_rule()

    assert engine.deactivate_rule(rule.id).is_active is False
    assert engine.classify("severe").get("severity") is None
    assert engine.get_rule(rule.id).id == rule.id

    assert engine.activate_rule(rule.id).is_active is True
    assert engine.classify("severe").get("severity").rule_id == rule.id


def test_deactivate_unknown_rule(engine):
    with pytest.raises(RuleNotFoundError):
        engine.deactivate_rule("missing")


def test_get_rule_unknown(engine):
    with pytest.raises(RuleNotFoundError):
        engine.get_rule("missing")


def test_list_rules_filters(engine, make_rule):
    sev_low = make_rule(priority=1)
    sev_high = make_rule(priority=9)
    category = make_rule(rule_type="category", pattern="flood", value="Weather")
    engine.deactivate_rule(sev_low.id)

    assert [r.id for r in engine.list_rules()] == [sev_high.id, sev_low.id, category.id]
    assert [r.id for r in engine.list_rules(rule_type="severity", active_only=True)] == [sev_high.id]
    with pytest.raises(UnknownRuleTypeError):
        engine.list_rules(rule_type="weather")


def test_summary_counts_per_type(engine, make_rule):
    make_rule()
    inactive = make_rule(value="Moderate")
    make_rule(rule_type="source", pattern="gdacs", value="GDACS")
    engine.deactivate_rule(inactive.id)

    summary = engine.get_summary()

    assert summary["total_rules"] == 3
    assert summary["active_rules"] == 2
    assert summary["inactive_rules"] == 1
    assert summary["type_counts"]["severity"] == {"total": 2, "active": 1}
    assert summary["type_counts"]["source"] == {"total": 1, "active": 1}
    assert summary["type_counts"]["impact"] == {"total": 0, "active": 0}


def test_analytics_use_configured_defaults(engine, severity_rules):
    rule_a, rule_b = severity_rules
    for text in ("Light rain", "Light rain", "Severe storm"):
        engine.classify(text)

    assert [r.rule_id for r in engine.get_underperformers()] == [rule_b.id, rule_a.id]
    assert engine.get_top_performers(1)[0].rule_id == rule_a.id
    assert [r.rule_id for r in engine.get_stale_rules()] == [rule_b.id]
    assert engine.get_performance_summary()["underperformers"] == 2


def test_rule_performance_and_reset(engine, severity_rules):
    rule_a, _ = severity_rules
    engine.classify("severe")

    assert engine.get_rule_performance(rule_a.id).successful_matches == 1
    assert engine.reset_performance(rule_a.id).total_processed == 0
    with pytest.raises(RuleNotFoundError):
        engine.reset_performance("missing")


def test_mutations_are_counted(engine, make_rule):
    rule = make_rule()
    engine.update_rule(rule.id, {"priority": 5})
    engine.deactivate_rule(rule.id)

    counters = MetricsCollector().get_summary()["counters"]
    assert counters["rule_mutations_total"] == 3
    assert counters["rule_mutation[action=create]"] == 1


def test_import_rules_from_yaml(engine, tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(yaml.safe_dump({
        "processing_order": ["category", "severity"],
        "rules": [
            {"rule_type": "severity", "pattern": "(extreme|severe)", "value": "Severe", "confidence": 0.9},
            {"rule_type": "category", "condition_pattern": "flood", "classification_value": "Weather",
             "priority": 10, "source_types": ["gdacs"]}
        ]
    }))

    imported = engine.import_rules(str(path), created_by="seed")

    assert len(imported) == 2
    assert all(r.created_by == "seed" for r in imported)
    assert engine.get_processing_order() == ["category", "severity"]
    assert engine.classify("Severe flood", source_type="gdacs").labels() == {"category": "Weather", "severity": "Severe"}


def test_import_is_all_or_nothing(engine, tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(yaml.safe_dump({"rules": [
        {"rule_type": "severity", "pattern": "severe", "value": "Severe"},
        {"rule_type": "severity", "pattern": "(unclosed", "value": "Broken"}
    ]}))

    with pytest.raises(ValidationError) as exc_info:
        engine.import_rules(str(path))

    assert _field_names(exc_info.value) == ["rules.1.condition_pattern"]
    assert engine.list_rules() == []


def test_export_round_trip(engine, make_rule, tmp_path):
    make_rule(pattern="severe", value="Severe", source_types=["weather"])
    make_rule(rule_type="category", pattern="cyber", value="Security", priority=7)
    out = tmp_path / "export.yaml"

    document = yaml.safe_load(engine.export_rules(file_path=str(out)))

    assert document["processing_order"] == ["severity", "category", "impact", "source"]
    assert [r["condition_pattern"] for r in document["rules"]] == ["severe", "cyber"]
    assert document["rules"][0]["source_types"] == ["weather"]
    assert yaml.safe_load(out.read_text()) == document
