from datetime import timedelta

import pytest

from classification.models import ClassificationRule, RulePerformanceRecord, utcnow
from database import DatabaseManager
from exceptions import RuleNotFoundError, StoreError


def _rule(rule_id, rule_type="severity", pattern="severe", priority=100, **extra):
    return ClassificationRule(
        id=rule_id,
        rule_type=rule_type,
        condition_pattern=pattern,
        classification_value=extra.pop("value", "Severe"),
        priority=priority,
        **extra
    )


def test_schema_is_created_once(db_manager, config):
    assert db_manager.schema_version() == 1

    reopened = DatabaseManager(config.database)
    try:
        assert reopened.schema_version() == 1
        with reopened.connection() as conn:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()}
    finally:
        reopened.close()

    assert {"classification_rules", "hierarchy_config", "rule_performance"} <= tables


def test_save_and_load_round_trip(store):
    rule = _rule("r1", source_types=["Weather", "weather", "GDACS"], created_by="admin", confidence_score=0.8)
    assert store.save_rule(rule) == "r1"

    loaded = store.load_rule("r1")
    assert loaded.rule_type == "severity"
    assert loaded.condition_pattern == "severe"
    assert loaded.confidence_score == 0.8
    assert loaded.source_types == ["weather", "gdacs"]
    assert loaded.created_by == "admin"
    assert loaded.created_at == rule.created_at
    assert loaded.sequence > 0


def test_load_unknown_rule_returns_none(store):
    assert store.load_rule("missing") is None


def test_sequence_follows_creation_order(store):
    for rule_id in ("first", "second", "third"):
        store.save_rule(_rule(rule_id))
    sequences = [r.sequence for r in store.load_rules()]
    assert sequences == sorted(sequences)
    assert [r.id for r in store.load_rules()] == ["first", "second", "third"]


def test_load_active_rules_filters_type_and_status(store):
    store.save_rule(_rule("sev-active"))
    store.save_rule(_rule("sev-inactive", is_active=False))
    store.save_rule(_rule("cat-active", rule_type="category"))

    assert {r.id for r in store.load_active_rules()} == {"sev-active", "cat-active"}
    assert [r.id for r in store.load_active_rules("severity")] == ["sev-active"]
    assert {r.id for r in store.load_rules("severity")} == {"sev-active", "sev-inactive"}


def test_upsert_keeps_rule_type_and_creation_fields(store):
    original = _rule("r1")
    store.save_rule(original)
    seq = store.load_rule("r1").sequence

    changed = _rule("r1", rule_type="category", pattern="flood", priority=7,
                    created_at=utcnow() + timedelta(days=1))
    store.save_rule(changed)

    loaded = store.load_rule("r1")
    assert loaded.rule_type == "severity"
    assert loaded.created_at == original.created_at
    assert loaded.sequence == seq
    assert loaded.condition_pattern == "flood"
    assert loaded.priority == 7


def test_update_status_and_priority(store):
    store.save_rule(_rule("r1"))

    store.update_rule_status("r1", False)
    store.update_priority("r1", 42)

    loaded = store.load_rule("r1")
    assert loaded.is_active is False
    assert loaded.priority == 42
    assert loaded.updated_at is not None


def test_updates_on_unknown_rule_raise_not_found(store):
    with pytest.raises(RuleNotFoundError):
        store.update_rule_status("missing", True)
    with pytest.raises(RuleNotFoundError):
        store.update_priority("missing", 1)


def test_processing_order_round_trip(store):
    assert store.load_processing_order() is None
    store.save_processing_order(["category", "severity"])
    assert store.load_processing_order() == ["category", "severity"]
    store.save_processing_order(["impact"])
    assert store.load_processing_order() == ["impact"]


def test_performance_round_trip(store):
    used = utcnow()
    store.save_performance(RulePerformanceRecord(
        rule_id="r1", rule_type="severity", total_processed=4,
        successful_matches=3, confidence_average=0.75, last_used_at=used
    ))
    store.save_performance(RulePerformanceRecord(rule_id="r0", total_processed=1))

    record = store.load_performance("r1")
    assert record.total_processed == 4
    assert record.successful_matches == 3
    assert record.accuracy_rate == 0.75
    assert record.last_used_at == used
    assert store.load_performance("missing") is None
    assert [r.rule_id for r in store.load_all_performance()] == ["r0", "r1"]


def test_closed_database_raises_store_error(store, db_manager):
    db_manager.close()
    with pytest.raises(StoreError):
        store.load_rules()
    with pytest.raises(StoreError):
        store.save_rule(_rule("r1"))
