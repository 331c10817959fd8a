import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from classification.analytics import PerformanceTracker
from classification.models import ClassificationRule
from exceptions import DatabaseError

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(store, clock):
    return PerformanceTracker(store, clock=clock)


def _evaluate(tracker, rule_id, total, matches, confidence=0.8):
    for i in range(total):
        matched = i < matches
        tracker.record_evaluation(rule_id, matched, confidence=confidence if matched else None)


def test_underperformer_threshold_is_strict(tracker):
    _evaluate(tracker, "r1", total=10, matches=3)
    assert [r.rule_id for r in tracker.underperformers(0.5)] == ["r1"]

    _evaluate(tracker, "r1", total=10, matches=7)
    record = tracker.get_record("r1")
    assert record.total_processed == 20
    assert record.successful_matches == 10
    assert record.accuracy_rate == 0.5
    assert tracker.underperformers(0.5) == []


def test_unevaluated_rules_are_not_underperformers(tracker, store):
    tracker.reset("fresh")
    assert tracker.underperformers(0.7) == []
    assert tracker.top_performers() == []


def test_running_confidence_average(tracker):
    tracker.record_evaluation("r1", True, confidence=0.9)
    tracker.record_evaluation("r1", False)
    tracker.record_evaluation("r1", True, confidence=0.6)

    record = tracker.get_record("r1")
    assert record.confidence_average == pytest.approx(0.75)
    assert record.successful_matches == 2
    assert record.total_processed == 3


def test_match_requires_confidence(tracker):
    with pytest.raises(ValueError):
        tracker.record_evaluation("r1", True)


def test_last_used_only_moves_on_match(tracker, clock):
    tracker.record_evaluation("r1", False)
    assert tracker.get_record("r1").last_used_at is None

    tracker.record_evaluation("r1", True, confidence=1.0)
    assert tracker.get_record("r1").last_used_at == NOW

    clock.now = NOW + timedelta(hours=1)
    tracker.record_evaluation("r1", False)
    assert tracker.get_record("r1").last_used_at == NOW


def test_top_performers_ordering(tracker):
    _evaluate(tracker, "perfect-small", total=2, matches=2)
    _evaluate(tracker, "perfect-large", total=5, matches=5)
    _evaluate(tracker, "half", total=4, matches=2)
    _evaluate(tracker, "never", total=3, matches=0)

    assert [r.rule_id for r in tracker.top_performers(3)] == ["perfect-large", "perfect-small", "half"]
    assert [r.rule_id for r in tracker.underperformers()] == ["never", "half"]


def test_stale_rules(tracker, clock):
    rules = [
        ClassificationRule(id=rule_id, rule_type="severity", condition_pattern="x", classification_value="X")
        for rule_id in ("recent", "old", "never")
    ]
    clock.now = NOW - timedelta(days=31)
    tracker.record_evaluation("old", True, confidence=1.0)
    clock.now = NOW - timedelta(days=1)
    tracker.record_evaluation("recent", True, confidence=1.0)
    clock.now = NOW

    stale = tracker.stale_rules(rules, window_days=30)

    assert [r.rule_id for r in stale] == ["never", "old"]
    assert [r.rule_id for r in tracker.stale_rules(rules, window_days=60)] == ["never"]


def test_summary_rounds_aggregates(tracker):
    _evaluate(tracker, "a", total=3, matches=1, confidence=0.9)
    _evaluate(tracker, "b", total=3, matches=3, confidence=0.5)

    summary = tracker.summary()

    assert summary["rules_tracked"] == 2
    assert summary["total_processed"] == 6
    assert summary["total_matches"] == 4
    assert summary["avg_confidence"] == 0.7
    assert summary["avg_accuracy"] == 0.67
    assert summary["match_rate"] == 0.67


def test_empty_summary(tracker):
    assert tracker.summary() == {
        "rules_tracked": 0,
        "total_processed": 0,
        "total_matches": 0,
        "avg_confidence": 0.0,
        "avg_accuracy": 0.0,
        "match_rate": 0.0
    }


def test_counters_persist_across_trackers(tracker, store):
    _evaluate(tracker, "r1", total=4, matches=1)

    reloaded = PerformanceTracker(store)
    record = reloaded.get_record("r1")
    assert record.total_processed == 4
    assert record.successful_matches == 1

    reloaded.record_evaluation("r1", False)
    assert reloaded.get_record("r1").total_processed == 5


def test_buffered_writes_flush(store):
    tracker = PerformanceTracker(store, write_through=False)
    _evaluate(tracker, "r1", total=3, matches=1)

    assert tracker.pending_writes == 1
    assert store.load_performance("r1") is None

    assert tracker.flush() == 1
    assert tracker.pending_writes == 0
    assert store.load_performance("r1").total_processed == 3


def test_failed_write_is_retried_on_flush(tracker, store, monkeypatch):
    with monkeypatch.context() as m:
        m.setattr(store, "save_performance", MagicMock(side_effect=DatabaseError("store down")))
        tracker.record_evaluation("r1", True, confidence=0.5)
        assert tracker.pending_writes == 1

    assert tracker.flush() == 1
    assert store.load_performance("r1").successful_matches == 1


def test_reset_zeroes_counters(tracker, store):
    _evaluate(tracker, "r1", total=5, matches=5)

    record = tracker.reset("r1")

    assert record.total_processed == 0
    assert record.last_used_at is None
    assert store.load_performance("r1").total_processed == 0


def test_concurrent_updates_do_not_lose_increments(store):
    tracker = PerformanceTracker(store, write_through=False)
    threads_count, per_thread = 8, 250
    barrier = threading.Barrier(threads_count)

    def worker(index):
        barrier.wait()
        for i in range(per_thread):
            matched = i % 2 == 0
            tracker.record_evaluation("shared", matched, confidence=0.8 if matched else None)
            tracker.record_evaluation(f"own-{index}", True, confidence=0.4)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    shared = tracker.get_record("shared")
    assert shared.total_processed == threads_count * per_thread
    assert shared.successful_matches == threads_count * per_thread // 2
    assert shared.confidence_average == pytest.approx(0.8)
    for i in range(threads_count):
        assert tracker.get_record(f"own-{i}").total_processed == per_thread


def test_unloadable_counters_are_replayed_onto_stored_history(tracker, store, monkeypatch):
    _evaluate(tracker, "r1", total=4, matches=2)
    fresh = PerformanceTracker(store, clock=FakeClock())

    with monkeypatch.context() as m:
        m.setattr(store, "load_performance", MagicMock(side_effect=DatabaseError("store down")))
        pending = fresh.record_evaluation("r1", True, confidence=0.8)
        assert pending.total_processed == 1
        assert fresh.pending_writes == 1

    assert fresh.flush() == 1
    record = store.load_performance("r1")
    assert record.total_processed == 5
    assert record.successful_matches == 3
    assert record.last_used_at == NOW
