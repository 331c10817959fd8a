"""
Rule Performance Tracker

Accumulates per-rule evaluation counters and derives accuracy and staleness.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from classification.models import ClassificationRule, RulePerformanceRecord, utcnow
from classification.store import RuleStore
from exceptions import StoreError


logger = logging.getLogger("VigilPerformanceTracker")

# (did_match, confidence, evaluated_at)
Evaluation = Tuple[bool, Optional[float], datetime]


class PerformanceTracker:
    """
    Per-rule counters with per-rule update locks.

    Updates for different rules never contend; concurrent updates for the
    same rule are serialized by that rule's lock so no increment is lost.
    """

    def __init__(
        self,
        store: RuleStore,
        write_through: bool = True,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize the tracker.

        Args:
            store: Rule store used to load and persist counters
            write_through: Persist every update immediately; otherwise on flush()
            clock: Source of "now" for last_used_at and staleness checks
        """
        self.store = store
        self.write_through = write_through
        self.clock = clock

        self._records: Dict[str, RulePerformanceRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._dirty: Set[str] = set()
        # Evaluations of rules whose stored counters could not be loaded yet.
        self._deferred: Dict[str, List[Evaluation]] = {}

    def _lock_for(self, rule_id: str) -> threading.Lock:
        lock = self._locks.get(rule_id)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(rule_id, threading.Lock())
        return lock

    def _load(self, rule_id: str, rule_type: Optional[str]) -> RulePerformanceRecord:
        # Caller holds the rule lock.
        record = self._records.get(rule_id)
        if record is None:
            record = self.store.load_performance(rule_id) or RulePerformanceRecord(
                rule_id=rule_id, rule_type=rule_type
            )
            self._records[rule_id] = record
            deferred = self._deferred.pop(rule_id, [])
            for did_match, confidence, evaluated_at in deferred:
                self._apply(record, did_match, confidence, evaluated_at)
            if deferred:
                self._dirty.add(rule_id)
        if record.rule_type is None and rule_type is not None:
            record.rule_type = rule_type
        return record

    def _persist(self, record: RulePerformanceRecord) -> None:
        # Caller holds the rule lock.
        if not self.write_through:
            self._dirty.add(record.rule_id)
            return
        try:
            self.store.save_performance(record)
            self._dirty.discard(record.rule_id)
        except StoreError as e:
            # Counters stay in memory and are retried on the next flush.
            self._dirty.add(record.rule_id)
            logger.warning(f"Failed to persist performance for rule {record.rule_id}: {e.message}")

    def record_evaluation(
        self,
        rule_id: str,
        did_match: bool,
        confidence: Optional[float] = None,
        rule_type: Optional[str] = None
    ) -> RulePerformanceRecord:
        """
        Record one evaluation of a rule.

        Args:
            rule_id: Evaluated rule
            did_match: Whether the rule's pattern matched
            confidence: Confidence of the match; required when did_match is True
            rule_type: Dimension of the rule, stored alongside the counters

        Returns:
            Snapshot of the updated record
        """
        if did_match and confidence is None:
            raise ValueError("A confidence value is required for a successful match")

        with self._lock_for(rule_id):
            try:
                record = self._load(rule_id, rule_type)
            except StoreError as e:
                # Replayed onto the stored counters once the store answers again.
                self._deferred.setdefault(rule_id, []).append((did_match, confidence, self.clock()))
                logger.warning(f"Deferring performance update for rule {rule_id}: {e.message}")
                pending = RulePerformanceRecord(rule_id=rule_id, rule_type=rule_type)
                for evaluation in self._deferred[rule_id]:
                    self._apply(pending, *evaluation)
                return pending

            self._apply(record, did_match, confidence, self.clock())
            self._persist(record)
            return record.model_copy()

    @staticmethod
    def _apply(
        record: RulePerformanceRecord,
        did_match: bool,
        confidence: Optional[float],
        evaluated_at: datetime
    ) -> None:
        record.total_processed += 1
        if did_match:
            record.successful_matches += 1
            record.confidence_average += (confidence - record.confidence_average) / record.successful_matches
            record.last_used_at = evaluated_at

    def get_record(self, rule_id: str) -> RulePerformanceRecord:
        """Current counters for a rule; a zeroed record if it was never evaluated."""
        with self._lock_for(rule_id):
            record = self._records.get(rule_id)
            if record is not None:
                return record.model_copy()
        stored = self.store.load_performance(rule_id)
        return stored or RulePerformanceRecord(rule_id=rule_id)

    def all_records(self) -> List[RulePerformanceRecord]:
        """Every known record, in-memory state taking precedence over the store."""
        merged: Dict[str, RulePerformanceRecord] = {
            record.rule_id: record for record in self.store.load_all_performance()
        }
        for rule_id in list(self._records):
            with self._lock_for(rule_id):
                merged[rule_id] = self._records[rule_id].model_copy()
        return [merged[rule_id] for rule_id in sorted(merged)]

    def top_performers(self, n: int = 5) -> List[RulePerformanceRecord]:
        """Highest accuracy first; ties broken by total_processed descending."""
        records = [r for r in self.all_records() if r.total_processed > 0]
        records.sort(key=lambda r: (-r.accuracy_rate, -r.total_processed, r.rule_id))
        return records[:max(n, 0)]

    def underperformers(self, threshold: float = 0.70) -> List[RulePerformanceRecord]:
        """Rules with accuracy strictly below ``threshold``; unevaluated rules are excluded."""
        records = [
            r for r in self.all_records()
            if r.total_processed > 0 and r.accuracy_rate < threshold
        ]
        records.sort(key=lambda r: (r.accuracy_rate, r.rule_id))
        return records

    def stale_rules(
        self,
        rules: Iterable[ClassificationRule],
        window_days: int = 30,
        now: Optional[datetime] = None
    ) -> List[RulePerformanceRecord]:
        """
        Rules with no match inside the trailing window.

        Args:
            rules: Rules to inspect (rules never evaluated count as stale)
            window_days: Trailing window in days
            now: Reference time; defaults to the tracker clock

        Returns:
            Records of stale rules, never-used rules first
        """
        window = timedelta(days=window_days)
        reference = now or self.clock()
        records = {r.rule_id: r for r in self.all_records()}

        stale = []
        for rule in rules:
            record = records.get(rule.id) or RulePerformanceRecord(rule_id=rule.id, rule_type=rule.rule_type)
            if record.is_stale(window, reference):
                stale.append(record)

        stale.sort(key=lambda r: (r.last_used_at is not None, r.last_used_at or reference, r.rule_id))
        return stale

    def summary(self) -> Dict[str, float]:
        """Aggregate counters across all evaluated rules."""
        records = self.all_records()
        total_processed = sum(r.total_processed for r in records)
        total_matches = sum(r.successful_matches for r in records)
        count = len(records)

        return {
            "rules_tracked": count,
            "total_processed": total_processed,
            "total_matches": total_matches,
            "avg_confidence": round(sum(r.confidence_average for r in records) / count, 2) if count else 0.0,
            "avg_accuracy": round(sum(r.accuracy_rate for r in records) / count, 2) if count else 0.0,
            "match_rate": round(total_matches / total_processed, 2) if total_processed else 0.0
        }

    def reset(self, rule_id: str) -> RulePerformanceRecord:
        """Zero a rule's counters, e.g. after its pattern was rewritten."""
        with self._lock_for(rule_id):
            self._deferred.pop(rule_id, None)
            previous = self._records.get(rule_id) or self.store.load_performance(rule_id)
            record = RulePerformanceRecord(
                rule_id=rule_id,
                rule_type=previous.rule_type if previous else None
            )
            self._records[rule_id] = record
            self._persist(record)
            return record.model_copy()

    def flush(self) -> int:
        """
        Persist every record with unsaved changes.

        Returns:
            Number of records written

        Raises:
            StoreError: If the store rejects a write
        """
        for rule_id in list(self._deferred):
            with self._lock_for(rule_id):
                if rule_id in self._deferred:
                    self._load(rule_id, None)

        written = 0
        for rule_id in list(self._dirty):
            with self._lock_for(rule_id):
                record = self._records.get(rule_id)
                if record is None:
                    self._dirty.discard(rule_id)
                    continue
                self.store.save_performance(record)
                self._dirty.discard(rule_id)
                written += 1
        if written:
            logger.info(f"Flushed performance counters for {written} rule(s)")
        return written

    @property
    def pending_writes(self) -> int:
        return len(self._dirty | set(self._deferred))
