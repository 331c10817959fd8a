"""
Rule Store

Persistence boundary for classification rules, the processing order and
per-rule performance counters.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from classification.models import ClassificationRule, RulePerformanceRecord, utcnow
from database import DatabaseManager
from exceptions import RuleNotFoundError


logger = logging.getLogger("VigilRuleStore")

PROCESSING_ORDER_KEY = "processing_order"

_RULE_COLUMNS = (
    "seq, id, rule_type, condition_pattern, classification_value, confidence_score, "
    "priority, is_active, source_types, created_by, created_at, updated_at"
)


class RuleStore(ABC):
    """Record-store interface consumed by the classification engine."""

    @abstractmethod
    def load_active_rules(self, rule_type: Optional[str] = None) -> List[ClassificationRule]:
        """Active rules, optionally restricted to one dimension."""

    @abstractmethod
    def load_rules(self, rule_type: Optional[str] = None, include_inactive: bool = True) -> List[ClassificationRule]:
        """All stored rules, optionally restricted to one dimension."""

    @abstractmethod
    def load_rule(self, rule_id: str) -> Optional[ClassificationRule]:
        """A single rule, or None when unknown."""

    @abstractmethod
    def save_rule(self, rule: ClassificationRule) -> str:
        """Insert or update a rule and return its ID."""

    @abstractmethod
    def update_rule_status(self, rule_id: str, is_active: bool) -> None:
        """Flip a rule's active flag."""

    @abstractmethod
    def update_priority(self, rule_id: str, priority: int) -> None:
        """Persist a new priority for a rule."""

    @abstractmethod
    def load_processing_order(self) -> Optional[List[str]]:
        """Stored processing order, or None if never saved."""

    @abstractmethod
    def save_processing_order(self, rule_types: Sequence[str]) -> None:
        """Persist the processing order."""

    @abstractmethod
    def load_performance(self, rule_id: str) -> Optional[RulePerformanceRecord]:
        """Counters for one rule, or None if it was never evaluated."""

    @abstractmethod
    def load_all_performance(self) -> List[RulePerformanceRecord]:
        """Counters for every evaluated rule."""

    @abstractmethod
    def save_performance(self, record: RulePerformanceRecord) -> None:
        """Insert or replace the counters for one rule."""


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SQLiteRuleStore(RuleStore):
    """
    Rule store backed by the SQLite schema managed by DatabaseManager.

    Every database failure surfaces as a StoreError subclass.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _row_to_rule(self, row: Tuple[Any, ...]) -> ClassificationRule:
        (seq, rule_id, rule_type, pattern, value, confidence,
         priority, is_active, source_types, created_by, created_at, updated_at) = row
        return ClassificationRule(
            id=rule_id,
            rule_type=rule_type,
            condition_pattern=pattern,
            classification_value=value,
            confidence_score=confidence,
            priority=priority,
            is_active=bool(is_active),
            source_types=json.loads(source_types or "[]"),
            created_by=created_by,
            created_at=_parse_timestamp(created_at),
            updated_at=_parse_timestamp(updated_at),
            sequence=seq
        )

    def load_active_rules(self, rule_type: Optional[str] = None) -> List[ClassificationRule]:
        return self.load_rules(rule_type=rule_type, include_inactive=False)

    def load_rules(self, rule_type: Optional[str] = None, include_inactive: bool = True) -> List[ClassificationRule]:
        query = f"SELECT {_RULE_COLUMNS} FROM classification_rules"
        clauses, params = [], []
        if rule_type is not None:
            clauses.append("rule_type = ?")
            params.append(rule_type)
        if not include_inactive:
            clauses.append("is_active = 1")
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY seq ASC"

        with self.db_manager.connection() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_rule(row) for row in rows]

    def load_rule(self, rule_id: str) -> Optional[ClassificationRule]:
        with self.db_manager.connection() as conn:
            row = conn.execute(
                f"SELECT {_RULE_COLUMNS} FROM classification_rules WHERE id = ?",
                (rule_id,)
            ).fetchone()
        return self._row_to_rule(row) if row else None

    def save_rule(self, rule: ClassificationRule) -> str:
        # rule_type, created_at and seq are fixed once the row exists
        with self.db_manager.transaction() as conn:
            conn.execute(
                """
                INSERT INTO classification_rules (
                    id, rule_type, condition_pattern, classification_value, confidence_score,
                    priority, is_active, source_types, created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    condition_pattern = excluded.condition_pattern,
                    classification_value = excluded.classification_value,
                    confidence_score = excluded.confidence_score,
                    priority = excluded.priority,
                    is_active = excluded.is_active,
                    source_types = excluded.source_types,
                    updated_at = excluded.updated_at
                """,
                (
                    rule.id,
                    rule.rule_type,
                    rule.condition_pattern,
                    rule.classification_value,
                    rule.confidence_score,
                    rule.priority,
                    1 if rule.is_active else 0,
                    json.dumps(rule.source_types),
                    rule.created_by,
                    _format_timestamp(rule.created_at),
                    _format_timestamp(rule.updated_at)
                )
            )
        logger.debug(f"Saved rule {rule.id}")
        return rule.id

    def _update_column(self, rule_id: str, column: str, value: Any) -> None:
        with self.db_manager.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE classification_rules SET {column} = ?, updated_at = ? WHERE id = ?",
                (value, utcnow().isoformat(), rule_id)
            )
            if cursor.rowcount == 0:
                raise RuleNotFoundError(rule_id, component="SQLiteRuleStore")

    def update_rule_status(self, rule_id: str, is_active: bool) -> None:
        self._update_column(rule_id, "is_active", 1 if is_active else 0)

    def update_priority(self, rule_id: str, priority: int) -> None:
        self._update_column(rule_id, "priority", int(priority))

    # ------------------------------------------------------------------
    # Processing order
    # ------------------------------------------------------------------

    def load_processing_order(self) -> Optional[List[str]]:
        with self.db_manager.connection() as conn:
            row = conn.execute(
                "SELECT value FROM hierarchy_config WHERE key = ?",
                (PROCESSING_ORDER_KEY,)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def save_processing_order(self, rule_types: Sequence[str]) -> None:
        with self.db_manager.transaction() as conn:
            conn.execute(
                "INSERT INTO hierarchy_config (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                (PROCESSING_ORDER_KEY, json.dumps(list(rule_types)))
            )

    # ------------------------------------------------------------------
    # Performance counters
    # ------------------------------------------------------------------

    def _row_to_performance(self, row: Tuple[Any, ...]) -> RulePerformanceRecord:
        rule_id, rule_type, total, matches, avg, last_used = row
        return RulePerformanceRecord(
            rule_id=rule_id,
            rule_type=rule_type,
            total_processed=total,
            successful_matches=matches,
            confidence_average=avg,
            last_used_at=_parse_timestamp(last_used)
        )

    def load_performance(self, rule_id: str) -> Optional[RulePerformanceRecord]:
        with self.db_manager.connection() as conn:
            row = conn.execute(
                "SELECT rule_id, rule_type, total_processed, successful_matches, confidence_average, last_used_at "
                "FROM rule_performance WHERE rule_id = ?",
                (rule_id,)
            ).fetchone()
        return self._row_to_performance(row) if row else None

    def load_all_performance(self) -> List[RulePerformanceRecord]:
        with self.db_manager.connection() as conn:
            rows = conn.execute(
                "SELECT rule_id, rule_type, total_processed, successful_matches, confidence_average, last_used_at "
                "FROM rule_performance ORDER BY rule_id"
            ).fetchall()
        return [self._row_to_performance(row) for row in rows]

    def save_performance(self, record: RulePerformanceRecord) -> None:
        with self.db_manager.transaction() as conn:
            conn.execute(
                """
                INSERT INTO rule_performance (
                    rule_id, rule_type, total_processed, successful_matches,
                    confidence_average, last_used_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(rule_id) DO UPDATE SET
                    rule_type = excluded.rule_type,
                    total_processed = excluded.total_processed,
                    successful_matches = excluded.successful_matches,
                    confidence_average = excluded.confidence_average,
                    last_used_at = excluded.last_used_at,
                    updated_at = excluded.updated_at
                """,
                (
                    record.rule_id,
                    record.rule_type,
                    record.total_processed,
                    record.successful_matches,
                    record.confidence_average,
                    _format_timestamp(record.last_used_at)
                )
            )
