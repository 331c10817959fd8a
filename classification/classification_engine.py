"""
Classification Engine Main Class

Central orchestrator for the alert classification rule engine.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from classification.analytics import PerformanceTracker
from classification.compiler import PatternCompiler, get_pattern_compiler
from classification.evaluator import ClassificationEvaluator
from classification.hierarchy import RuleHierarchyResolver
from classification.models import (
    ClassificationResult,
    ClassificationRule,
    PriorityChange,
    RuleDraft,
    RulePerformanceRecord,
    RuleTestReport,
    RuleUpdate,
    SampleTestSummary,
    sort_rules,
    utcnow
)
from classification.parser import RuleParser, field_errors
from classification.store import RuleStore
from classification.tester import RuleTester
from config import ClassificationConfig
from exceptions import ImmutableFieldError, RuleNotFoundError, ValidationError
from metrics import ClassificationMetrics


class ClassificationEngine:
    """
    Main classification engine orchestrator.

    Validates and persists rules, resolves the hierarchy, classifies text and
    exposes rule analytics. Every mutation commits to the store immediately.
    """

    def __init__(
        self,
        store: RuleStore,
        config: Optional[ClassificationConfig] = None,
        compiler: Optional[PatternCompiler] = None,
        tracker: Optional[PerformanceTracker] = None,
        metrics: Optional[ClassificationMetrics] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize classification engine.

        Args:
            store: Rule store adapter
            config: Classification settings (defaults when omitted)
            compiler: Pattern compiler; the process-wide one by default
            tracker: Performance tracker; created over ``store`` by default
            metrics: Metrics recorder
            logger: Optional logger instance
        """
        self.config = config or ClassificationConfig()
        self.store = store
        self.logger = logger or logging.getLogger("VigilEngine")

        # Initialize components
        self.compiler = compiler or get_pattern_compiler()
        self.metrics = metrics or ClassificationMetrics()
        self.tracker = tracker or PerformanceTracker(
            store, write_through=self.config.performance_write_through
        )
        self.resolver = RuleHierarchyResolver(
            store,
            self.config.rule_types,
            default_order=self.config.processing_order
        )
        self.evaluator = ClassificationEvaluator(self.resolver, self.compiler, self.tracker, self.metrics)
        self.tester = RuleTester(
            self.compiler,
            tracker=self.tracker,
            metrics=self.metrics,
            record_by_default=self.config.record_tester_runs
        )
        self.parser = RuleParser(self.config.rule_types)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, text: str, source_type: Optional[str] = None) -> ClassificationResult:
        """
        Classify text along every configured dimension.

        Args:
            text: Alert content
            source_type: Optional alert source used to filter rules

        Returns:
            ClassificationResult; unclassified dimensions map to None
        """
        return self.evaluator.classify(text, source_type=source_type)

    def classify_batch(
        self,
        texts: Sequence[str],
        source_type: Optional[str] = None
    ) -> List[ClassificationResult]:
        """Classify several texts with rules loaded once for the batch."""
        return self.evaluator.classify_batch(texts, source_type=source_type)

    def test_rules(
        self,
        text: str,
        rules: Optional[Sequence[Union[ClassificationRule, str]]] = None,
        record: Optional[bool] = None
    ) -> RuleTestReport:
        """
        Run every given rule (all active rules by default) against text.

        Args:
            text: Sample text
            rules: Rules or rule IDs to test
            record: Opt in to performance recording for this run

        Returns:
            RuleTestReport with full match detail
        """
        return self.tester.test_all(text, self._resolve_rules(rules), record=record)

    def test_samples(
        self,
        texts: Optional[Iterable[str]] = None,
        rules: Optional[Sequence[Union[ClassificationRule, str]]] = None,
        record: Optional[bool] = None
    ) -> SampleTestSummary:
        """
        Run the tester over sample texts (the built-in alert samples by default).

        Returns:
            SampleTestSummary listing rules that never matched
        """
        return self.tester.test_samples(self._resolve_rules(rules), texts=texts, record=record)

    def _resolve_rules(
        self,
        rules: Optional[Sequence[Union[ClassificationRule, str]]]
    ) -> List[ClassificationRule]:
        if rules is None:
            return self.resolver.active_rules()
        return [self.get_rule(r) if isinstance(r, str) else r for r in rules]

    # ------------------------------------------------------------------
    # Rule CRUD
    # ------------------------------------------------------------------

    def _validation_failed(self, message: str, errors: List[Dict[str, str]]) -> ValidationError:
        for error in errors:
            self.metrics.record_validation_failure(error.get("field", "unknown"))
        return ValidationError(message, component="ClassificationEngine", context={"errors": errors})

    def _build_rule(self, data: Dict[str, Any]) -> ClassificationRule:
        try:
            return ClassificationRule(**data)
        except PydanticValidationError as e:
            raise self._validation_failed("Invalid rule", field_errors(e))

    def _check_pattern(self, pattern: str) -> None:
        try:
            self.compiler.validate(pattern)
        except ValidationError:
            self.metrics.record_validation_failure("condition_pattern")
            raise

    def create_rule(
        self,
        draft: Union[RuleDraft, Dict[str, Any]],
        created_by: Optional[str] = None
    ) -> ClassificationRule:
        """
        Validate and persist a new rule.

        Args:
            draft: Rule fields; priority and confidence fall back to configured defaults
            created_by: Author recorded on the rule

        Returns:
            The stored rule

        Raises:
            ValidationError: On an invalid pattern, confidence, type or value
            StoreError: If the rule cannot be persisted
        """
        if not isinstance(draft, RuleDraft):
            try:
                draft = RuleDraft(**draft)
            except PydanticValidationError as e:
                raise self._validation_failed("Invalid rule", field_errors(e))

        rule_type = self.resolver.validate_rule_type(draft.rule_type)
        self._check_pattern(draft.condition_pattern)

        rule = self._build_rule({
            "id": uuid.uuid4().hex,
            "rule_type": rule_type,
            "condition_pattern": draft.condition_pattern,
            "classification_value": draft.classification_value,
            "confidence_score": (
                self.config.default_confidence if draft.confidence_score is None else draft.confidence_score
            ),
            "priority": self.config.default_priority if draft.priority is None else draft.priority,
            "is_active": draft.is_active,
            "source_types": draft.source_types,
            "created_by": created_by or draft.created_by,
            "created_at": utcnow()
        })

        with self.resolver.write_lock:
            rule_id = self.store.save_rule(rule)
            self.resolver.invalidate()

        self.metrics.record_rule_mutation("create")
        self.logger.info(f"Created {rule.rule_type} rule {rule_id}: {rule.condition_pattern!r} -> {rule.classification_value}")
        return self.get_rule(rule_id)

    def update_rule(
        self,
        rule_id: str,
        update: Union[RuleUpdate, Dict[str, Any]]
    ) -> ClassificationRule:
        """
        Apply a partial update to a rule.

        Args:
            rule_id: Rule to update
            update: Fields to change; ``rule_type`` may not change

        Returns:
            The stored rule

        Raises:
            RuleNotFoundError: If the rule does not exist
            ImmutableFieldError: If the update changes ``rule_type``
            ValidationError: If the updated rule is invalid
            StoreError: If the update cannot be persisted
        """
        if not isinstance(update, RuleUpdate):
            try:
                update = RuleUpdate(**update)
            except PydanticValidationError as e:
                raise self._validation_failed("Invalid rule update", field_errors(e))

        changes = {k: v for k, v in update.changes().items() if v is not None}

        with self.resolver.write_lock:
            existing = self.get_rule(rule_id)

            new_type = changes.pop("rule_type", existing.rule_type)
            if new_type != existing.rule_type:
                self.metrics.record_validation_failure("rule_type")
                raise ImmutableFieldError(
                    f"rule_type of rule {rule_id} cannot change from {existing.rule_type!r} to {new_type!r}",
                    component="ClassificationEngine",
                    context={
                        "rule_id": rule_id,
                        "errors": [{"field": "rule_type", "message": "is immutable after creation"}]
                    }
                )

            if not changes:
                return existing

            if "condition_pattern" in changes:
                self._check_pattern(changes["condition_pattern"])

            data = existing.model_dump()
            data.update(changes)
            data["updated_at"] = utcnow()
            rule = self._build_rule(data)

            self.store.save_rule(rule)
            self.resolver.invalidate()

        self.metrics.record_rule_mutation("update")
        self.logger.info(f"Updated rule {rule_id}: {sorted(changes)}")
        return self.get_rule(rule_id)

    def _set_status(self, rule_id: str, is_active: bool) -> ClassificationRule:
        with self.resolver.write_lock:
            self.store.update_rule_status(rule_id, is_active)
            self.resolver.invalidate()
        self.metrics.record_rule_mutation("activate" if is_active else "deactivate")
        self.logger.info(f"Rule {rule_id} {'activated' if is_active else 'deactivated'}")
        return self.get_rule(rule_id)

    def deactivate_rule(self, rule_id: str) -> ClassificationRule:
        """
        Exclude a rule from evaluation while keeping it in the store.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        return self._set_status(rule_id, False)

    def activate_rule(self, rule_id: str) -> ClassificationRule:
        """
        Re-enable a deactivated rule.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        return self._set_status(rule_id, True)

    def get_rule(self, rule_id: str) -> ClassificationRule:
        """
        Get a rule by ID.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = self.store.load_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id, component="ClassificationEngine")
        return rule

    def list_rules(
        self,
        rule_type: Optional[str] = None,
        active_only: bool = False
    ) -> List[ClassificationRule]:
        """
        List stored rules in evaluation order.

        Args:
            rule_type: Restrict to one dimension
            active_only: Only return active rules

        Returns:
            Rules grouped by processing order, then priority within a dimension
        """
        if rule_type is not None:
            rule_type = self.resolver.validate_rule_type(rule_type)

        rules = self.store.load_rules(rule_type=rule_type, include_inactive=not active_only)
        order = {t: i for i, t in enumerate(self.get_processing_order())}
        return sorted(
            sort_rules(rules),
            key=lambda r: order.get(r.rule_type, len(order))
        )

    def reload_rules(self) -> int:
        """Reload active rules from the store; returns the number loaded."""
        self.logger.info("Reloading rules...")
        snapshot = self.resolver.refresh()
        return sum(len(group) for group in snapshot.values())

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def get_processing_order(self) -> List[str]:
        return self.resolver.get_processing_order()

    def set_processing_order(self, rule_types: Sequence[str]) -> List[str]:
        """
        Replace the dimension processing order.

        Raises:
            InvalidProcessingOrderError: On duplicate, unknown or missing entries
        """
        order = self.resolver.set_processing_order(rule_types)
        self.metrics.record_rule_mutation("processing_order")
        return order

    def promote(self, rule_id: str) -> PriorityChange:
        change = self.resolver.promote(rule_id)
        if change.changed:
            self.metrics.record_rule_mutation("promote")
        return change

    def demote(self, rule_id: str) -> PriorityChange:
        change = self.resolver.demote(rule_id)
        if change.changed:
            self.metrics.record_rule_mutation("demote")
        return change

    def set_priority(self, rule_id: str, value: int) -> PriorityChange:
        change = self.resolver.set_priority(rule_id, value)
        if change.changed:
            self.metrics.record_rule_mutation("set_priority")
        return change

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_top_performers(self, n: Optional[int] = None) -> List[RulePerformanceRecord]:
        return self.tracker.top_performers(self.config.top_performers_limit if n is None else n)

    def get_underperformers(self, threshold: Optional[float] = None) -> List[RulePerformanceRecord]:
        return self.tracker.underperformers(
            self.config.underperformer_threshold if threshold is None else threshold
        )

    def get_stale_rules(self, window_days: Optional[int] = None) -> List[RulePerformanceRecord]:
        """Active rules without a match inside the trailing window."""
        return self.tracker.stale_rules(
            self.store.load_active_rules(),
            window_days=self.config.stale_window_days if window_days is None else window_days
        )

    def get_rule_performance(self, rule_id: str) -> RulePerformanceRecord:
        """
        Counters for one rule.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = self.get_rule(rule_id)
        record = self.tracker.get_record(rule_id)
        if record.rule_type is None:
            record.rule_type = rule.rule_type
        return record

    def get_performance_summary(self) -> Dict[str, Any]:
        """Aggregate performance counters plus the underperformer count."""
        summary = self.tracker.summary()
        summary["underperformers"] = len(self.get_underperformers())
        return summary

    def reset_performance(self, rule_id: str) -> RulePerformanceRecord:
        """
        Zero a rule's counters.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        self.get_rule(rule_id)
        record = self.tracker.reset(rule_id)
        self.metrics.record_rule_mutation("reset_performance")
        self.logger.info(f"Reset performance counters for rule {rule_id}")
        return record

    def get_summary(self) -> Dict[str, Any]:
        """
        Get summary of classification engine status.

        Returns:
            Summary dictionary
        """
        rules = self.store.load_rules()
        type_counts = {
            rule_type: {
                "total": sum(1 for r in rules if r.rule_type == rule_type),
                "active": sum(1 for r in rules if r.rule_type == rule_type and r.is_active)
            }
            for rule_type in self.resolver.rule_types
        }
        active_count = sum(1 for r in rules if r.is_active)

        return {
            "total_rules": len(rules),
            "active_rules": active_count,
            "inactive_rules": len(rules) - active_count,
            "type_counts": type_counts,
            "processing_order": self.get_processing_order(),
            "cached_patterns": len(self.compiler),
            "pending_performance_writes": self.tracker.pending_writes
        }

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def import_rules(self, path: str, created_by: Optional[str] = None) -> List[ClassificationRule]:
        """
        Import rules from a YAML file or a directory of YAML files.

        Every draft is validated before any rule is written, so an invalid
        file imports nothing. A file's ``processing_order`` is applied too.

        Raises:
            ValidationError: If any rule or the processing order is invalid
        """
        processing_order = None
        if Path(path).is_dir():
            drafts = self.parser.parse_multiple_files(path)
        else:
            document = self.parser.load_document(path)
            drafts = self.parser.parse_yaml_document(document)
            processing_order = self.parser.parse_processing_order(document)

        errors: List[Dict[str, str]] = []
        for index, draft in enumerate(drafts):
            result = self.parser.validate_rule(draft, self.compiler)
            for error in result.errors:
                errors.append({"field": f"rules.{index}.{error['field']}", "message": error["message"]})
            for warning in result.warnings:
                self.logger.warning(f"{path} rule {index}: {warning}")
        if errors:
            raise self._validation_failed(f"Invalid rules in {path}", errors)

        if processing_order:
            self.set_processing_order(processing_order)

        imported = [self.create_rule(draft, created_by=created_by) for draft in drafts]
        self.logger.info(f"Imported {len(imported)} rules from {path}")
        return imported

    def export_rules(
        self,
        file_path: Optional[str] = None,
        rule_type: Optional[str] = None,
        active_only: bool = False
    ) -> str:
        """
        Export rules (and the processing order) as YAML.

        Args:
            file_path: Also write the document to this file
            rule_type: Restrict to one dimension
            active_only: Only export active rules

        Returns:
            YAML string
        """
        rules = self.list_rules(rule_type=rule_type, active_only=active_only)
        order = self.get_processing_order()
        if file_path is not None:
            self.parser.save_rules_to_file(rules, file_path, processing_order=order)
            self.logger.info(f"Exported {len(rules)} rules to {file_path}")
        return self.parser.rules_to_yaml(rules, processing_order=order)

    def flush(self) -> int:
        """Persist buffered performance counters."""
        return self.tracker.flush()
