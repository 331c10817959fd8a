"""
Classification Evaluator

Derives per-dimension classification labels from free-text alert content.
"""

import logging
from typing import Dict, List, Optional, Sequence

from classification.analytics import PerformanceTracker
from classification.compiler import PatternCompiler
from classification.hierarchy import RuleHierarchyResolver, RuleSnapshot
from classification.models import ClassificationOutcome, ClassificationResult, ClassificationRule
from metrics import ClassificationMetrics, Timer


logger = logging.getLogger("VigilClassificationEvaluator")


class ClassificationEvaluator:
    """
    Evaluate the active rule hierarchy against input text.

    Within a dimension the first rule (in priority order) that produces at
    least one match wins; lower-priority rules are not visited. Dimensions
    are resolved independently in the configured processing order.
    """

    def __init__(
        self,
        resolver: RuleHierarchyResolver,
        compiler: PatternCompiler,
        tracker: Optional[PerformanceTracker] = None,
        metrics: Optional[ClassificationMetrics] = None
    ):
        self.resolver = resolver
        self.compiler = compiler
        self.tracker = tracker
        self.metrics = metrics or ClassificationMetrics()

    def classify(
        self,
        input_text: str,
        source_type: Optional[str] = None,
        record: bool = True
    ) -> ClassificationResult:
        """
        Classify text along every dimension in the processing order.

        Args:
            input_text: Alert content to classify
            source_type: Optional alert source used to filter applicable rules
            record: Report visited rules to the performance tracker

        Returns:
            ClassificationResult with an outcome (or None) per dimension

        Raises:
            StoreError: If neither the store nor a cached snapshot can supply rules
        """
        return self._classify(input_text, source_type, record, self.resolver.get_processing_order(), None)

    def classify_batch(
        self,
        texts: Sequence[str],
        source_type: Optional[str] = None,
        record: bool = True
    ) -> List[ClassificationResult]:
        """
        Classify several texts against one rule snapshot and processing order.

        Raises:
            StoreError: If neither the store nor a cached snapshot can supply rules
        """
        order = self.resolver.get_processing_order()
        snapshot = self.resolver.snapshot()
        return [self._classify(text, source_type, record, order, snapshot) for text in texts]

    def _classify(
        self,
        input_text: str,
        source_type: Optional[str],
        record: bool,
        order: List[str],
        snapshot: Optional[RuleSnapshot]
    ) -> ClassificationResult:
        outcomes: Dict[str, Optional[ClassificationOutcome]] = {t: None for t in order}

        with Timer("classification_duration_ms", collector=self.metrics.collector):
            if input_text and input_text.strip():
                # Pin one snapshot for the whole call so a concurrent edit cannot mix orders.
                if snapshot is None:
                    snapshot = self.resolver.snapshot()

                for rule_type in order:
                    rules = [r for r in snapshot.get(rule_type, ()) if r.applies_to(source_type)]
                    outcomes[rule_type] = self._resolve_dimension(rule_type, rules, input_text, record)

        self.metrics.record_classification(outcomes)
        return ClassificationResult(outcomes=outcomes, processing_order=order)

    def _resolve_dimension(
        self,
        rule_type: str,
        rules: List[ClassificationRule],
        input_text: str,
        record: bool
    ) -> Optional[ClassificationOutcome]:
        for rule in rules:
            matches = self.compiler.find_all(rule.condition_pattern, input_text)

            if matches is None:
                # Stored pattern no longer compiles; treat as non-matching.
                logger.error(
                    f"Skipping rule {rule.id} ({rule_type}): pattern {rule.condition_pattern!r} failed to compile"
                )
                self.metrics.record_skipped_rule(rule_type)
                self._record(rule, False, record)
                continue

            if not matches:
                self._record(rule, False, record)
                continue

            self._record(rule, True, record)
            return ClassificationOutcome(
                rule_type=rule_type,
                classification_value=rule.classification_value,
                confidence_score=rule.confidence_score,
                rule_id=rule.id,
                matched_substrings=matches
            )

        return None

    def _record(self, rule: ClassificationRule, matched: bool, record: bool) -> None:
        if not record or self.tracker is None:
            return
        self.tracker.record_evaluation(
            rule.id,
            matched,
            confidence=rule.confidence_score if matched else None,
            rule_type=rule.rule_type
        )
