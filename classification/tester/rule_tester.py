"""
Rule Tester

Authoring and QA tool: runs every active rule against sample text and
reports the full matching surface, ignoring first-match-wins.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from classification.analytics import PerformanceTracker
from classification.compiler import PatternCompiler
from classification.models import (
    ClassificationRule,
    RuleTestReport,
    RuleTestResult,
    SampleTestSummary,
    sort_rules
)
from metrics import ClassificationMetrics


logger = logging.getLogger("VigilRuleTester")


SAMPLE_ALERTS: List[str] = [
    "EXTREME weather warning: Severe thunderstorm approaching with high winds and hail",
    "Minor update: Scheduled maintenance window for immigration services",
    "CRITICAL security alert: Cyber attack detected on government systems",
    "Moderate travel advisory for international destinations due to civil unrest",
    "Severe flooding reported in multiple provinces - immediate action required"
]


class RuleTester:
    """
    Evaluate a rule set against text without dimension resolution.

    Tester runs do not touch performance counters unless recording is
    requested explicitly.
    """

    def __init__(
        self,
        compiler: PatternCompiler,
        tracker: Optional[PerformanceTracker] = None,
        metrics: Optional[ClassificationMetrics] = None,
        record_by_default: bool = False
    ):
        self.compiler = compiler
        self.tracker = tracker
        self.metrics = metrics or ClassificationMetrics()
        self.record_by_default = record_by_default

    def test_all(
        self,
        input_text: str,
        rules: Sequence[ClassificationRule],
        record: Optional[bool] = None
    ) -> RuleTestReport:
        """
        Run every active rule against ``input_text``.

        Args:
            input_text: Sample text
            rules: Candidate rules; inactive ones are ignored
            record: Report results to the performance tracker (audit mode)

        Returns:
            RuleTestReport with one result per active rule, in priority order
        """
        record = self.record_by_default if record is None else record
        input_text = input_text or ""

        results: List[RuleTestResult] = []
        for rule in sort_rules([r for r in rules if r.is_active]):
            results.append(self._test_rule(rule, input_text, record))

        matched = sum(1 for r in results if r.matched)
        self.metrics.record_tester_run(len(results), matched)
        logger.debug(f"Tester run: {matched}/{len(results)} rules matched")
        return RuleTestReport(input_text=input_text, results=results)

    def _test_rule(self, rule: ClassificationRule, input_text: str, record: bool) -> RuleTestResult:
        compiled = self.compiler.compile(rule.condition_pattern)
        if not compiled.ok:
            logger.warning(f"Rule {rule.id} has an invalid pattern: {compiled.error.message}")
            return RuleTestResult(rule=rule, matched=False, error=compiled.error.message)

        matches = compiled.matcher.find_all(input_text)
        matched = bool(matches)
        if record and self.tracker is not None:
            self.tracker.record_evaluation(
                rule.id,
                matched,
                confidence=rule.confidence_score if matched else None,
                rule_type=rule.rule_type
            )
        return RuleTestResult(rule=rule, matched=matched, matched_substrings=matches)

    def test_samples(
        self,
        rules: Sequence[ClassificationRule],
        texts: Optional[Iterable[str]] = None,
        record: Optional[bool] = None
    ) -> SampleTestSummary:
        """
        Run the tester over a sample set and collect per-rule match counts.

        Args:
            rules: Candidate rules
            texts: Sample texts; defaults to SAMPLE_ALERTS
            record: Report results to the performance tracker

        Returns:
            SampleTestSummary; ``never_matched`` lists revision candidates
        """
        samples = list(SAMPLE_ALERTS if texts is None else texts)
        active = sort_rules([r for r in rules if r.is_active])
        counts: Dict[str, int] = {rule.id: 0 for rule in active}

        for text in samples:
            report = self.test_all(text, active, record=record)
            for result in report.matched:
                counts[result.rule.id] += 1

        never_matched = [rule for rule in active if counts[rule.id] == 0]
        if never_matched:
            logger.info(f"{len(never_matched)} rule(s) matched none of {len(samples)} samples")

        return SampleTestSummary(
            sample_count=len(samples),
            match_counts=counts,
            never_matched=never_matched
        )
