"""
Classification Models Package

Exports all model classes for the classification rule engine.
"""

from .rule import (
    RuleType,
    DEFAULT_PROCESSING_ORDER,
    ClassificationRule,
    RuleDraft,
    RuleUpdate,
    ProcessingOrder,
    ClassificationOutcome,
    ClassificationResult,
    RuleTestResult,
    RuleTestReport,
    SampleTestSummary,
    RulePerformanceRecord,
    PriorityChange,
    ValidationResult,
    sort_rules,
    utcnow
)

__all__ = [
    "RuleType",
    "DEFAULT_PROCESSING_ORDER",
    "ClassificationRule",
    "RuleDraft",
    "RuleUpdate",
    "ProcessingOrder",
    "ClassificationOutcome",
    "ClassificationResult",
    "RuleTestResult",
    "RuleTestReport",
    "SampleTestSummary",
    "RulePerformanceRecord",
    "PriorityChange",
    "ValidationResult",
    "sort_rules",
    "utcnow"
]
