"""
Classification Package

Pattern-based alert classification engine for the Vigil system.
"""

from .classification_engine import ClassificationEngine
from .models import (
    ClassificationRule,
    RuleDraft,
    RuleUpdate,
    RuleType,
    ClassificationResult,
    ClassificationOutcome
)
from .compiler import PatternCompiler
from .store import RuleStore, SQLiteRuleStore
from .hierarchy import RuleHierarchyResolver
from .evaluator import ClassificationEvaluator
from .tester import RuleTester, SAMPLE_ALERTS
from .analytics import PerformanceTracker
from .parser import RuleParser

__all__ = [
    "ClassificationEngine",
    "ClassificationRule",
    "RuleDraft",
    "RuleUpdate",
    "RuleType",
    "ClassificationResult",
    "ClassificationOutcome",
    "PatternCompiler",
    "RuleStore",
    "SQLiteRuleStore",
    "RuleHierarchyResolver",
    "ClassificationEvaluator",
    "RuleTester",
    "SAMPLE_ALERTS",
    "PerformanceTracker",
    "RuleParser"
]
