"""
Rule Models

Defines data models for pattern-based classification rules.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time used for all rule timestamps."""
    return datetime.now(timezone.utc)


class RuleType(str, Enum):
    """Default classification dimensions."""
    SEVERITY = "severity"
    CATEGORY = "category"
    IMPACT = "impact"
    SOURCE = "source"


DEFAULT_PROCESSING_ORDER: Tuple[str, ...] = tuple(t.value for t in RuleType)


def _normalize_rule_type(value: Any) -> str:
    if isinstance(value, RuleType):
        return value.value
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Rule type must be a non-empty string")
    return value.strip().lower()


def _normalize_source_types(value: Optional[Sequence[str]]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    seen: List[str] = []
    for item in value:
        tag = str(item).strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class ClassificationRule(BaseModel):
    """
    Administrator-defined pattern-to-label mapping.

    ``sequence`` is the store-assigned creation order; together with
    ``priority`` it defines the evaluation order inside a dimension.
    """
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(..., description="Unique rule identifier")
    rule_type: str = Field(..., description="Dimension this rule classifies")
    condition_pattern: str = Field(..., description="Case-insensitive regular expression")
    classification_value: str = Field(..., description="Label produced on match")
    confidence_score: float = Field(default=1.0, ge=0.0, le=1.0)
    priority: int = Field(default=100, description="Higher values evaluate first")
    is_active: bool = Field(default=True)
    source_types: List[str] = Field(default_factory=list, description="Applicable alert sources; empty = all")
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    sequence: int = Field(default=0, description="Creation order assigned by the store")

    @field_validator('rule_type', mode='before')
    @classmethod
    def validate_rule_type(cls, v: Any) -> str:
        return _normalize_rule_type(v)

    @field_validator('condition_pattern')
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        if not v:
            raise ValueError("Condition pattern must not be empty")
        return v

    @field_validator('classification_value')
    @classmethod
    def validate_value(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Classification value must not be empty")
        return v.strip()

    @field_validator('source_types', mode='before')
    @classmethod
    def validate_source_types(cls, v: Any) -> List[str]:
        return _normalize_source_types(v)

    def applies_to(self, source_type: Optional[str]) -> bool:
        """Check whether the rule applies to alerts from ``source_type``."""
        if source_type is None or not self.source_types:
            return True
        return source_type.strip().lower() in self.source_types

    def sort_key(self) -> Tuple[int, int]:
        """Priority descending, then creation order ascending."""
        return (-self.priority, self.sequence)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "rule_type": self.rule_type,
            "condition_pattern": self.condition_pattern,
            "classification_value": self.classification_value,
            "confidence_score": self.confidence_score,
            "priority": self.priority,
            "is_active": self.is_active,
            "source_types": list(self.source_types),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


def sort_rules(rules: Sequence[ClassificationRule]) -> List[ClassificationRule]:
    """Deterministic evaluation order for a set of rules."""
    return sorted(rules, key=lambda r: r.sort_key())


class RuleDraft(BaseModel):
    """
    Input for creating a rule. Priority and confidence fall back to the
    engine's configured defaults when omitted.
    """
    rule_type: str
    condition_pattern: str
    classification_value: str
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    priority: Optional[int] = None
    is_active: bool = True
    source_types: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None

    @field_validator('rule_type', mode='before')
    @classmethod
    def validate_rule_type(cls, v: Any) -> str:
        return _normalize_rule_type(v)

    @field_validator('source_types', mode='before')
    @classmethod
    def validate_source_types(cls, v: Any) -> List[str]:
        return _normalize_source_types(v)


class RuleUpdate(BaseModel):
    """
    Partial update of a rule. ``rule_type`` is accepted only so that an
    attempt to change it can be rejected explicitly.
    """
    rule_type: Optional[str] = None
    condition_pattern: Optional[str] = None
    classification_value: Optional[str] = None
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    source_types: Optional[List[str]] = None

    @field_validator('rule_type', mode='before')
    @classmethod
    def validate_rule_type(cls, v: Any) -> Optional[str]:
        return None if v is None else _normalize_rule_type(v)

    @field_validator('source_types', mode='before')
    @classmethod
    def validate_source_types(cls, v: Any) -> Optional[List[str]]:
        return None if v is None else _normalize_source_types(v)

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly set on this update."""
        return self.model_dump(exclude_unset=True)


class ProcessingOrder(BaseModel):
    """Ordered sequence of dimensions resolved for every input."""
    model_config = ConfigDict(frozen=True)

    rule_types: Tuple[str, ...] = DEFAULT_PROCESSING_ORDER

    @field_validator('rule_types', mode='before')
    @classmethod
    def validate_rule_types(cls, v: Any) -> Tuple[str, ...]:
        if isinstance(v, str):
            raise ValueError("Processing order must be a sequence of rule types")
        return tuple(_normalize_rule_type(t) for t in v)

    def duplicates(self) -> List[str]:
        seen, dupes = set(), []
        for t in self.rule_types:
            if t in seen and t not in dupes:
                dupes.append(t)
            seen.add(t)
        return dupes

    def unknown(self, known: Sequence[str]) -> List[str]:
        return [t for t in self.rule_types if t not in known]

    def as_list(self) -> List[str]:
        return list(self.rule_types)


class ClassificationOutcome(BaseModel):
    """Winning classification for one dimension."""
    rule_type: str
    classification_value: str
    confidence_score: float
    rule_id: str
    matched_substrings: List[str] = Field(default_factory=list)


class ClassificationResult(BaseModel):
    """Per-dimension outcomes of a classify call, in processing order."""
    outcomes: Dict[str, Optional[ClassificationOutcome]] = Field(default_factory=dict)
    processing_order: List[str] = Field(default_factory=list)

    def get(self, rule_type: str) -> Optional[ClassificationOutcome]:
        return self.outcomes.get(rule_type)

    def labels(self) -> Dict[str, Optional[str]]:
        return {
            rule_type: outcome.classification_value if outcome else None
            for rule_type, outcome in self.outcomes.items()
        }


class RuleTestResult(BaseModel):
    """Match detail for a single rule in a tester run."""
    rule: ClassificationRule
    matched: bool
    matched_substrings: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class RuleTestReport(BaseModel):
    """Full matching surface of a tester run."""
    input_text: str
    results: List[RuleTestResult] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=utcnow)

    @property
    def matched(self) -> List[RuleTestResult]:
        return [r for r in self.results if r.matched]

    @property
    def unmatched(self) -> List[RuleTestResult]:
        return [r for r in self.results if not r.matched]


class SampleTestSummary(BaseModel):
    """Per-rule match counts across a set of sample texts."""
    sample_count: int
    match_counts: Dict[str, int] = Field(default_factory=dict)
    never_matched: List[ClassificationRule] = Field(default_factory=list)


class RulePerformanceRecord(BaseModel):
    """Evaluation counters for one rule."""
    rule_id: str
    rule_type: Optional[str] = None
    total_processed: int = 0
    successful_matches: int = 0
    confidence_average: float = 0.0
    last_used_at: Optional[datetime] = None

    @property
    def accuracy_rate(self) -> float:
        if self.total_processed == 0:
            return 0.0
        return self.successful_matches / self.total_processed

    def is_stale(self, window: timedelta, now: Optional[datetime] = None) -> bool:
        if self.last_used_at is None:
            return True
        return self.last_used_at < (now or utcnow()) - window

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_type": self.rule_type,
            "total_processed": self.total_processed,
            "successful_matches": self.successful_matches,
            "confidence_average": self.confidence_average,
            "accuracy_rate": self.accuracy_rate,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None
        }


class PriorityChange(BaseModel):
    """Result of a hierarchy reordering operation."""
    rule_id: str
    old_priority: int
    new_priority: int
    changed: bool
    reason: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of validating a rule.
    """
    valid: bool
    errors: List[Dict[str, str]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
