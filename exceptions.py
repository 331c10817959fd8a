"""
Custom Exception Hierarchy for the Vigil Classification Engine
Provides structured error handling with context preservation.
"""
from typing import Optional, Dict, Any, List


class VigilError(Exception):
    """Base exception for all Vigil errors."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        trace_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.component = component
        self.trace_id = trace_id
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "component": self.component,
            "trace_id": self.trace_id,
            "context": self.context
        }


# -------------------------------------------------------------------------
# CONFIGURATION ERRORS
# -------------------------------------------------------------------------

class ConfigurationError(VigilError):
    """Raised when configuration is invalid or missing."""
    pass


# -------------------------------------------------------------------------
# VALIDATION ERRORS
# -------------------------------------------------------------------------

class ValidationError(VigilError):
    """
    Raised when a rule or hierarchy edit fails validation.

    Field-level problems are carried in ``context["errors"]`` as a list of
    ``{"field": ..., "message": ...}`` dictionaries.
    """

    @property
    def errors(self) -> List[Dict[str, str]]:
        return self.context.get("errors", [])


class PatternCompileError(ValidationError):
    """Raised when a condition pattern does not compile."""

    def __init__(self, pattern: str, error: str, component: Optional[str] = "PatternCompiler"):
        self.pattern = pattern
        self.error = error
        super().__init__(
            f"Invalid condition pattern {pattern!r}: {error}",
            component=component,
            context={
                "pattern": pattern,
                "errors": [{"field": "condition_pattern", "message": error}]
            }
        )


class UnknownRuleTypeError(ValidationError):
    """Raised when a rule type is not one of the configured dimensions."""
    pass


class InvalidProcessingOrderError(ValidationError):
    """Raised when a processing order contains duplicate or unknown dimensions."""
    pass


class ImmutableFieldError(ValidationError):
    """Raised when an update tries to change a field fixed at creation."""
    pass


# -------------------------------------------------------------------------
# LOOKUP ERRORS
# -------------------------------------------------------------------------

class NotFoundError(VigilError):
    """Raised when an operation references an unknown entity."""
    pass


class RuleNotFoundError(NotFoundError):
    """Raised when a rule ID is not present in the store."""

    def __init__(self, rule_id: str, component: Optional[str] = None):
        self.rule_id = rule_id
        super().__init__(
            f"Rule not found: {rule_id}",
            component=component,
            context={"rule_id": rule_id}
        )


# -------------------------------------------------------------------------
# STORE / DATABASE ERRORS
# -------------------------------------------------------------------------

class StoreError(VigilError):
    """Raised when the rule store is unavailable or a persistence call fails."""
    pass


class DatabaseError(StoreError):
    """Base class for database-related errors."""
    pass


class ConnectionPoolExhaustedError(DatabaseError):
    """Raised when database connection pool is exhausted."""
    pass


class TransactionError(DatabaseError):
    """Raised when database transaction fails."""
    pass


class QueryExecutionError(DatabaseError):
    """Raised when database query execution fails."""
    pass
