"""
Classification Store Package

Exports the rule store interface and its SQLite implementation.
"""

from .rule_store import RuleStore, SQLiteRuleStore

__all__ = ["RuleStore", "SQLiteRuleStore"]
