"""
Classification Hierarchy Package

Exports the rule hierarchy resolver.
"""

from .rule_hierarchy import RuleHierarchyResolver, RuleSnapshot

__all__ = ["RuleHierarchyResolver", "RuleSnapshot"]
