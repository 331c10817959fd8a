"""
Classification Parser Package

Exports the YAML rule parser.
"""

from .rule_parser import RuleParser, field_errors

__all__ = ["RuleParser", "field_errors"]
