"""
Classification Tester Package

Exports the diagnostic rule tester.
"""

from .rule_tester import RuleTester, SAMPLE_ALERTS

__all__ = ["RuleTester", "SAMPLE_ALERTS"]
