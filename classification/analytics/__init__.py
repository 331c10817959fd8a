"""
Classification Analytics Package

Exports the rule performance tracker.
"""

from .performance_tracker import PerformanceTracker

__all__ = ["PerformanceTracker"]
