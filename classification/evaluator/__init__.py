"""
Classification Evaluator Package

Exports the first-match-wins classification evaluator.
"""

from .classification_evaluator import ClassificationEvaluator

__all__ = ["ClassificationEvaluator"]
