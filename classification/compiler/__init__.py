"""
Classification Compiler Package

Exports the pattern compiler and its matcher types.
"""

from .pattern_compiler import PatternCompiler, Matcher, CompileResult, get_pattern_compiler

__all__ = ["PatternCompiler", "Matcher", "CompileResult", "get_pattern_compiler"]
