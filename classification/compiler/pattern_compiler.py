"""
Pattern Compiler

Compiles rule condition patterns into cached, case-insensitive matchers.
"""

import re
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from exceptions import PatternCompileError


logger = logging.getLogger("VigilPatternCompiler")


class Matcher:
    """
    Executable form of a condition pattern.

    Matching is case-insensitive and global: every non-overlapping match is
    returned, in order, as the full matched substring (capture groups do not
    change the result).
    """

    __slots__ = ("pattern", "_regex")

    def __init__(self, pattern: str, regex: "re.Pattern[str]"):
        self.pattern = pattern
        self._regex = regex

    def find_all(self, text: str) -> List[str]:
        return [m.group(0) for m in self._regex.finditer(text)]

    def matches(self, text: str) -> bool:
        return self._regex.search(text) is not None

    def __repr__(self) -> str:
        return f"Matcher({self.pattern!r})"


@dataclass(frozen=True)
class CompileResult:
    """Either a matcher or the compile error for a pattern."""
    pattern: str
    matcher: Optional[Matcher] = None
    error: Optional[PatternCompileError] = None

    @property
    def ok(self) -> bool:
        return self.matcher is not None


class PatternCompiler:
    """
    Compile and cache matchers keyed by exact pattern text.

    Reads are lock-free dictionary lookups. A miss compiles outside any lock;
    concurrent misses for the same pattern may both compile and the first
    writer's matcher is kept.
    """

    FLAGS = re.IGNORECASE

    def __init__(self):
        self._cache: Dict[str, Matcher] = {}
        self._write_lock = threading.Lock()

    def compile(self, pattern: str) -> CompileResult:
        """
        Compile ``pattern`` without raising.

        Returns:
            CompileResult holding the matcher, or the PatternCompileError
        """
        cached = self._cache.get(pattern)
        if cached is not None:
            return CompileResult(pattern=pattern, matcher=cached)

        if not isinstance(pattern, str) or pattern == "":
            return CompileResult(
                pattern=str(pattern),
                error=PatternCompileError(str(pattern), "pattern must be a non-empty string")
            )

        try:
            regex = re.compile(pattern, self.FLAGS)
        except re.error as e:
            return CompileResult(pattern=pattern, error=PatternCompileError(pattern, str(e)))

        matcher = Matcher(pattern, regex)
        with self._write_lock:
            matcher = self._cache.setdefault(pattern, matcher)
        return CompileResult(pattern=pattern, matcher=matcher)

    def validate(self, pattern: str) -> Matcher:
        """
        Compile ``pattern`` for the create/update validation gate.

        Raises:
            PatternCompileError: If the pattern is empty or malformed
        """
        result = self.compile(pattern)
        if result.error is not None:
            raise result.error
        return result.matcher

    def find_all(self, pattern: str, text: str) -> Optional[List[str]]:
        """Matched substrings, or None when the pattern cannot be compiled."""
        result = self.compile(pattern)
        if not result.ok:
            logger.warning(f"Pattern failed to compile during evaluation: {result.error.message}")
            return None
        return result.matcher.find_all(text)

    def is_cached(self, pattern: str) -> bool:
        return pattern in self._cache

    def evict(self, pattern: str) -> None:
        with self._write_lock:
            self._cache.pop(pattern, None)

    def clear(self) -> None:
        with self._write_lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


_default_compiler: Optional[PatternCompiler] = None
_default_lock = threading.Lock()


def get_pattern_compiler() -> PatternCompiler:
    """Process-wide compiler shared by every engine instance."""
    global _default_compiler
    if _default_compiler is None:
        with _default_lock:
            if _default_compiler is None:
                _default_compiler = PatternCompiler()
    return _default_compiler
