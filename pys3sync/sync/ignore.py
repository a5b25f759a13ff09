"""Ignore rules for logical paths."""

import fnmatch
import logging
import re
from collections.abc import Iterable
from typing import Optional

from ..config import IgnorePattern

logger = logging.getLogger(__name__)

GLOB_CHARS = frozenset("*?[")


def is_glob_pattern(pattern: str) -> bool:
    """Check if a string contains glob wildcards.

    Examples:
        >>> is_glob_pattern("*.bak")
        True
        >>> is_glob_pattern("drafts/")
        False
    """
    return any(char in GLOB_CHARS for char in pattern)


class IgnoreRule:
    """A single ignore rule.

    Supported forms:
        - compiled regex: matched with ``search`` against the logical path
        - glob string (``*.bak``, ``drafts/*``): matched against the full
          path, and against the file name when the glob has no slash
        - plain string ending in ``/``: matches everything below that directory
        - plain string: matches that exact path
    """

    def __init__(self, pattern: IgnorePattern):
        self.pattern = pattern

    def matches(self, path: str) -> bool:
        path = path.lstrip("/")
        if isinstance(self.pattern, re.Pattern):
            return self.pattern.search(path) is not None

        pattern = self.pattern.lstrip("/")
        if is_glob_pattern(pattern):
            if fnmatch.fnmatchcase(path, pattern):
                return True
            if "/" not in pattern:
                return fnmatch.fnmatchcase(path.rsplit("/", 1)[-1], pattern)
            return False
        if pattern.endswith("/"):
            return path.startswith(pattern)
        return path == pattern

    def __repr__(self) -> str:
        shown = (
            self.pattern.pattern
            if isinstance(self.pattern, re.Pattern)
            else self.pattern
        )
        return f"IgnoreRule({shown!r})"


class IgnoreRules:
    """Ordered collection of ignore rules; a path is ignored if any rule matches.

    Examples:
        >>> rules = IgnoreRules(["*.bak", "drafts/"])
        >>> rules.is_ignored("drafts/post.html")
        True
        >>> rules.is_ignored("index.html")
        False
    """

    def __init__(self, patterns: Optional[Iterable[IgnorePattern]] = None):
        self.rules = [IgnoreRule(p) for p in (patterns or [])]

    def is_ignored(self, path: str) -> bool:
        for rule in self.rules:
            if rule.matches(path):
                logger.debug(f"Ignoring {path} (matched {rule!r})")
                return True
        return False
