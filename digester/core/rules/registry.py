"""
Pattern Registry
================

Stores rules by pattern and answers which rules apply to the current match
path. Patterns are either exact (``config/service``) or wildcard tails
(``*/service``). An exact match always wins; among wildcard tails the
longest one wins.
"""

from typing import Dict, List, Optional, TYPE_CHECKING

from digester.config.logging import get_logger
from digester.core.rules.base import Rule

if TYPE_CHECKING:
    from digester.core.engine.digester import Digester

logger = get_logger(__name__)

WILDCARD_PREFIX = "*/"


class RulesBase:
    """Default pattern registry."""

    def __init__(self) -> None:
        self._cache: Dict[str, List[Rule]] = {}
        self._rules: List[Rule] = []
        self._digester: Optional["Digester"] = None
        self.namespace_uri: Optional[str] = None

    @property
    def digester(self) -> Optional["Digester"]:
        return self._digester

    @digester.setter
    def digester(self, digester: Optional["Digester"]) -> None:
        self._digester = digester
        if digester is not None:
            for rule in self._rules:
                rule.set_digester(digester)

    def add(self, pattern: str, rule: Rule) -> None:
        """
        Register a rule for a pattern.

        Args:
            pattern: Nesting pattern; a trailing '/' is ignored
            rule: Rule instance, appended after any rules already on the pattern
        """
        if len(pattern) > 1 and pattern.endswith("/"):
            pattern = pattern[:-1]

        self._cache.setdefault(pattern, []).append(rule)
        self._rules.append(rule)
        if self._digester is not None:
            rule.set_digester(self._digester)
        if self.namespace_uri is not None:
            rule.namespace_uri = self.namespace_uri
        logger.debug("Registered rule", pattern=pattern, rule=repr(rule))

    def clear(self) -> None:
        self._cache.clear()
        self._rules.clear()

    def match(self, namespace_uri: Optional[str], path: str) -> List[Rule]:
        """
        Return the rules that apply to ``path``, in registration order.

        Args:
            namespace_uri: URI of the current element; empty or None matches any
            path: Current match path

        Returns:
            Matching rules, or an empty list
        """
        rules = self._lookup(namespace_uri, path)
        if rules:
            return rules

        longest = ""
        for key in self._cache:
            if not key.startswith(WILDCARD_PREFIX) or len(key) <= len(longest):
                continue
            suffix = key[len(WILDCARD_PREFIX):]
            if path == suffix or path.endswith("/" + suffix):
                rules = self._lookup(namespace_uri, key)
                longest = key

        return list(rules) if rules else []

    def rules(self) -> List[Rule]:
        """Every registered rule, in registration order."""
        return list(self._rules)

    def patterns(self) -> List[str]:
        return list(self._cache)

    def _lookup(self, namespace_uri: Optional[str], pattern: str) -> Optional[List[Rule]]:
        rules = self._cache.get(pattern)
        if rules is None:
            return None
        if not namespace_uri:
            return list(rules)
        return [
            rule for rule in rules
            if rule.namespace_uri is None or rule.namespace_uri == namespace_uri
        ]

    def __len__(self) -> int:
        return len(self._rules)
