"""
Rule Abstraction
================

A rule is the unit of behavior bound to a pattern. The engine calls its
hooks as matching elements open and close:

- ``begin``  when the element opens, with substituted attributes
- ``body``   when the element closes, with its accumulated body text
- ``end``    after ``body``, in reverse registration order
- ``finish`` once per run for every registered rule, matched or not
"""

from typing import Any, Mapping, Optional, TYPE_CHECKING
from abc import ABC, abstractmethod

if TYPE_CHECKING:
    from digester.core.engine.digester import Digester


Attributes = Mapping[str, str]


class Rule:
    """Base rule with no-op hooks."""

    def __init__(self) -> None:
        self.digester: Optional["Digester"] = None
        self.namespace_uri: Optional[str] = None

    def set_digester(self, digester: "Digester") -> None:
        self.digester = digester

    def begin(self, namespace: str, name: str, attributes: Attributes) -> None:
        pass

    def body(self, namespace: str, name: str, text: str) -> None:
        pass

    def end(self, namespace: str, name: str) -> None:
        pass

    def finish(self) -> None:
        pass

    def _require_digester(self) -> "Digester":
        if self.digester is None:
            raise RuntimeError(f"{self!r} is not attached to a Digester")
        return self.digester

    def __repr__(self) -> str:
        return f"{type(self).__name__}[namespace_uri={self.namespace_uri}]"


class RuleSet(ABC):
    """A bundle of rules registered on a Digester in one go."""

    #: Namespace URI stamped on every rule this set adds, or None for any.
    namespace_uri: Optional[str] = None

    @abstractmethod
    def add_rule_instances(self, digester: "Digester") -> None:
        """Register this set's rules on ``digester``."""
        pass


def describe(value: Any) -> str:
    """Short type-qualified description used in debug logs."""
    if value is None:
        return "None"
    return f"{value!r}/{type(value).__name__}"
