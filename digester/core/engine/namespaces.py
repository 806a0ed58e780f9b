"""
Namespace Scopes
================

Live prefix to URI bindings. Each prefix owns its own stack so that a
redeclaration in a nested element shadows the outer binding until the
element closes.
"""

from typing import Dict, Optional

from digester.core.engine.stack import ArrayStack
from digester.core.errors import DigesterError


class NamespaceScopes:
    """Stack of namespace scopes keyed by prefix."""

    def __init__(self) -> None:
        self._scopes: Dict[str, ArrayStack[str]] = {}

    def enter_scope(self, prefix: str, uri: str) -> None:
        """Bind ``prefix`` to ``uri`` until the matching :meth:`exit_scope`."""
        stack = self._scopes.get(prefix)
        if stack is None:
            stack = ArrayStack()
            self._scopes[prefix] = stack
        stack.push(uri)

    def exit_scope(self, prefix: str) -> Optional[str]:
        """Drop the innermost binding of ``prefix`` and return its URI."""
        stack = self._scopes.get(prefix)
        if stack is None:
            raise DigesterError(f"exit_scope('{prefix}') without a matching enter_scope")
        uri = stack.pop()
        if stack.empty():
            del self._scopes[prefix]
        return uri

    def resolve(self, prefix: str) -> Optional[str]:
        """Return the URI currently bound to ``prefix``, or None if unbound."""
        stack = self._scopes.get(prefix)
        if stack is None:
            return None
        return stack.peek()

    def clear(self) -> None:
        self._scopes.clear()

    def __contains__(self, prefix: object) -> bool:
        return prefix in self._scopes

    def __len__(self) -> int:
        return len(self._scopes)
