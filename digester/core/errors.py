"""
Digester Errors
===============

Exception taxonomy for the engine. Only hook failures and state misuse are
fatal; stack underflow and binding misses are recovered where they happen.
"""

from typing import Optional

from digester.models.schemas import DocumentLocation


class DigesterError(Exception):
    """Base class for all digester errors."""

    pass


class DigesterParseError(DigesterError):
    """Terminal error of a document run, carrying match path and location."""

    def __init__(
        self,
        message: str,
        path: str = "",
        location: Optional[DocumentLocation] = None,
    ) -> None:
        self.message = message
        self.path = path
        self.location = location
        super().__init__(self._format())

    @property
    def line(self) -> Optional[int]:
        return self.location.line if self.location else None

    @property
    def column(self) -> Optional[int]:
        return self.location.column if self.location else None

    def _format(self) -> str:
        text = self.message
        if self.path:
            text = f"[{self.path}] {text}"
        if self.location is not None:
            text = f"Error at {self.location.describe()} : {text}"
        return text


class DigesterStateError(DigesterError):
    """Raised when an engine is driven outside its lifecycle."""

    pass


class BindingError(DigesterError):
    """Raised when a target object lacks the named property or method."""

    def __init__(self, target: object, name: str, kind: str = "method") -> None:
        self.target = target
        self.name = name
        self.kind = kind
        super().__init__(f"{type(target).__name__} has no {kind} '{name}'")


class RuleDefinitionError(DigesterError):
    """Raised when a declarative rule definition fails validation."""

    def __init__(self, message: str, errors: Optional[list] = None) -> None:
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: " + "; ".join(self.errors)
        super().__init__(message)
