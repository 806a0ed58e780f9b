"""
Property Substitution
=====================

``${name}`` expansion applied to attribute values and body text before
rules see them. Sources are consulted in order; the first one that knows a
name wins, and unknown names are left as written.
"""

import os
import re
from typing import Mapping, Optional, Protocol, Sequence, runtime_checkable

_REFERENCE = re.compile(r"\$\{([^}]+)\}")


@runtime_checkable
class PropertySource(Protocol):
    """Lookup hook for property values."""

    def get_property(self, key: str) -> Optional[str]:
        ...


class EnvironmentPropertySource:
    """Resolve properties from environment variables."""

    def get_property(self, key: str) -> Optional[str]:
        return os.environ.get(key)


class MappingPropertySource:
    """Resolve properties from a fixed mapping."""

    def __init__(self, values: Mapping[str, object]) -> None:
        self.values = dict(values)

    def get_property(self, key: str) -> Optional[str]:
        value = self.values.get(key)
        return None if value is None else str(value)


def replace_properties(value: str, sources: Sequence[PropertySource]) -> str:
    """
    Expand ``${name}`` references in ``value``.

    Args:
        value: Text that may contain references
        sources: Property sources, consulted in order

    Returns:
        The expanded text; ``value`` itself when nothing changed
    """
    if "${" not in value or not sources:
        return value

    def _resolve(match: "re.Match[str]") -> str:
        key = match.group(1)
        for source in sources:
            resolved = source.get_property(key)
            if resolved is not None:
                return resolved
        return match.group(0)

    return _REFERENCE.sub(_resolve, value)
