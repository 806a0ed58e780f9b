"""
Introspection Utilities
=======================

Binding of names found in markup (attribute names, method names from rule
definitions) to properties and methods of target objects.

Objects can opt into explicit binding by implementing :class:`Bindable`.
Everything else is bound through its Python surface: pydantic model fields,
mapping items, ``set_<name>`` setters, and annotated or existing attributes.
String values are coerced to the declared or current type with pydantic.
"""

import importlib
import re
import typing
from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, TypeAdapter

from digester.config.logging import get_logger
from digester.core.errors import BindingError

logger = get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class Bindable(ABC):
    """Capability interface for objects that bind names themselves."""

    @abstractmethod
    def set_property(self, name: str, value: Any) -> bool:
        """Assign ``value`` to the property ``name``; False when unknown."""
        pass

    @abstractmethod
    def invoke(self, method_name: str, args: Sequence[Any]) -> Any:
        """Invoke ``method_name`` with ``args``; raise BindingError when unknown."""
        pass


def candidate_names(name: str) -> List[str]:
    """
    Python spellings to try for a markup name.

    ``maxThreads`` and ``max-threads`` both yield ``max_threads``.
    """
    names = [name]
    snake = _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").replace(".", "_").lower()
    if snake != name:
        names.append(snake)
    return names


@lru_cache(maxsize=256)
def _adapter(target_type: Any) -> TypeAdapter:
    return TypeAdapter(target_type)


def convert(value: Any, target_type: Any) -> Any:
    """
    Convert ``value`` to ``target_type``.

    Args:
        value: Value to convert, usually a string from the document
        target_type: Python type or typing annotation; None means "as is"

    Returns:
        The converted value

    Raises:
        ValueError: If the value cannot be converted
    """
    if value is None or target_type is None or target_type is Any:
        return value
    if isinstance(target_type, type) and isinstance(value, target_type):
        return value
    try:
        adapter = _adapter(target_type)
    except TypeError:
        # unhashable annotation, skip the cache
        adapter = TypeAdapter(target_type)
    return adapter.validate_python(value)


def _type_hints(cls: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except Exception:
        return dict(getattr(cls, "__annotations__", {}))


def _pydantic_field(model: BaseModel, name: str) -> Optional[str]:
    fields = type(model).model_fields
    for candidate in candidate_names(name):
        if candidate in fields:
            return candidate
    for field_name, info in fields.items():
        if info.alias == name:
            return field_name
    return None


def set_property(obj: Any, name: str, value: Any) -> bool:
    """
    Set property ``name`` on ``obj``.

    Args:
        obj: Target object
        name: Property name as written in the document
        value: New value; strings are coerced to the property's type

    Returns:
        True if the property was set, False if ``obj`` has no such property
        or ``value`` cannot be converted to its type
    """
    if isinstance(obj, Bindable):
        return obj.set_property(name, value)

    if isinstance(obj, BaseModel):
        field_name = _pydantic_field(obj, name)
        if field_name is None:
            return False
        annotation = type(obj).model_fields[field_name].annotation
        try:
            value = convert(value, annotation)
        except ValueError as e:
            logger.debug("Property conversion failed", property=name, error=str(e))
            return False
        setattr(obj, field_name, value)
        return True

    if isinstance(obj, MutableMapping):
        obj[name] = value
        return True

    hints = _type_hints(type(obj))
    for candidate in candidate_names(name):
        setter = getattr(obj, f"set_{candidate}", None)
        if callable(setter):
            setter(value)
            return True
        target_type: Any = None
        if candidate in hints:
            target_type = hints[candidate]
        elif hasattr(obj, candidate) and not callable(getattr(obj, candidate)):
            current = getattr(obj, candidate)
            if isinstance(current, (bool, int, float)) and isinstance(value, str):
                target_type = type(current)
        else:
            continue
        try:
            value = convert(value, target_type)
        except ValueError as e:
            logger.debug("Property conversion failed", property=name, error=str(e))
            return False
        setattr(obj, candidate, value)
        return True

    return False


def find_method(obj: Any, method_name: str) -> Any:
    for candidate in candidate_names(method_name):
        method = getattr(obj, candidate, None)
        if callable(method):
            return method
    return None


def call_method(
    obj: Any,
    method_name: str,
    args: Iterable[Any] = (),
    param_types: Optional[Sequence[Any]] = None,
) -> Any:
    """
    Invoke ``method_name`` on ``obj``.

    Args:
        obj: Target object
        method_name: Method name as written in the rule
        args: Positional arguments
        param_types: Optional target types, one per argument; only string
            arguments are converted

    Returns:
        Whatever the method returns

    Raises:
        BindingError: If ``obj`` has no such method
    """
    args = list(args)
    if param_types:
        for index, param_type in enumerate(param_types[: len(args)]):
            if isinstance(args[index], str):
                args[index] = convert(args[index], param_type)

    if isinstance(obj, Bindable):
        return obj.invoke(method_name, args)

    method = find_method(obj, method_name)
    if method is None:
        raise BindingError(obj, method_name)
    return method(*args)


def load_class(dotted_path: str) -> type:
    """
    Import a class from ``package.module.Class`` or ``package.module:Class``.

    Raises:
        ImportError: If the module or class cannot be found
    """
    if ":" in dotted_path:
        module_name, _, attr = dotted_path.partition(":")
    else:
        module_name, _, attr = dotted_path.rpartition(".")
    if not module_name or not attr:
        raise ImportError(f"Not a dotted class path: '{dotted_path}'")

    module = importlib.import_module(module_name)
    try:
        target = getattr(module, attr)
    except AttributeError as e:
        raise ImportError(f"Module '{module_name}' has no attribute '{attr}'") from e
    logger.debug("Loaded class", path=dotted_path)
    return target
