"""
Rule Variants
=============

Stock rules covering the usual ways of turning elements into objects:

- ObjectCreateRule / FactoryCreateRule: push a new object while the element is open
- SetPropertiesRule: copy attributes onto the top object
- SetNextRule / SetTopRule / SetRootRule: link objects on the stack together
- CallMethodRule with CallParamRule / ObjectParamRule / PathCallParamRule:
  collect arguments from attributes, body text or the stack and make one call
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

from digester.config.logging import get_logger
from digester.core.engine.stack import ArrayStack
from digester.core.errors import DigesterError
from digester.core.rules.base import Attributes, Rule, describe
from digester.utils.introspection import call_method, load_class, set_property

logger = get_logger(__name__)


class ObjectCreationFactory(ABC):
    """Creates the object a FactoryCreateRule pushes."""

    digester: Any = None

    @abstractmethod
    def create_object(self, attributes: Attributes) -> Any:
        """Build an object from the element's attributes."""
        pass


class CallableCreationFactory(ObjectCreationFactory):
    """Factory backed by a callable taking the attribute mapping."""

    def __init__(self, func: Callable[[Attributes], Any]) -> None:
        self.func = func

    def create_object(self, attributes: Attributes) -> Any:
        return self.func(attributes)


class ObjectCreateRule(Rule):
    """
    Push a new instance when the element opens and pop it when it closes.

    The class is given as a class object or a dotted path. When
    ``attribute_name`` is set and the element carries that attribute, its
    value names the class to instantiate instead.
    """

    def __init__(self, class_or_path: Union[type, str], attribute_name: Optional[str] = None) -> None:
        super().__init__()
        self.class_or_path = class_or_path
        self.attribute_name = attribute_name

    def begin(self, namespace: str, name: str, attributes: Attributes) -> None:
        digester = self._require_digester()
        target: Union[type, str] = self.class_or_path
        if self.attribute_name is not None:
            override = attributes.get(self.attribute_name)
            if override:
                target = override

        cls = load_class(target) if isinstance(target, str) else target
        logger.debug("[ObjectCreateRule] New instance", match=digester.match, cls=cls.__name__)
        digester.push(cls())

    def end(self, namespace: str, name: str) -> None:
        digester = self._require_digester()
        top = digester.pop()
        logger.debug("[ObjectCreateRule] Pop", match=digester.match, obj=type(top).__name__)

    def __repr__(self) -> str:
        target = self.class_or_path if isinstance(self.class_or_path, str) else self.class_or_path.__name__
        return f"ObjectCreateRule[class={target}, attribute_name={self.attribute_name}]"


class FactoryCreateRule(Rule):
    """
    Push the object returned by an ObjectCreationFactory.

    With ``ignore_create_exceptions`` a failing factory pushes nothing and the
    matching ``end`` pops nothing.
    """

    def __init__(
        self, creation_factory: ObjectCreationFactory, ignore_create_exceptions: bool = False
    ) -> None:
        super().__init__()
        self.creation_factory = creation_factory
        self.ignore_create_exceptions = ignore_create_exceptions
        self._pushed: ArrayStack[bool] = ArrayStack()

    def begin(self, namespace: str, name: str, attributes: Attributes) -> None:
        digester = self._require_digester()
        try:
            instance = self.creation_factory.create_object(attributes)
        except Exception as e:
            if not self.ignore_create_exceptions:
                raise
            logger.info(
                "[FactoryCreateRule] Create exception ignored", match=digester.match, error=str(e)
            )
            self._pushed.push(False)
            return

        logger.debug("[FactoryCreateRule] New instance", match=digester.match, obj=type(instance).__name__)
        digester.push(instance)
        self._pushed.push(True)

    def end(self, namespace: str, name: str) -> None:
        digester = self._require_digester()
        if not self._pushed.empty() and not self._pushed.pop():
            logger.debug("[FactoryCreateRule] Skipping pop, nothing was created", match=digester.match)
            return
        digester.pop()

    def finish(self) -> None:
        self._pushed.clear()


class SetPropertiesRule(Rule):
    """
    Copy every attribute of the element onto the object on top of the stack.

    ``aliases`` maps attribute names to property names; attributes listed in
    ``excludes`` are skipped.
    """

    def __init__(
        self, aliases: Optional[Mapping[str, str]] = None, excludes: Sequence[str] = ()
    ) -> None:
        super().__init__()
        self.aliases = dict(aliases or {})
        self.excludes = set(excludes)

    def begin(self, namespace: str, name: str, attributes: Attributes) -> None:
        digester = self._require_digester()
        top = digester.peek()
        if top is None:
            return

        for attr_name, value in attributes.items():
            if attr_name in self.excludes:
                continue
            prop = self.aliases.get(attr_name, attr_name)
            logger.debug(
                "[SetPropertiesRule] Setting property",
                match=digester.match,
                target=type(top).__name__,
                property=prop,
                value=value,
            )
            if set_property(top, prop, value):
                continue
            if digester.rules_validation and not digester.is_fake_attribute(top, attr_name):
                logger.warning(
                    "[SetPropertiesRule] Setting property did not find a matching property",
                    match=digester.match,
                    target=type(top).__name__,
                    property=prop,
                    value=value,
                )

    def __repr__(self) -> str:
        return f"SetPropertiesRule[aliases={self.aliases}, excludes={sorted(self.excludes)}]"


class _LinkRule(Rule):
    """Shared plumbing for rules that call a method on one stacked object with another."""

    label = "LinkRule"

    def __init__(self, method_name: str, param_type: Any = None) -> None:
        super().__init__()
        self.method_name = method_name
        self.param_type = param_type

    def _link(self, target: Any, argument: Any) -> None:
        digester = self._require_digester()
        if target is None:
            logger.warning(f"[{self.label}] Call target is None, skipping", match=digester.match)
            return
        logger.debug(
            f"[{self.label}] Call",
            match=digester.match,
            target=type(target).__name__,
            method=self.method_name,
            argument=describe(argument),
        )
        param_types = [self.param_type] if self.param_type is not None else None
        call_method(target, self.method_name, [argument], param_types)

    def __repr__(self) -> str:
        return f"{type(self).__name__}[method_name={self.method_name}]"


class SetNextRule(_LinkRule):
    """On close, call ``parent.<method_name>(child)`` for the top two objects."""

    label = "SetNextRule"

    def end(self, namespace: str, name: str) -> None:
        digester = self._require_digester()
        child = digester.peek(0)
        parent = digester.peek(1)
        self._link(parent, child)


class SetTopRule(_LinkRule):
    """On close, call ``child.<method_name>(parent)`` for the top two objects."""

    label = "SetTopRule"

    def end(self, namespace: str, name: str) -> None:
        digester = self._require_digester()
        child = digester.peek(0)
        parent = digester.peek(1)
        self._link(child, parent)


class SetRootRule(_LinkRule):
    """On close, call ``root.<method_name>(top)``."""

    label = "SetRootRule"

    def end(self, namespace: str, name: str) -> None:
        digester = self._require_digester()
        self._link(digester.root, digester.peek(0))


class CallMethodRule(Rule):
    """
    Call a method on a stacked object when the element closes.

    - ``param_count > 0``: an array of that many empty slots is pushed on the
      parameter stack in ``begin`` and filled by parameter rules on nested
      elements (or on this one); the call is skipped when a single expected
      parameter never arrived.
    - ``param_count == 0``: the element's body text is the single argument,
      unless ``param_types`` is an empty sequence, which makes a no-argument call.

    ``target_offset`` selects the target counted from the top of the object
    stack; negative offsets count from the bottom (-1 is the root).
    """

    def __init__(
        self,
        method_name: str,
        param_count: int = 0,
        param_types: Optional[Sequence[Any]] = None,
        target_offset: int = 0,
    ) -> None:
        super().__init__()
        self.method_name = method_name
        self.param_count = param_count
        self.target_offset = target_offset
        if param_types is None:
            param_types = [str] * max(param_count, 1)
        self.param_types: List[Any] = list(param_types)
        self.body_text: Optional[str] = None

    def begin(self, namespace: str, name: str, attributes: Attributes) -> None:
        if self.param_count > 0:
            self._require_digester().push_params([None] * self.param_count)

    def body(self, namespace: str, name: str, text: str) -> None:
        if self.param_count == 0:
            self.body_text = text.strip()

    def end(self, namespace: str, name: str) -> None:
        digester = self._require_digester()

        if self.param_count > 0:
            parameters = digester.pop_params()
            if parameters is None:
                return
            for index, value in enumerate(parameters):
                logger.debug("[CallMethodRule] Param", index=index, value=describe(value))
            # a single parameter taken from a missing attribute skips the call
            if self.param_count == 1 and parameters[0] is None:
                return
        elif self.param_types:
            # body text was expected but never seen
            if self.body_text is None:
                return
            parameters = [self.body_text]
        else:
            parameters = []

        if self.target_offset >= 0:
            target = digester.peek(self.target_offset)
        else:
            target = digester.peek(digester.get_count() + self.target_offset)

        if target is None:
            raise DigesterError(
                f"[CallMethodRule]{{{digester.match}}} Call target is null "
                f"(target_offset={self.target_offset},stackdepth={digester.get_count()})"
            )

        logger.debug(
            "[CallMethodRule] Call",
            match=digester.match,
            target=type(target).__name__,
            method=self.method_name,
            params=[describe(p) for p in parameters],
        )
        types = self.param_types[: len(parameters)] if parameters else None
        result = call_method(target, self.method_name, parameters, types)
        self.process_method_call_result(result)

    def finish(self) -> None:
        self.body_text = None

    def process_method_call_result(self, result: Any) -> None:
        """Hook for subclasses that care about the call's return value."""
        pass

    def __repr__(self) -> str:
        types = ", ".join(getattr(t, "__name__", str(t)) for t in self.param_types)
        return (
            f"CallMethodRule[method_name={self.method_name}, "
            f"param_count={self.param_count}, param_types={{{types}}}]"
        )


class CallParamRule(Rule):
    """
    Fill one slot of the enclosing CallMethodRule's parameter array.

    The value comes from an attribute of this element, from an object on the
    object stack, or (by default) from this element's body text.
    """

    def __init__(
        self,
        param_index: int,
        attribute_name: Optional[str] = None,
        from_stack: bool = False,
        stack_index: int = 0,
    ) -> None:
        super().__init__()
        self.param_index = param_index
        self.attribute_name = attribute_name
        self.from_stack = from_stack
        self.stack_index = stack_index
        # nested matches of the same rule each leave their own body text
        self._body_texts: ArrayStack[str] = ArrayStack()

    def begin(self, namespace: str, name: str, attributes: Attributes) -> None:
        digester = self._require_digester()
        param: Any = None
        if self.attribute_name is not None:
            param = attributes.get(self.attribute_name)
        elif self.from_stack:
            param = digester.peek(self.stack_index)
            logger.debug("[CallParamRule] Param from stack", match=digester.match, value=describe(param))

        if param is not None:
            self._store(param)

    def body(self, namespace: str, name: str, text: str) -> None:
        if self.attribute_name is None and not self.from_stack:
            self._body_texts.push(text.strip())

    def end(self, namespace: str, name: str) -> None:
        if not self._body_texts.empty():
            self._store(self._body_texts.pop())

    def finish(self) -> None:
        self._body_texts.clear()

    def _store(self, value: Any) -> None:
        parameters = self._require_digester().peek_params()
        if parameters is None:
            return
        parameters[self.param_index] = value

    def __repr__(self) -> str:
        return (
            f"CallParamRule[param_index={self.param_index}, "
            f"attribute_name={self.attribute_name}, from_stack={self.from_stack}]"
        )


class ObjectParamRule(Rule):
    """Fill a parameter slot with a fixed object, optionally only when an attribute is present."""

    def __init__(self, param_index: int, param: Any, attribute_name: Optional[str] = None) -> None:
        super().__init__()
        self.param_index = param_index
        self.param = param
        self.attribute_name = attribute_name

    def begin(self, namespace: str, name: str, attributes: Attributes) -> None:
        if self.attribute_name is not None and attributes.get(self.attribute_name) is None:
            return
        parameters = self._require_digester().peek_params()
        if parameters is not None:
            parameters[self.param_index] = self.param

    def __repr__(self) -> str:
        return f"ObjectParamRule[param_index={self.param_index}, attribute_name={self.attribute_name}]"


class PathCallParamRule(Rule):
    """Fill a parameter slot with the current match path."""

    def __init__(self, param_index: int) -> None:
        super().__init__()
        self.param_index = param_index

    def begin(self, namespace: str, name: str, attributes: Attributes) -> None:
        digester = self._require_digester()
        parameters = digester.peek_params()
        if parameters is not None:
            parameters[self.param_index] = digester.match
