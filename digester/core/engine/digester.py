"""
Digester Engine
===============

Stack machine that consumes open/characters/close events and fires the
rules matched for each element. Rules build the object graph through the
object stack and the parameter stack; the engine keeps one body-text frame
and one matched-rule list per open element, plus the namespace scopes.

One instance processes one document at a time. Registrations survive
:meth:`Digester.reset`, so a configured engine can be reused sequentially.
"""

import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union, IO

from digester.config.logging import get_logger
from digester.config.settings import DigesterSettings, get_settings
from digester.core.engine.namespaces import NamespaceScopes
from digester.core.engine.stack import ArrayStack, EmptyStackError
from digester.core.errors import DigesterError, DigesterParseError, DigesterStateError
from digester.core.rules.actions import (
    CallMethodRule,
    CallParamRule,
    FactoryCreateRule,
    ObjectCreateRule,
    ObjectCreationFactory,
    ObjectParamRule,
    SetNextRule,
    SetPropertiesRule,
    SetRootRule,
    SetTopRule,
)
from digester.core.rules.base import Rule, RuleSet
from digester.core.rules.registry import RulesBase
from digester.core.xml.properties import (
    EnvironmentPropertySource,
    PropertySource,
    replace_properties,
)
from digester.core.xml.source import XMLEventSource
from digester.models.schemas import DigesterState, DocumentLocation, ParseResult

logger = get_logger(__name__)
sax_logger = get_logger("digester.sax")

Source = Union[str, Path, bytes, IO[bytes]]


class Digester:
    """Rule-driven object graph builder."""

    def __init__(
        self,
        rules: Optional[RulesBase] = None,
        namespace_aware: Optional[bool] = None,
        validating: Optional[bool] = None,
        rules_validation: Optional[bool] = None,
        property_sources: Optional[Sequence[PropertySource]] = None,
        settings: Optional[DigesterSettings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.logger: Any = logger.bind(component="engine")  # structlog.BoundLoggerBase
        self.sax_logger: Any = sax_logger

        self.namespace_aware = (
            settings.namespace_aware if namespace_aware is None else namespace_aware
        )
        self.validating = settings.validating if validating is None else validating
        self.rules_validation = (
            settings.rules_validation if rules_validation is None else rules_validation
        )
        self.resolve_entities = settings.resolve_entities

        if property_sources is None:
            property_sources = [EnvironmentPropertySource()] if settings.substitute_properties else []
        self.property_sources: List[PropertySource] = list(property_sources)

        self._rules = rules if rules is not None else RulesBase()
        self._rules.digester = self

        # Per-run state
        self._stack: ArrayStack[Any] = ArrayStack()
        self._params: ArrayStack[Any] = ArrayStack()
        self._body_texts: ArrayStack[List[str]] = ArrayStack()
        self._matches: ArrayStack[List[Rule]] = ArrayStack()
        self._namespaces = NamespaceScopes()
        self.match = ""
        self.root: Any = None
        self.locator: Any = None
        self.public_id: Optional[str] = None
        self.state = DigesterState.IDLE

        self.fake_attributes: Optional[Dict[type, List[str]]] = None
        self.entity_validator: Dict[str, str] = {}

    # ------------------------------------------------------------ Properties

    @property
    def rules(self) -> RulesBase:
        return self._rules

    @rules.setter
    def rules(self, rules: RulesBase) -> None:
        self._rules = rules
        self._rules.digester = self

    @property
    def rule_namespace_uri(self) -> Optional[str]:
        return self._rules.namespace_uri

    @rule_namespace_uri.setter
    def rule_namespace_uri(self, namespace_uri: Optional[str]) -> None:
        self._rules.namespace_uri = namespace_uri

    def get_match(self) -> str:
        return self.match

    def get_count(self) -> int:
        """Number of objects on the object stack."""
        return len(self._stack)

    def get_current_element_name(self) -> str:
        return self.match.rpartition("/")[2]

    def find_namespace_uri(self, prefix: str) -> Optional[str]:
        """URI currently bound to ``prefix``, or None."""
        return self._namespaces.resolve(prefix)

    def is_fake_attribute(self, obj: Any, name: str) -> bool:
        """
        Whether ``name`` is an attribute that is known not to map to a property.

        Lookup is by the object's exact type, falling back to ``object``.
        """
        if not self.fake_attributes:
            return False
        names = self.fake_attributes.get(type(obj))
        if names is None:
            names = self.fake_attributes.get(object)
        return names is not None and name in names

    def register(self, public_id: str, entity_url: str) -> None:
        """Map a DTD public identifier to a local URL for entity resolution."""
        self.logger.debug("Registered entity", public_id=public_id, entity_url=entity_url)
        self.entity_validator[public_id] = entity_url

    def get_location(self) -> Optional[DocumentLocation]:
        if self.locator is None:
            return None
        return DocumentLocation(
            line=getattr(self.locator, "line", None),
            column=getattr(self.locator, "column", None),
            public_id=self.public_id,
            system_id=getattr(self.locator, "system_id", None),
        )

    # --------------------------------------------------------- Rule Methods

    def add_rule(self, pattern: str, rule: Rule) -> None:
        rule.set_digester(self)
        self._rules.add(pattern, rule)

    def add_rule_set(self, rule_set: RuleSet) -> None:
        """Register every rule of ``rule_set`` under its namespace URI."""
        old_namespace_uri = self.rule_namespace_uri
        self.logger.debug("add_rule_set()", namespace_uri=rule_set.namespace_uri)
        self.rule_namespace_uri = rule_set.namespace_uri
        try:
            rule_set.add_rule_instances(self)
        finally:
            self.rule_namespace_uri = old_namespace_uri

    def add_object_create(
        self, pattern: str, class_or_path: Union[type, str], attribute_name: Optional[str] = None
    ) -> None:
        self.add_rule(pattern, ObjectCreateRule(class_or_path, attribute_name))

    def add_factory_create(
        self,
        pattern: str,
        creation_factory: ObjectCreationFactory,
        ignore_create_exceptions: bool = False,
    ) -> None:
        creation_factory.digester = self
        self.add_rule(pattern, FactoryCreateRule(creation_factory, ignore_create_exceptions))

    def add_set_properties(
        self,
        pattern: str,
        aliases: Optional[Mapping[str, str]] = None,
        excludes: Sequence[str] = (),
    ) -> None:
        self.add_rule(pattern, SetPropertiesRule(aliases, excludes))

    def add_set_next(self, pattern: str, method_name: str, param_type: Any = None) -> None:
        self.add_rule(pattern, SetNextRule(method_name, param_type))

    def add_set_top(self, pattern: str, method_name: str, param_type: Any = None) -> None:
        self.add_rule(pattern, SetTopRule(method_name, param_type))

    def add_set_root(self, pattern: str, method_name: str, param_type: Any = None) -> None:
        self.add_rule(pattern, SetRootRule(method_name, param_type))

    def add_call_method(
        self,
        pattern: str,
        method_name: str,
        param_count: int = 0,
        param_types: Optional[Sequence[Any]] = None,
    ) -> None:
        self.add_rule(pattern, CallMethodRule(method_name, param_count, param_types))

    def add_call_param(
        self,
        pattern: str,
        param_index: int,
        attribute_name: Optional[str] = None,
        from_stack: bool = False,
    ) -> None:
        self.add_rule(
            pattern, CallParamRule(param_index, attribute_name=attribute_name, from_stack=from_stack)
        )

    def add_object_param(
        self, pattern: str, param_index: int, param: Any, attribute_name: Optional[str] = None
    ) -> None:
        self.add_rule(pattern, ObjectParamRule(param_index, param, attribute_name))

    # -------------------------------------------------------------- Parsing

    def parse(self, source: Source) -> Any:
        """
        Parse a document and return the result root.

        Args:
            source: Path, raw bytes, or binary file object

        Returns:
            The result root, or None if no rule pushed anything

        Raises:
            DigesterParseError: If the markup is malformed or a rule fails
            DigesterStateError: If the engine was not reset after a previous run
        """
        self._check_startable()
        self.logger.info("Parsing document", source=_describe_source(source))
        return XMLEventSource(self).feed(source)

    def parse_string(self, text: str) -> Any:
        """Parse markup held in a string, ignoring any encoding it declares."""
        self._check_startable()
        self.logger.info("Parsing document", source=f"<{len(text)} characters>")
        return XMLEventSource(self).feed(text.encode("utf-8"), encoding="utf-8")

    # ------------------------------------------------------- Event Handlers

    def set_document_locator(self, locator: Any) -> None:
        self.sax_logger.debug("set_document_locator()", locator=repr(locator))
        self.locator = locator

    def start_document(self) -> None:
        self.sax_logger.debug("start_document()")
        self._check_startable()
        self.state = DigesterState.IN_DOCUMENT

    def start_prefix_mapping(self, prefix: str, namespace_uri: str) -> None:
        self.sax_logger.debug("start_prefix_mapping()", prefix=prefix, namespace_uri=namespace_uri)
        self._namespaces.enter_scope(prefix, namespace_uri)

    def end_prefix_mapping(self, prefix: str) -> None:
        self.sax_logger.debug("end_prefix_mapping()", prefix=prefix)
        try:
            self._namespaces.exit_scope(prefix)
        except (DigesterError, EmptyStackError) as e:
            raise self._failure(e, "end_prefix_mapping") from e

    def start_element(
        self, namespace_uri: str, name: str, attributes: Optional[Mapping[str, str]] = None
    ) -> None:
        """Handle an element opening."""
        self.sax_logger.debug("start_element()", namespace_uri=namespace_uri, name=name)
        if self.state is DigesterState.IDLE:
            self.start_document()
        self._check_running()

        attributes = self._update_attributes(attributes or {})

        self._body_texts.push([])
        self.match = f"{self.match}/{name}" if self.match else name
        self.logger.debug("New match", match=self.match)

        rules = self._rules.match(namespace_uri, self.match)
        self._matches.push(rules)
        if not rules:
            self.logger.debug("No rules found matching", match=self.match)
            return

        for rule in rules:
            self.logger.debug("Fire begin()", rule=repr(rule))
            self._fire("begin", rule.begin, namespace_uri, name, attributes)

    def characters(self, text: str) -> None:
        """Append text to the innermost open element only."""
        self.sax_logger.debug("characters()", text=text)
        if self._body_texts.empty():
            return
        self._body_texts.peek().append(text)

    def end_element(self, namespace_uri: str, name: str) -> None:
        """Handle an element closing."""
        self.sax_logger.debug("end_element()", namespace_uri=namespace_uri, name=name)
        self._check_running()

        try:
            fragments = self._body_texts.pop()
            rules = self._matches.pop()
        except EmptyStackError as e:
            raise self._failure(e, "end_element") from e
        body_text = self._update_body_text("".join(fragments)).strip()

        self.logger.debug("Closing element", match=self.match, body_text=body_text)

        if rules:
            for rule in rules:
                self.logger.debug("Fire body()", rule=repr(rule))
                self._fire("body", rule.body, namespace_uri, name, body_text)
        else:
            if self.rules_validation:
                self.logger.warning("No rules found matching", match=self.match)

        for rule in reversed(rules):
            self.logger.debug("Fire end()", rule=repr(rule))
            self._fire("end", rule.end, namespace_uri, name)

        self.match = self.match.rpartition("/")[0]

    def end_document(self) -> Any:
        """
        Finish the run: fire ``finish`` on every registered rule and return
        the result root.
        """
        count = self.get_count()
        self.sax_logger.debug("end_document()", elements_left=count)
        self._check_running()

        if self.match or not self._body_texts.empty():
            self.logger.warning(
                "Document ended with open elements", match=self.match, depth=len(self._body_texts)
            )

        while self.get_count() > 1:
            self.pop()

        for rule in self._rules.rules():
            self._fire("finish", rule.finish)

        root = self.root
        self.clear()
        self.state = DigesterState.FINISHED
        self.logger.info("Document digested", root=type(root).__name__)
        return root

    # -------------------------------------------------------- Object Stack

    def clear(self) -> None:
        """Forget all per-run stacks and the current match path."""
        self.match = ""
        self._body_texts.clear()
        self._matches.clear()
        self._params.clear()
        self._stack.clear()
        self._namespaces.clear()
        self.public_id = None

    def reset(self) -> None:
        """Prepare for another document; registered rules are kept."""
        self.root = None
        self.locator = None
        self.clear()
        self.state = DigesterState.IDLE

    def push(self, obj: Any) -> None:
        if self.root is None and self._stack.empty():
            self.root = obj
        self._stack.push(obj)

    def pop(self) -> Any:
        try:
            return self._stack.pop()
        except EmptyStackError:
            self.logger.warning("Empty stack (returning None)")
            return None

    def peek(self, n: int = 0) -> Any:
        """Object ``n`` positions below the top of the object stack."""
        try:
            return self._stack.peek(n)
        except EmptyStackError:
            self.logger.warning("Empty stack (returning None)", depth=n)
            return None

    def get_root(self) -> Any:
        return self.root

    # ------------------------------------------------------ Parameter Stack

    def push_params(self, params: Any) -> None:
        self.logger.debug("Pushing params")
        self._params.push(params)

    def pop_params(self) -> Any:
        self.logger.debug("Popping params")
        try:
            return self._params.pop()
        except EmptyStackError:
            self.logger.warning("Empty params stack (returning None)")
            return None

    def peek_params(self, n: int = 0) -> Any:
        try:
            return self._params.peek(n)
        except EmptyStackError:
            self.logger.warning("Empty params stack (returning None)", depth=n)
            return None

    def get_params_count(self) -> int:
        return len(self._params)

    def stack_depths(self) -> Dict[str, int]:
        """Current depth of each per-run stack."""
        return {
            "objects": len(self._stack),
            "params": len(self._params),
            "body_texts": len(self._body_texts),
            "matches": len(self._matches),
            "namespaces": len(self._namespaces),
        }

    # ------------------------------------------------------------- Errors

    def create_parse_error(
        self, message: str, location: Optional[DocumentLocation] = None
    ) -> DigesterParseError:
        if location is None:
            location = self.get_location()
        if location is None:
            self.logger.debug("No locator available for error", match=self.match)
        return DigesterParseError(message, path=self.match, location=location)

    def fail(self, message: str, location: Optional[DocumentLocation] = None) -> DigesterParseError:
        """Move to the failed state and build the terminal error."""
        self.state = DigesterState.FAILED
        return self.create_parse_error(message, location)

    def _failure(self, exc: BaseException, event: str) -> DigesterParseError:
        self.logger.error(f"{event.capitalize()} event threw exception", match=self.match, error=str(exc))
        if isinstance(exc, DigesterParseError):
            self.state = DigesterState.FAILED
            return exc
        message = str(exc) or type(exc).__name__
        return self.fail(f"{type(exc).__name__}: {message}")

    def _fire(self, event: str, hook: Any, *args: Any) -> None:
        try:
            hook(*args)
        except Exception as e:
            raise self._failure(e, event) from e

    # ------------------------------------------------------------ Helpers

    def _check_startable(self) -> None:
        if self.state is DigesterState.IN_DOCUMENT:
            raise DigesterStateError("Digester is already processing a document")
        if self.state in (DigesterState.FINISHED, DigesterState.FAILED):
            raise DigesterStateError(
                f"Digester is {self.state.value}; call reset() before parsing another document"
            )

    def _check_running(self) -> None:
        if self.state is not DigesterState.IN_DOCUMENT:
            raise DigesterStateError(f"No document in progress (state: {self.state.value})")

    def _update_attributes(self, attributes: Mapping[str, str]) -> Dict[str, str]:
        updated: Dict[str, str] = {}
        for name, value in attributes.items():
            try:
                updated[name] = replace_properties(value, self.property_sources)
            except Exception as e:
                self.logger.warning(
                    "Failed to update attribute", attribute=name, value=value, error=str(e)
                )
                updated[name] = value
        return updated

    def _update_body_text(self, text: str) -> str:
        try:
            return replace_properties(text, self.property_sources)
        except Exception as e:
            self.logger.warning("Failed to update body text", error=str(e))
            return text


def _describe_source(source: Source) -> str:
    if isinstance(source, (str, Path)):
        return str(source)
    if isinstance(source, bytes):
        return f"<{len(source)} bytes>"
    return getattr(source, "name", repr(source))


def digest(
    source: Source,
    rule_sets: Sequence[RuleSet] = (),
    root: Any = None,
    **options: Any,
) -> ParseResult:
    """
    Digest a document with a fresh Digester.

    Args:
        source: Path, raw bytes, or binary file object
        rule_sets: Rule sets to register before parsing
        root: Optional object pushed before parsing; it becomes the result root
        **options: Digester constructor options

    Returns:
        ParseResult holding either the result root or the terminal error
    """
    start_time = time.time()
    digester = Digester(**options)
    for rule_set in rule_sets:
        digester.add_rule_set(rule_set)
    if root is not None:
        digester.push(root)

    try:
        result_root = digester.parse(source)
    except DigesterParseError as e:
        return ParseResult(
            success=False,
            errors=[str(e)],
            path=e.path or None,
            location=e.location,
            processing_time=time.time() - start_time,
        )

    return ParseResult(success=True, root=result_root, processing_time=time.time() - start_time)
