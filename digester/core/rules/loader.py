"""
Declarative Rule Definitions
============================

Loads pattern/rule bindings from JSON or YAML documents so that a Digester
can be configured without code. Definitions are validated with Cerberus
schemas before any rule is instantiated.

Example (YAML)::

    namespace: null
    patterns:
      - pattern: config/service
        rules:
          - type: object-create
            class: myapp.model.Service
          - type: set-properties
          - type: set-next
            method: add_service
"""

from typing import Dict, List, Any, Optional, Tuple
import json
import yaml  # type: ignore[import-untyped]
from abc import ABC, abstractmethod
from cerberus import Validator  # type: ignore[import-untyped]

from digester.config.logging import get_logger
from digester.core.errors import RuleDefinitionError
from digester.core.rules.actions import (
    CallableCreationFactory,
    CallMethodRule,
    CallParamRule,
    FactoryCreateRule,
    ObjectCreateRule,
    ObjectCreationFactory,
    ObjectParamRule,
    PathCallParamRule,
    SetNextRule,
    SetPropertiesRule,
    SetRootRule,
    SetTopRule,
)
from digester.core.rules.base import Rule, RuleSet
from digester.models.schemas import SourceFormat
from digester.utils.introspection import load_class

logger = get_logger(__name__)

PARAM_TYPES: Dict[str, type] = {"str": str, "int": int, "float": float, "bool": bool}

RULE_TYPES = [
    "object-create",
    "factory-create",
    "set-properties",
    "set-next",
    "set-top",
    "set-root",
    "call-method",
    "call-param",
    "object-param",
    "path-call-param",
]

# Fields each rule type cannot do without
REQUIRED_FIELDS: Dict[str, List[str]] = {
    "object-create": ["class"],
    "factory-create": ["factory"],
    "set-next": ["method"],
    "set-top": ["method"],
    "set-root": ["method"],
    "call-method": ["method"],
    "call-param": ["index"],
    "object-param": ["index", "value"],
    "path-call-param": ["index"],
}


class RuleDefinitionValidator:
    """Rule definition validation using Cerberus schemas."""

    def __init__(self) -> None:
        self.logger: Any = logger.bind(component="validator")  # structlog.BoundLoggerBase
        self._setup_schemas()

    def _setup_schemas(self) -> None:
        """Setup validation schemas."""
        self.rule_schema = {
            "type": {"type": "string", "required": True, "allowed": RULE_TYPES},
            "class": {"type": "string"},
            "attribute": {"type": "string", "nullable": True},
            "factory": {"type": "string"},
            "ignore_exceptions": {"type": "boolean", "default": False},
            "aliases": {"type": "dict", "valuesrules": {"type": "string"}},
            "excludes": {"type": "list", "schema": {"type": "string"}},
            "method": {"type": "string", "empty": False},
            "param_type": {"type": "string", "allowed": list(PARAM_TYPES)},
            "param_count": {"type": "integer", "min": 0, "default": 0},
            "param_types": {
                "type": "list",
                "schema": {"type": "string", "allowed": list(PARAM_TYPES)},
            },
            "target_offset": {"type": "integer", "default": 0},
            "index": {"type": "integer", "min": 0},
            "from_stack": {"type": "boolean", "default": False},
            "stack_index": {"type": "integer", "min": 0, "default": 0},
            "value": {"nullable": True},
        }

        self.pattern_schema = {
            "pattern": {"type": "string", "required": True, "empty": False},
            "rules": {
                "type": "list",
                "required": True,
                "schema": {"type": "dict", "schema": self.rule_schema},
            },
        }

        self.document_schema: Dict[str, Any] = {
            "namespace": {"type": "string", "nullable": True, "default": None},
            "patterns": {
                "type": "list",
                "required": True,
                "schema": {"type": "dict", "schema": self.pattern_schema},
            },
        }

    def validate_document(self, data: Dict[str, Any]) -> Tuple[bool, List[str], List[str]]:
        """
        Validate a rule definition document.

        Args:
            data: Document data to validate

        Returns:
            Tuple of (is_valid, errors, warnings)
        """
        validator = Validator(self.document_schema)  # type: ignore[misc]

        is_valid = validator.validate(data)  # type: ignore[misc]
        errors: List[str] = []
        warnings: List[str] = []

        if not is_valid:
            errors.extend(self._format_validation_errors(validator.errors))  # type: ignore[attr-defined]
            return False, errors, warnings

        custom_errors, custom_warnings = self._perform_custom_validations(data)
        errors.extend(custom_errors)
        warnings.extend(custom_warnings)

        return len(errors) == 0, errors, warnings

    def _format_validation_errors(self, errors: Any, path: str = "") -> List[str]:  # type: ignore[misc]
        """Format Cerberus validation errors into readable messages."""
        formatted_errors: List[str] = []

        for field, error_info in errors.items():  # type: ignore[misc]
            current_path = f"{path}.{field}" if path else str(field)

            for error in error_info:  # type: ignore[misc]
                if isinstance(error, dict):
                    formatted_errors.extend(self._format_validation_errors(error, current_path))
                else:
                    formatted_errors.append(f"{current_path}: {error}")

        return formatted_errors

    def _perform_custom_validations(self, data: Dict[str, Any]) -> Tuple[List[str], List[str]]:
        """Checks the schemas cannot express: per-type required fields and duplicates."""
        errors: List[str] = []
        warnings: List[str] = []
        seen: Dict[str, int] = {}

        for i, entry in enumerate(data.get("patterns", [])):
            path = f"patterns[{i}]"
            pattern = entry["pattern"]

            if pattern in seen:
                warnings.append(
                    f"{path}: pattern '{pattern}' already defined at patterns[{seen[pattern]}]; rules are appended"
                )
            else:
                seen[pattern] = i

            if len(pattern) > 1 and pattern.endswith("/"):
                warnings.append(f"{path}: trailing '/' in pattern '{pattern}' is ignored")

            if not entry["rules"]:
                warnings.append(f"{path}: pattern '{pattern}' has no rules")

            for j, rule in enumerate(entry["rules"]):
                for field in REQUIRED_FIELDS.get(rule["type"], []):
                    if field not in rule:
                        errors.append(
                            f"{path}.rules[{j}]: '{rule['type']}' rule requires '{field}'"
                        )

        return errors, warnings


class DeclarativeRuleSet(RuleSet):
    """RuleSet built from a validated rule definition document."""

    def __init__(self, definition: Dict[str, Any]) -> None:
        self.definition = definition
        self.namespace_uri: Optional[str] = definition.get("namespace")

    def add_rule_instances(self, digester: Any) -> None:
        for entry in self.definition["patterns"]:
            for rule_data in entry["rules"]:
                digester.add_rule(entry["pattern"], self.create_rule(rule_data))

    @staticmethod
    def create_rule(rule_data: Dict[str, Any]) -> Rule:
        """
        Instantiate one rule from its definition.

        Raises:
            RuleDefinitionError: If a referenced class or factory cannot be loaded
        """
        rule_type = rule_data["type"]
        param_type = PARAM_TYPES.get(rule_data.get("param_type", ""))

        if rule_type == "object-create":
            return ObjectCreateRule(rule_data["class"], rule_data.get("attribute"))
        if rule_type == "factory-create":
            return FactoryCreateRule(
                _load_factory(rule_data["factory"]), rule_data.get("ignore_exceptions", False)
            )
        if rule_type == "set-properties":
            return SetPropertiesRule(rule_data.get("aliases"), rule_data.get("excludes", ()))
        if rule_type == "set-next":
            return SetNextRule(rule_data["method"], param_type)
        if rule_type == "set-top":
            return SetTopRule(rule_data["method"], param_type)
        if rule_type == "set-root":
            return SetRootRule(rule_data["method"], param_type)
        if rule_type == "call-method":
            param_types = rule_data.get("param_types")
            return CallMethodRule(
                rule_data["method"],
                rule_data.get("param_count", 0),
                [PARAM_TYPES[name] for name in param_types] if param_types is not None else None,
                rule_data.get("target_offset", 0),
            )
        if rule_type == "call-param":
            return CallParamRule(
                rule_data["index"],
                attribute_name=rule_data.get("attribute"),
                from_stack=rule_data.get("from_stack", False),
                stack_index=rule_data.get("stack_index", 0),
            )
        if rule_type == "object-param":
            return ObjectParamRule(rule_data["index"], rule_data["value"], rule_data.get("attribute"))
        if rule_type == "path-call-param":
            return PathCallParamRule(rule_data["index"])
        raise RuleDefinitionError(f"Unsupported rule type: {rule_type}")


def _load_factory(dotted_path: str) -> ObjectCreationFactory:
    try:
        target = load_class(dotted_path)
    except ImportError as e:
        raise RuleDefinitionError(f"Cannot load factory '{dotted_path}'", [str(e)]) from e

    if isinstance(target, type) and issubclass(target, ObjectCreationFactory):
        return target()
    if callable(target):
        return CallableCreationFactory(target)
    raise RuleDefinitionError(f"Factory '{dotted_path}' is neither a factory class nor callable")


class BaseRuleDefinitionParser(ABC):
    """Abstract base class for rule definition parsers."""

    def __init__(self) -> None:
        self.validator = RuleDefinitionValidator()

    @abstractmethod
    def load(self, content: str) -> Dict[str, Any]:
        """Decode raw content into a definition dictionary."""
        pass

    @abstractmethod
    def validate_syntax(self, content: str) -> bool:
        """Validate syntax without building rules."""
        pass

    def parse(self, content: str) -> DeclarativeRuleSet:
        """
        Parse and validate rule definitions.

        Args:
            content: Raw definition content as string

        Returns:
            DeclarativeRuleSet ready for ``Digester.add_rule_set``

        Raises:
            RuleDefinitionError: If the content is malformed or invalid
        """
        raw_data = self.load(content)

        if not isinstance(raw_data, dict):
            raise RuleDefinitionError(
                f"Rule definitions must be a dictionary/object, got {type(raw_data).__name__}"
            )

        is_valid, errors, warnings = self.validator.validate_document(raw_data)
        for warning in warnings:
            self.logger.warning("Rule definition warning", warning=warning)

        if not is_valid:
            self.logger.error("Rule definition validation failed", error_count=len(errors))
            raise RuleDefinitionError("Invalid rule definitions", errors)

        self.logger.info("Loaded rule definitions", patterns=len(raw_data["patterns"]))
        return DeclarativeRuleSet(raw_data)


class JSONRuleDefinitionParser(BaseRuleDefinitionParser):
    """JSON rule definition parser."""

    def __init__(self) -> None:
        super().__init__()
        self.logger: Any = logger.bind(parser="json")  # structlog.BoundLoggerBase

    def load(self, content: str) -> Dict[str, Any]:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON syntax at line {e.lineno}, column {e.colno}: {e.msg}"
            self.logger.error("JSON parsing failed", error=error_msg)
            raise RuleDefinitionError(error_msg) from e

    def validate_syntax(self, content: str) -> bool:
        try:
            json.loads(content)
            return True
        except json.JSONDecodeError:
            return False


class YAMLRuleDefinitionParser(BaseRuleDefinitionParser):
    """YAML rule definition parser."""

    def __init__(self) -> None:
        super().__init__()
        self.logger: Any = logger.bind(parser="yaml")  # structlog.BoundLoggerBase

    def load(self, content: str) -> Dict[str, Any]:
        try:
            raw_data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            error_msg = f"Invalid YAML syntax: {e}"
            self.logger.error("YAML parsing failed", error=error_msg)
            raise RuleDefinitionError(error_msg) from e

        if raw_data is None:
            raise RuleDefinitionError("Empty YAML document")
        return raw_data

    def validate_syntax(self, content: str) -> bool:
        try:
            yaml.safe_load(content)
            return True
        except yaml.YAMLError:
            return False


class RuleDefinitionParserFactory:
    """Factory for creating rule definition parsers based on content type."""

    _parsers = {
        SourceFormat.JSON.value: JSONRuleDefinitionParser,
        SourceFormat.YAML.value: YAMLRuleDefinitionParser,
    }

    @classmethod
    def create_parser(cls, parser_type: str) -> BaseRuleDefinitionParser:
        """
        Create a rule definition parser.

        Args:
            parser_type: Type of parser ("json", "yaml")

        Raises:
            ValueError: If parser type is not supported
        """
        if parser_type not in cls._parsers:
            raise ValueError(f"Unsupported parser type: {parser_type}")

        return cls._parsers[parser_type]()

    @classmethod
    def detect_parser_type(cls, content: str) -> str:
        """Detect JSON or YAML from the content itself."""
        content = content.strip()
        if content.startswith(("{", "[")):
            return SourceFormat.JSON.value
        elif content.startswith(("---", "- ")) or "\n-" in content[:100]:
            return SourceFormat.YAML.value
        else:
            # Try to parse as JSON first, fallback to YAML
            try:
                json.loads(content)
                return SourceFormat.JSON.value
            except json.JSONDecodeError:
                return SourceFormat.YAML.value


def load_rule_set(content: str, parser_type: Optional[str] = None) -> DeclarativeRuleSet:
    """
    Load a rule set from JSON or YAML definitions.

    Args:
        content: Raw definition content
        parser_type: Optional parser type override

    Returns:
        DeclarativeRuleSet

    Raises:
        RuleDefinitionError: If the definitions are empty, malformed or invalid
    """
    if not content or not content.strip():
        raise RuleDefinitionError("Empty rule definition content provided")

    if not parser_type:
        parser_type = RuleDefinitionParserFactory.detect_parser_type(content)

    try:
        parser = RuleDefinitionParserFactory.create_parser(parser_type)
    except ValueError as e:
        raise RuleDefinitionError(str(e)) from e
    return parser.parse(content)
