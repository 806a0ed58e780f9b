"""
XML Event Source
================

Drives a Digester from an lxml ``iterparse`` stream. lxml does the markup
parsing (and DTD validation when asked); this module only translates its
events into the engine's open/characters/close/namespace callbacks, in the
order a SAX parser would deliver them.
"""

import io
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ContextManager, Dict, IO, Iterator, List, Optional, Tuple, TYPE_CHECKING

from lxml import etree

from digester.config.logging import get_logger
from digester.models.schemas import DocumentLocation

if TYPE_CHECKING:
    from digester.core.engine.digester import Digester, Source

logger = get_logger(__name__)

XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"


@dataclass
class IterparseLocator:
    """
    Tracks where in the document the current event came from.

    lxml records a source line per element but no column, so ``column`` stays
    None for element events and rule failures report it as ``?``.
    """
    line: Optional[int] = None
    column: Optional[int] = None
    system_id: Optional[str] = None


class EntityResolver(etree.Resolver):
    """Resolve DTD public identifiers registered on the Digester."""

    def __init__(self, entities: Dict[str, str]) -> None:
        super().__init__()
        self.entities = entities

    def resolve(self, system_url: str, public_id: str, context: Any) -> Any:
        logger.debug("resolveEntity()", public_id=public_id, system_url=system_url)
        entity_url = self.entities.get(public_id) if public_id else None
        if entity_url is None:
            return None
        return self.resolve_filename(entity_url, context)


class XMLEventSource:
    """Feeds one document through a Digester."""

    def __init__(self, digester: "Digester") -> None:
        self.digester = digester
        self.logger: Any = logger.bind(component="xml-source")  # structlog.BoundLoggerBase

    def feed(self, source: "Source", encoding: Optional[str] = None) -> Any:
        """
        Parse ``source`` and return the Digester's result root.

        Args:
            source: Path, raw bytes, or binary file object
            encoding: Overrides the encoding declared in the document

        Raises:
            DigesterParseError: On malformed markup, I/O failure, or a failing rule
        """
        digester = self.digester
        locator = IterparseLocator(system_id=self._system_id(source))
        digester.set_document_locator(locator)

        digester.start_document()
        try:
            with self._open(source) as stream:
                context = etree.iterparse(
                    stream,
                    events=("start-ns", "start", "end"),
                    load_dtd=digester.validating or digester.resolve_entities,
                    dtd_validation=digester.validating,
                    no_network=True,
                    remove_comments=True,
                    remove_pis=True,
                    encoding=encoding,
                )
                if digester.entity_validator:
                    context.resolvers.add(EntityResolver(digester.entity_validator))
                self._dispatch(context, locator)
        except etree.XMLSyntaxError as e:
            line, column = e.position
            self.logger.error("XML parsing failed", error=e.msg, line=line, column=column)
            location = DocumentLocation(line=line, column=column, system_id=locator.system_id)
            raise digester.fail(f"Invalid XML syntax: {e.msg}", location) from e
        except (etree.LxmlError, OSError) as e:
            self.logger.error("Reading document failed", error=str(e))
            raise digester.fail(f"Unable to read document: {e}") from e

        return digester.end_document()

    @staticmethod
    def _open(source: "Source") -> ContextManager[IO[bytes]]:
        # caller-owned streams are left open
        if isinstance(source, (str, Path)):
            return open(source, "rb")
        if isinstance(source, bytes):
            return io.BytesIO(source)
        return nullcontext(source)

    def _dispatch(self, context: Iterator[Tuple[str, Any]], locator: IterparseLocator) -> None:
        digester = self.digester
        pending: List[str] = []
        declared: List[List[str]] = []

        for event, item in context:
            if event == "start-ns":
                prefix, uri = item
                digester.start_prefix_mapping(prefix, uri)
                pending.append(prefix)

            elif event == "start":
                locator.line = item.sourceline
                if not declared:
                    digester.public_id = item.getroottree().docinfo.public_id
                declared.append(pending)
                pending = []
                namespace, name = self._element_name(item)
                digester.start_element(namespace, name, self._attributes(item))

            elif event == "end":
                locator.line = item.sourceline
                for fragment in self._body_fragments(item):
                    digester.characters(fragment)
                namespace, name = self._element_name(item)
                digester.end_element(namespace, name)
                for prefix in reversed(declared.pop()):
                    digester.end_prefix_mapping(prefix)
                # children tails were consumed above
                del item[:]

    def _element_name(self, element: Any) -> Tuple[str, str]:
        qname = etree.QName(element)
        if self.digester.namespace_aware:
            return qname.namespace or "", qname.localname
        if element.prefix:
            return "", f"{element.prefix}:{qname.localname}"
        return "", qname.localname

    def _attributes(self, element: Any) -> Dict[str, str]:
        attributes: Dict[str, str] = {}
        for key, value in element.attrib.items():
            if not key.startswith("{"):
                attributes[key] = value
                continue
            qname = etree.QName(key)
            if self.digester.namespace_aware:
                attributes[qname.localname] = value
                continue
            prefix = self._prefix_for(element, qname.namespace)
            attributes[f"{prefix}:{qname.localname}" if prefix else qname.localname] = value
        return attributes

    @staticmethod
    def _prefix_for(element: Any, uri: Optional[str]) -> Optional[str]:
        if uri == XML_NAMESPACE:
            return "xml"
        for prefix, bound in element.nsmap.items():
            if bound == uri and prefix:
                return prefix
        return None

    @staticmethod
    def _body_fragments(element: Any) -> Iterator[str]:
        if element.text:
            yield element.text
        for child in element:
            if child.tail:
                yield child.tail

    @staticmethod
    def _system_id(source: "Source") -> Optional[str]:
        if isinstance(source, (str, Path)):
            return str(source)
        return getattr(source, "name", None)
