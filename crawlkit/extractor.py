import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Union

from lxml import etree

from .errors import ExtractorError, InvalidSelectorError
from .models import StoredSource
from .parser import clean_text, node_text, sanitize
from .text import TextExtractor
from .url import Url

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    HTML = "html"       # value came from the page's parsed HTML
    STORED = "stored"   # value came from a stored field map


# an XPath string, a zero-arg callable returning one (resolved at extraction
# time), or None when the transform computes the value on its own
Selector = Union[str, Callable[[], str], None]

# (value, source, source_kind) -> replacement value, or None to keep value.
# source is the Document for HTML, the stored record for STORED.
Transform = Callable[[Any, Any, SourceKind], Any]

NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")

# Document attributes an extractor must not shadow
RESERVED_NAMES = frozenset({
    "url", "html", "score", "error", "source", "source_kind", "fields",
    "registry", "tree", "soup", "get", "xpath", "base_url", "internal_links",
    "external_links", "internal_absolute_links", "extract_links", "search",
    "search_inplace", "is_empty", "is_no_index", "no_index", "to_dict", "stats",
    "from_record",
})


def _check_xpath(expr: str) -> None:
    try:
        etree.XPath(expr)
    except etree.XPathSyntaxError as exc:
        raise InvalidSelectorError(f"Invalid XPath {expr!r}: {exc}") from exc


@dataclass(frozen=True)
class ExtractorDefinition:
    name: str
    selector: Selector
    singleton: bool = True
    text_content_only: bool = True
    transform: Optional[Transform] = None

    def resolve_selector(self) -> Optional[str]:
        if callable(self.selector):
            expr = self.selector()
            # deferred selectors are only checked once they exist
            _check_xpath(expr)
            return expr
        return self.selector

    @property
    def empty_value(self) -> Any:
        return None if self.singleton else []


class ExtractorRegistry:
    """
    Named rules that turn a Document's source into its fields.

    Safe to share between concurrent crawls: define()/remove() are serialised
    by a lock and run_all() works on a snapshot taken under the same lock.
    """

    def __init__(self):
        self._definitions: dict[str, ExtractorDefinition] = {}
        self._lock = threading.Lock()

    @classmethod
    def with_defaults(cls) -> "ExtractorRegistry":
        registry = cls()
        register_defaults(registry)
        return registry

    # --- definition management ---

    def define(
        self,
        name: str,
        selector: Selector,
        singleton: bool = True,
        text_content_only: bool = True,
        transform: Optional[Transform] = None,
    ) -> str:
        """
        Register (or replace) an extractor and expose doc.<name> on Documents.

        String selectors are compiled here and a bad one raises
        InvalidSelectorError immediately; callable selectors are checked the
        first time they're evaluated.
        """
        if not isinstance(name, str) or not NAME_RE.match(name):
            raise ExtractorError(f"Invalid extractor name {name!r}, must match {NAME_RE.pattern}")
        if name in RESERVED_NAMES:
            raise ExtractorError(f"Extractor name {name!r} clashes with a Document attribute")

        if isinstance(selector, str):
            _check_xpath(selector)
        elif selector is not None and not callable(selector):
            raise ExtractorError(f"Selector for {name!r} must be an XPath string, a callable or None")

        definition = ExtractorDefinition(name, selector, singleton, text_content_only, transform)
        with self._lock:
            if name in self._definitions:
                logger.debug("Replacing extractor %r", name)
            self._definitions[name] = definition
        return name

    def extractor(self, name: str, selector: Selector, singleton: bool = True, text_content_only: bool = True):
        """Decorator form of define(); the decorated function becomes the transform."""
        def decorator(transform: Transform) -> Transform:
            self.define(name, selector, singleton=singleton, text_content_only=text_content_only, transform=transform)
            return transform
        return decorator

    def remove(self, name: str) -> bool:
        with self._lock:
            return self._definitions.pop(name, None) is not None

    def get(self, name: str) -> Optional[ExtractorDefinition]:
        with self._lock:
            return self._definitions.get(name)

    def definitions(self) -> list[ExtractorDefinition]:
        with self._lock:
            return list(self._definitions.values())

    def names(self) -> list[str]:
        return [d.name for d in self.definitions()]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._definitions

    def __len__(self) -> int:
        with self._lock:
            return len(self._definitions)

    def __iter__(self) -> Iterator[ExtractorDefinition]:
        return iter(self.definitions())

    # --- extraction ---

    def run_all(self, document) -> dict[str, Any]:
        return {definition.name: self.run(definition, document) for definition in self.definitions()}

    def run(self, definition: ExtractorDefinition, document) -> Any:
        source = document.source
        if isinstance(source, StoredSource):
            record = source.record
            if definition.name in record:
                value = record[definition.name]
                if value is None:
                    value = definition.empty_value
                return self._transform(definition, value, record, SourceKind.STORED)
            if document.html.strip():
                # the record kept its HTML, so the missing field can be recomputed
                return self._from_html(definition, document)
            return self._transform(definition, definition.empty_value, record, SourceKind.STORED)

        return self._from_html(definition, document)

    def _from_html(self, definition: ExtractorDefinition, document) -> Any:
        value = evaluate(definition, document.tree)
        return self._transform(definition, value, document, SourceKind.HTML)

    @staticmethod
    def _transform(definition: ExtractorDefinition, value: Any, source: Any, kind: SourceKind) -> Any:
        if definition.transform is None:
            return value
        new_value = definition.transform(value, source, kind)
        return value if new_value is None else new_value


def evaluate(definition: ExtractorDefinition, tree) -> Any:
    """Run a definition's selector against an lxml tree, applying its cardinality rules."""
    expr = definition.resolve_selector()
    if expr is None:
        return definition.empty_value

    try:
        results = tree.xpath(expr)
    except etree.XPathError as exc:
        raise InvalidSelectorError(f"XPath {expr!r} failed for extractor {definition.name!r}: {exc}") from exc

    # count(), string() etc. return scalars
    if not isinstance(results, list):
        results = [results]

    if definition.text_content_only:
        results = [node_text(r) for r in results]

    if definition.singleton:
        value = results[0] if results else None
    else:
        value = results

    return sanitize(value) if definition.text_content_only else value


# --- default extractors ---

def _base_transform(base, _source, _kind):
    if isinstance(base, str) and base:
        return Url.parse_or_none(base)
    return None


def _title_transform(title, _source, _kind):
    return clean_text(title) if isinstance(title, str) and title else None


def _keywords_transform(keywords, _source, kind):
    # always a list, whatever the page or record held
    if keywords is None:
        return []
    if kind is SourceKind.HTML and isinstance(keywords, str):
        return sanitize(keywords.split(","))
    return None


def _links_transform(links, _source, _kind):
    parsed = (Url.parse_or_none(link) for link in links or [])
    return [link for link in parsed if link is not None]


def _text_transform(text, source, kind):
    if kind is SourceKind.HTML:
        return TextExtractor(source.soup).extract()
    return None


DEFAULT_LINK_XPATH = "//a/@href"


def register_defaults(registry: ExtractorRegistry) -> None:
    registry.define("base", "//base/@href", transform=_base_transform)
    registry.define("title", "//title", transform=_title_transform)
    registry.define("description", '//meta[@name="description"]/@content')
    registry.define("author", '//meta[@name="author"]/@content')
    registry.define("keywords", '//meta[@name="keywords"]/@content', transform=_keywords_transform)
    registry.define("links", DEFAULT_LINK_XPATH, singleton=False, transform=_links_transform)
    # text comes from the whole tree, not an XPath
    registry.define("text", None, singleton=False, transform=_text_transform)


# shared, process-wide registry used when none is injected
default_registry = ExtractorRegistry.with_defaults()
