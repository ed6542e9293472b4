"""
Visible text extraction.

Turns a parsed HTML tree into the ordered list of text "sentences" a browser
would show, without a layout engine. Each element's CSS display (inline or
block) decides where line breaks go, e.g.

    <div>foo</div><div>bar</div>    -> ["foo", "bar"]
    <span>foo</span><span>bar</span> -> ["foobar"]

Only leaf content holders are emitted (an element whose sole child is a text
node, or a text node that isn't its parent's entire text) so nested markup
like <li><a>Home</a></li> yields "Home" once, not twice.
"""

import logging
import re
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Union

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, PreformattedString, Tag

from .parser import parse_soup

logger = logging.getLogger(__name__)

INLINE = "inline"
BLOCK = "block"

TEXT_ELEMENTS: Mapping[str, str] = MappingProxyType({
    "a":          INLINE,
    "abbr":       INLINE,
    "address":    BLOCK,
    "article":    BLOCK,
    "aside":      BLOCK,
    "b":          INLINE,
    "bdi":        INLINE,
    "bdo":        INLINE,
    "blockquote": BLOCK,
    "br":         BLOCK,
    "button":     BLOCK,   # inline in browsers, but reads better as its own line
    "caption":    BLOCK,
    "cite":       INLINE,
    "code":       INLINE,
    "data":       INLINE,
    "dd":         BLOCK,
    "del":        INLINE,
    "details":    BLOCK,
    "dfn":        INLINE,
    "div":        BLOCK,
    "dl":         BLOCK,
    "dt":         BLOCK,
    "em":         INLINE,
    "figcaption": BLOCK,
    "figure":     BLOCK,
    "footer":     BLOCK,
    "h1":         BLOCK,
    "h2":         BLOCK,
    "h3":         BLOCK,
    "h4":         BLOCK,
    "h5":         BLOCK,
    "h6":         BLOCK,
    "header":     BLOCK,
    "hr":         BLOCK,
    "i":          INLINE,
    "input":      INLINE,
    "ins":        BLOCK,
    "kbd":        INLINE,
    "label":      INLINE,
    "legend":     BLOCK,
    "li":         BLOCK,
    "main":       BLOCK,
    "mark":       INLINE,
    "meter":      BLOCK,
    "ol":         BLOCK,
    "option":     BLOCK,
    "output":     BLOCK,
    "p":          BLOCK,
    "pre":        BLOCK,
    "q":          INLINE,
    "rb":         INLINE,
    "rt":         INLINE,
    "ruby":       INLINE,
    "s":          INLINE,
    "samp":       INLINE,
    "section":    BLOCK,
    "small":      INLINE,
    "span":       INLINE,
    "strong":     INLINE,
    "sub":        INLINE,
    "summary":    BLOCK,
    "sup":        INLINE,
    "td":         BLOCK,
    "textarea":   BLOCK,
    "th":         BLOCK,
    "time":       INLINE,
    "u":          INLINE,
    "ul":         BLOCK,
    "var":        INLINE,
    "wbr":        INLINE,
})

# removed outright; semantic HTML breaks lines with <br>/block elements instead
_STRIPPED_CHARS = re.compile("[\n\r\f\t\u200c]")
# rendered as a plain space
_SPACE_CHARS = re.compile("[\u00a0\u2002\u2003\u2009]")


def _is_text(node: PageElement) -> bool:
    # comments, doctypes, CDATA etc. are NavigableStrings too, but never visible
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def _format_text(text: str) -> str:
    return _SPACE_CHARS.sub(" ", _STRIPPED_CHARS.sub("", text))


def _contains_new_line(text: str) -> bool:
    return "\n" in text


class TextExtractor:
    """
    Extracts the visible text sentences from a BeautifulSoup tree.

    Holds no state between calls: extract() always recomputes from the tree.
    """

    def __init__(self, soup: Union[BeautifulSoup, str], text_elements: Optional[Mapping[str, str]] = None):
        if isinstance(soup, str):
            soup = parse_soup(soup)
        self.soup = soup
        self.text_elements = TEXT_ELEMENTS if text_elements is None else text_elements
        self._texts: dict[int, str] = {}

    def extract(self) -> list[str]:
        """Ordered, de-duplicated list of visible text sentences."""
        if not self.soup.contents:
            return []

        text_str = self.extract_str()
        sentences = (line.strip() for line in text_str.split("\n"))
        return list(dict.fromkeys(s for s in sentences if s))

    def extract_str(self) -> str:
        """All visible text as one string, sentences delimited by newlines."""
        debug = logger.isEnabledFor(logging.DEBUG)
        parts: list[str] = []
        self._texts = {}

        try:
            for node, display in self._iterate(self.soup):
                if debug:
                    logger.debug("NODE %s %r", getattr(node, "name", None) or "#text", self._text(node))

                if isinstance(node, Tag) and node.name == "pre":
                    # preformatted content keeps its own line breaks
                    parts.append("\n")
                    parts.append(self._text(node))
                    continue
                if self._child_of(node, "pre"):
                    continue

                if _is_text(node):
                    if not _format_text(str(node)):
                        continue
                elif node.contents and not (len(node.contents) == 1 and self._parent_of_text_node(node)):
                    # content lives deeper; the children get their turn
                    continue

                if self._needs_new_line(node, display):
                    parts.append("\n")
                parts.append(_format_text(self._text(node)))
        finally:
            self._texts = {}

        text_str = "".join(parts).strip()
        text_str = re.sub(r"\n+", "\n", text_str)
        return re.sub(r" +", " ", text_str)

    # --- traversal ---

    def _iterate(self, root: Tag) -> Iterator[tuple[PageElement, Optional[str]]]:
        """Pre-order walk yielding classified elements and valid text nodes."""
        stack: list[PageElement] = [root]
        while stack:
            node = stack.pop()
            display = self._display(node)
            if display or self._is_valid_text_node(node):
                yield node, display
            if isinstance(node, Tag):
                stack.extend(reversed(node.contents))

    def _needs_new_line(self, node: PageElement, display: Optional[str]) -> bool:
        prev = self._prev_sibling_or_parent(node)
        if _is_text(node):
            return not (prev is not None and self._display(prev) == INLINE)
        if display == BLOCK:
            return True
        return prev is not None and self._display(prev) == BLOCK

    # --- node helpers ---

    def _display(self, node: PageElement) -> Optional[str]:
        if not isinstance(node, Tag) or not node.name:
            return None
        return self.text_elements.get(node.name.lower())

    def _text(self, node: PageElement) -> str:
        if isinstance(node, NavigableString):
            return str(node)
        key = id(node)
        if key not in self._texts:
            self._texts[key] = "".join(s for s in node.descendants if _is_text(s))
        return self._texts[key]

    def _is_valid_text_node(self, node: PageElement) -> bool:
        """A text node that isn't simply the whole text of its parent."""
        return _is_text(node) and node.parent is not None and str(node) != self._text(node.parent)

    def _parent_of_text_node(self, node: Tag) -> bool:
        return any(_is_text(child) and _format_text(str(child)) for child in node.contents)

    def _child_of(self, node: PageElement, ancestor_name: str) -> bool:
        return any(parent.name == ancestor_name for parent in node.parents)

    def _prev_sibling(self, node: PageElement) -> Optional[PageElement]:
        """Previous sibling, skipping a duplicate or newline-only whitespace text node."""
        prev = node.previous_sibling
        if prev is None or not _is_text(prev):
            return prev
        if self._is_valid_text_node(prev):
            if not _contains_new_line(str(prev)):
                return prev
            if _format_text(str(prev)).strip():
                return prev
        return prev.previous_sibling

    def _prev_sibling_or_parent(self, node: PageElement) -> Optional[PageElement]:
        prev = self._prev_sibling(node)
        if prev is not None:
            return prev
        return node.parent


def html_to_text(html: str) -> list[str]:
    """Convenience wrapper: raw HTML in, visible sentences out."""
    return TextExtractor(html).extract()
