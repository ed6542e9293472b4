import re
from typing import Any

import lxml.html
from bs4 import BeautifulSoup
from lxml import etree

_EMPTY_HTML = "<html></html>"


def clean_text(raw: str) -> str:
    """Collapse whitespace and strip control characters from extracted text."""
    text = re.sub(r"[\r\n\t\f]+", " ", raw)
    text = re.sub(r" {2,}", " ", text)
    return text.strip()


def parse_html(html: str) -> lxml.html.HtmlElement:
    """
    Parse raw HTML into an lxml tree for XPath evaluation. Blank input gives
    an empty <html> tree rather than an error, so every extractor can run.
    """
    if not html or not html.strip():
        html = _EMPTY_HTML
    # bytes + explicit encoding: lxml refuses str input carrying an XML encoding declaration
    parser = lxml.html.HTMLParser(encoding="utf-8")
    try:
        return lxml.html.document_fromstring(html.encode("utf-8"), parser=parser)
    except etree.ParserError:
        # e.g. a body made only of comments
        return lxml.html.document_fromstring(_EMPTY_HTML)


def parse_soup(html: str) -> BeautifulSoup:
    """Parse raw HTML into a BeautifulSoup tree, used by the text extractor."""
    return BeautifulSoup(html or "", "lxml")


def node_text(node: Any) -> str:
    """Text content of an XPath result: element, attribute value or text()."""
    if hasattr(node, "text_content"):
        return node.text_content()
    return str(node)


def sanitize(value: Any) -> Any:
    """Strip strings; strip list items and drop the empty ones. Anything else passes through."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        cleaned = []
        for item in value:
            if isinstance(item, str):
                item = item.strip()
                if not item:
                    continue
            cleaned.append(item)
        return cleaned
    return value
