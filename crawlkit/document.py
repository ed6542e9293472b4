import logging
import re
from functools import cached_property
from typing import Any, Mapping, Optional, Union

import lxml.html
from bs4 import BeautifulSoup

from .errors import CrawlError, RelativeUrlError
from .extractor import ExtractorRegistry, default_registry
from .models import DocumentSource, HtmlSource, StoredSource
from .parser import parse_html, parse_soup
from .url import Url

logger = logging.getLogger(__name__)

DEFAULT_SENTENCE_LIMIT = 80


def build_search_regex(query: str, case_sensitive: bool = False, whole_sentence: bool = True) -> re.Pattern:
    """
    whole_sentence=True matches the query literally; False matches any of
    its words, each on word boundaries.
    """
    if not query or not query.strip():
        raise ValueError("A search query must be provided")

    if whole_sentence:
        pattern = re.escape(query.strip())
    else:
        pattern = "|".join(rf"\b{re.escape(word)}\b" for word in query.split())
    return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)


def format_sentence_length(sentence: str, index: int, sentence_limit: int) -> str:
    """
    Cut sentence down to sentence_limit characters, keeping the character at
    index in view (centred where possible). 0 means no limit.
    """
    if not sentence:
        raise ValueError("A sentence value must be provided")
    if sentence_limit % 2:
        raise ValueError("The sentence_limit value must be even")
    if index < 0 or index > len(sentence):
        raise ValueError(f"Incorrect index value: {index}")

    if sentence_limit == 0 or len(sentence) <= sentence_limit:
        return sentence

    half = sentence_limit // 2
    start = index - half
    finish = index + half

    if start < 0:
        finish = min(finish - start, len(sentence))
        start = 0
    elif finish > len(sentence):
        start = max(start - (finish - len(sentence)), 0)
        finish = len(sentence)

    return sentence[start:finish]


class Document:
    """
    A crawled (or stored) web page and the fields extracted from it.

    Build from a fetched page with Document(url, html), or from a stored
    field map with Document.from_record(record). Every extractor registered
    in the registry becomes a field, readable as doc.<name>, doc[name] or
    doc.get(name). An empty Document (blank HTML) still carries its Url so
    the crawl bookkeeping on it can be inspected; doc.error says why it is
    empty when the engine produced it. The Url must be absolute, links are
    partitioned against its host.
    """

    def __init__(
        self,
        url: Union[Url, str, DocumentSource],
        html: Optional[str] = "",
        registry: Optional[ExtractorRegistry] = None,
        error: Optional[CrawlError] = None,
        no_index: bool = False,
    ):
        if isinstance(url, (HtmlSource, StoredSource)):
            source = url
        else:
            source = HtmlSource(Url.parse(url), html or "")

        self.registry = registry or default_registry
        self.source = source
        self.error = error

        if isinstance(source, StoredSource):
            record = source.record
            url = record["url"]
            # the Url may have been stored with its crawl bookkeeping
            self.url = Url.from_dict(url) if isinstance(url, Mapping) else Url.parse(url)
            self.html = record.get("html") or ""
            self.score = float(record.get("score") or 0.0)
            no_index = no_index or bool(record.get("no_index"))
        else:
            self.url = source.url
            self.html = source.html
            self.score = 0.0

        if not self.url.is_absolute():
            raise RelativeUrlError(f"A Document needs an absolute url, got {self.url}")
        self.no_index = no_index

        self._fields = self.registry.run_all(self)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], registry: Optional[ExtractorRegistry] = None) -> "Document":
        if "url" not in record:
            raise ValueError("A stored Document record needs a 'url' key")
        return cls(StoredSource(dict(record)), registry=registry)

    # --- field access ---

    @property
    def source_kind(self) -> str:
        return "stored" if isinstance(self.source, StoredSource) else "html"

    @property
    def fields(self) -> dict[str, Any]:
        # fields of extractors removed since construction are hidden, like their accessors
        return {name: value for name, value in self._fields.items() if name in self.registry}

    def __getattr__(self, name: str) -> Any:
        # only reached for names that aren't real attributes
        fields = self.__dict__.get("_fields")
        registry = self.__dict__.get("registry")
        if fields is not None and name in fields and registry is not None and name in registry:
            return fields[name]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __getitem__(self, name: str) -> Any:
        if name not in self._fields or name not in self.registry:
            raise KeyError(name)
        return self._fields[name]

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self[name]
        except KeyError:
            return default

    # --- parsed trees, built on first use ---

    @cached_property
    def tree(self) -> lxml.html.HtmlElement:
        return parse_html(self.html)

    @cached_property
    def soup(self) -> BeautifulSoup:
        return parse_soup(self.html)

    def xpath(self, expr: str) -> list:
        return self.tree.xpath(expr)

    # --- state ---

    def is_empty(self) -> bool:
        if self.html.strip():
            return False
        if isinstance(self.source, HtmlSource):
            return True
        # stored record: usable if any extracted field carries content
        return not any(value for value in self._fields.values())

    def is_no_index(self) -> bool:
        """True if the server (X-Robots-Tag) or the page (<meta name="robots">) asks not to be indexed."""
        if self.no_index:
            return True
        if not self.html.strip():
            return False
        directives = ",".join(str(c) for c in self.xpath('//meta[@name="robots" or @name="ROBOTS"]/@content'))
        return "noindex" in directives.lower().replace(" ", "")

    def __eq__(self, other) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self.url == other.url and self.html == other.html

    __hash__ = None

    def __repr__(self) -> str:
        return f"<Document url={str(self.url)!r} source={self.source_kind} empty={self.is_empty()}>"

    # --- links ---

    def base_url(self) -> Url:
        """
        The Url relative links resolve against: the page's <base href> when it
        has one (made absolute against the page if needed), else the page's
        own base, following any redirect it went through.
        """
        page_base = self.url.final_url().to_base()
        base = self._fields.get("base")
        if isinstance(base, Url):
            return base if base.is_absolute() else page_base.concat(base)
        return page_base

    def _partition(self, links: list) -> tuple[list, list]:
        own = self.url.final_url()
        internal, external = [], []
        for link in links:
            if link.is_relative(base=own):
                internal.append(link.without_base())
            else:
                external.append(Url(link.without_trailing_slash()))
        return list(dict.fromkeys(internal)), list(dict.fromkeys(external))

    @property
    def internal_links(self) -> list[Url]:
        """Links to pages on this Document's host, in relative form, e.g. "about"."""
        return self._partition(self._fields.get("links") or [])[0]

    @property
    def external_links(self) -> list[Url]:
        """Links to other hosts, absolute, trailing slash removed."""
        return self._partition(self._fields.get("links") or [])[1]

    @property
    def internal_absolute_links(self) -> list[Url]:
        base = self.base_url()
        return [base.concat(link) for link in self.internal_links]

    def extract_links(self, xpath: str) -> tuple[list, list]:
        """(internal, external) links for an arbitrary link selector, e.g. "//nav//a/@href"."""
        hrefs = (str(r).strip() for r in self.xpath(xpath))
        links = [url for url in map(Url.parse_or_none, hrefs) if url is not None]
        return self._partition(links)

    # --- text search ---

    def search(
        self,
        query: str,
        case_sensitive: bool = False,
        whole_sentence: bool = True,
        sentence_limit: int = DEFAULT_SENTENCE_LIMIT,
    ) -> list[str]:
        """
        Search this page's text sentences for query.

        Each matching sentence is cut to sentence_limit characters around its
        first hit. Results are ordered by number of hits, most first; equal
        counts keep their order on the page.
        """
        if sentence_limit % 2:
            raise ValueError("The sentence_limit value must be even")
        regex = build_search_regex(query, case_sensitive=case_sensitive, whole_sentence=whole_sentence)

        hits = []
        for sentence in self._fields.get("text") or []:
            sentence = sentence.strip()
            matches = list(regex.finditer(sentence))
            if not matches:
                continue
            snippet = format_sentence_length(sentence, matches[0].start(), sentence_limit)
            hits.append((len(matches), snippet))

        # sorted() is stable, which keeps page order for ties
        return [snippet for _, snippet in sorted(hits, key=lambda hit: -hit[0])]

    def search_inplace(self, query: str, **kwargs) -> list[str]:
        """Replace this Document's text with search(query) results; returns the old text."""
        original = self._fields.get("text") or []
        self._fields["text"] = self.search(query, **kwargs)
        return original

    # --- serialisation ---

    def to_dict(self, include_html: bool = False) -> dict[str, Any]:
        """Field map for storage: url first, Url values as strings, nodes as HTML."""
        data: dict[str, Any] = {"url": str(self.url)}
        for name, value in self.fields.items():
            data[name] = _serialise(value)
        if self.score:
            data["score"] = self.score
        if self.no_index:
            data["no_index"] = True
        if include_html:
            data["html"] = self.html
        return data

    def stats(self) -> dict[str, int]:
        """Sizes of the html and of every field, plus text snippet/byte counts."""
        stats = {"url": len(str(self.url)), "html": len(self.html)}
        for name, value in self.fields.items():
            if name == "text":
                stats["text_snippets"] = len(value or [])
                stats["text_bytes"] = sum(len(t) for t in value or [])
            elif hasattr(value, "__len__"):
                stats[name] = len(value)
        return stats


def _serialise(value: Any) -> Any:
    if isinstance(value, Url):
        return str(value)
    if isinstance(value, lxml.html.HtmlElement):
        return lxml.html.tostring(value, encoding="unicode")
    if isinstance(value, list):
        return [_serialise(v) for v in value]
    return value
