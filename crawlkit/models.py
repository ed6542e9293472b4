from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from requests.structures import CaseInsensitiveDict

from .url import Url


@dataclass
class Response:
    url: Url                            # the Url requested on the final hop
    status: int

    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: str = ""

    # filled in by the resolver
    total_time: float = 0.0             # seconds, summed over every hop
    redirects: dict = field(default_factory=dict)   # from -> to, as strings

    def __post_init__(self):
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = CaseInsensitiveDict(self.headers or {})
        self.body = self.body or ""

    @property
    def location(self) -> Optional[str]:
        value = self.headers.get("Location")
        return value.strip() if value and value.strip() else None

    @property
    def content_type(self) -> str:
        return (self.headers.get("Content-Type") or "").lower()

    @property
    def redirect_count(self) -> int:
        return len(self.redirects)

    def is_redirect(self) -> bool:
        return 300 <= self.status <= 399

    def is_ok(self) -> bool:
        return self.status == 200

    def is_success(self) -> bool:
        return 200 <= self.status <= 299

    def is_not_found(self) -> bool:
        return self.status == 404

    def is_no_index(self) -> bool:
        directives = (self.headers.get("X-Robots-Tag") or "").lower().split(",")
        return "noindex" in (d.strip() for d in directives)

    def is_html(self) -> bool:
        # servers that send no content type get the benefit of the doubt
        ctype = self.content_type
        return not ctype or "html" in ctype or "xml" in ctype

    def __repr__(self) -> str:
        return f"<Response url={str(self.url)!r} status={self.status}>"


@dataclass(frozen=True)
class HtmlSource:
    """A Document built from a freshly fetched page."""
    url: Url
    html: str


@dataclass(frozen=True)
class StoredSource:
    """A Document rebuilt from a previously stored field map."""
    record: Mapping[str, Any]


DocumentSource = Union[HtmlSource, StoredSource]


@dataclass
class CrawlState:
    """Working set of a single crawl_site call. Never shared between crawls."""
    visited: set = field(default_factory=set)       # link paths already fetched
    frontier: list = field(default_factory=list)    # internal links, in discovery order
    external: list = field(default_factory=list)    # external Urls, in discovery order

    def pending(self) -> list:
        """Deduplicated frontier minus everything already visited."""
        seen = set()
        links = []
        for link in self.frontier:
            if link in self.visited or link in seen:
                continue
            seen.add(link)
            links.append(link)
        return links

    def unique_external(self) -> list:
        return list(dict.fromkeys(self.external))
