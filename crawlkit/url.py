import logging
from datetime import datetime, timezone
from typing import Optional, Union
from urllib.parse import urlsplit, urlunsplit

from .errors import InvalidUrlError, RelativeUrlError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")


class Url:
    """
    A web address plus the bookkeeping a crawl attaches to it.

    Either absolute ("http://example.com/about") or relative ("about.html",
    "/contact", "?page=2", "#top"). Equality and hashing use the raw string,
    so a Url can be looked up in sets/dicts of plain strings too.

    Crawl metadata (crawled, date_crawled, crawl_duration, redirects) is not
    part of equality and is mutated by the engine as it fetches.
    """

    def __init__(
        self,
        url: Union[str, "Url"],
        crawled: bool = False,
        date_crawled: Optional[datetime] = None,
        crawl_duration: Optional[float] = None,
        redirects: Optional[dict] = None,
    ):
        if isinstance(url, Url):
            url = url._url
        if not isinstance(url, str):
            raise InvalidUrlError(f"Url must be built from a string, not {type(url).__name__}")

        url = url.strip()
        if not url:
            raise InvalidUrlError("Url cannot be empty")

        try:
            parts = urlsplit(url)
            parts.port  # raises on a non-numeric port
        except ValueError as exc:
            raise InvalidUrlError(f"Invalid url {url!r}: {exc}") from exc

        scheme = parts.scheme.lower()
        if scheme and scheme not in ALLOWED_SCHEMES:
            raise InvalidUrlError(f"Unsupported scheme {scheme!r} in {url!r}")
        if scheme and not parts.hostname:
            raise InvalidUrlError(f"Absolute url has no host: {url!r}")

        self._url = url
        self._parts = parts

        self.crawled = crawled
        self.date_crawled = date_crawled
        self.crawl_duration = crawl_duration
        self.redirects: dict = dict(redirects or {})

    # --- construction ---

    @classmethod
    def parse(cls, obj: Union[str, "Url"]) -> "Url":
        """Return obj as is if it's already a Url (keeping its state), else build one."""
        if isinstance(obj, Url):
            return obj
        return cls(obj)

    @classmethod
    def parse_or_none(cls, obj) -> Optional["Url"]:
        try:
            return cls.parse(obj)
        except InvalidUrlError:
            return None

    @classmethod
    def from_dict(cls, record: dict) -> "Url":
        date_crawled = record.get("date_crawled")
        if isinstance(date_crawled, str):
            date_crawled = datetime.fromisoformat(date_crawled)
        redirects = {
            cls(src): cls(dst) for src, dst in (record.get("redirects") or {}).items()
        }
        return cls(
            record["url"],
            crawled=bool(record.get("crawled", False)),
            date_crawled=date_crawled,
            crawl_duration=record.get("crawl_duration"),
            redirects=redirects,
        )

    def to_dict(self) -> dict:
        return {
            "url": self._url,
            "crawled": self.crawled,
            "date_crawled": self.date_crawled.isoformat() if self.date_crawled else None,
            "crawl_duration": self.crawl_duration,
            "redirects": {str(src): str(dst) for src, dst in self.redirects.items()},
        }

    # --- value semantics ---

    def __str__(self) -> str:
        return self._url

    def __repr__(self) -> str:
        return f"Url({self._url!r})"

    def __eq__(self, other) -> bool:
        if isinstance(other, Url):
            return self._url == other._url
        if isinstance(other, str):
            return self._url == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._url)

    # --- crawl bookkeeping ---

    def mark_crawled(self, success: bool = True, duration: Optional[float] = None) -> None:
        """Record a fetch attempt. Failed attempts count as crawled too."""
        self.crawled = True
        self.date_crawled = datetime.now(timezone.utc)
        self.crawl_duration = duration
        logger.debug("Marked %s crawled (success=%s, %.3fs)", self._url, success, duration or 0.0)

    def final_url(self) -> "Url":
        """The last redirect target, or self when there were no redirects."""
        if not self.redirects:
            return self
        return list(self.redirects.values())[-1]

    # --- classification ---

    def is_absolute(self) -> bool:
        return bool(self._parts.hostname)

    def is_relative(self, base: Union[str, "Url", None] = None) -> bool:
        """
        True if this Url has no host. When base is given, a Url on the same
        host as base also counts as relative (scheme is ignored), which is how
        a page's own absolute links are recognised as internal.
        """
        if base is not None:
            base = Url.parse(base)
            if not base.is_absolute():
                raise RelativeUrlError(f"base must be absolute to compare hosts: {base}")

        if not self._parts.hostname:
            return True
        return base is not None and self._parts.hostname == base._parts.hostname

    def is_query(self) -> bool:
        return self._url.startswith("?")

    def is_fragment(self) -> bool:
        return self._url.startswith("#")

    # --- derivation helpers ---

    def _require_absolute(self, what: str) -> None:
        if not self.is_absolute():
            raise RelativeUrlError(f"Cannot take the {what} of a relative url: {self._url}")

    def _host_port(self) -> str:
        host = self._parts.hostname
        port = self._parts.port
        return f"{host}:{port}" if port else host

    def to_scheme(self) -> Optional[str]:
        return self._parts.scheme.lower() or None

    def to_host(self) -> "Url":
        self._require_absolute("host")
        return Url(self._parts.hostname)

    def to_base(self) -> "Url":
        """scheme://host[:port] e.g. http://www.example.com"""
        self._require_absolute("base")
        scheme = self.to_scheme()
        prefix = f"{scheme}://" if scheme else "//"
        return Url(prefix + self._host_port())

    def to_path(self) -> Optional["Url"]:
        """The path without leading/trailing slashes, "/" for the root, None if absent."""
        path = self._parts.path
        if not path:
            return None
        if path == "/":
            return Url("/")
        stripped = path.strip("/")
        return Url(stripped) if stripped else Url("/")

    def to_endpoint(self) -> "Url":
        """The path with its slashes, "/" when there is no path."""
        path = self._parts.path
        if not path.startswith("/"):
            path = "/" + path
        return Url(path)

    def to_query(self) -> Optional[str]:
        return self._parts.query or None

    def to_fragment(self) -> Optional[str]:
        return self._parts.fragment or None

    def to_extension(self) -> Optional[str]:
        path = self.to_path()
        if path is None:
            return None
        last_segment = str(path).rsplit("/", 1)[-1]
        if "." not in last_segment:
            return None
        return last_segment.rsplit(".", 1)[-1] or None

    def without_leading_slash(self) -> str:
        return self._url[1:] if self._url.startswith("/") else self._url

    def without_trailing_slash(self) -> str:
        return self._url[:-1] if self._url.endswith("/") else self._url

    def without_slashes(self) -> str:
        return self._url.strip("/")

    def without_anchor(self) -> str:
        """Everything before the '#'. A pure fragment ("#top") becomes ""."""
        return self._url.split("#", 1)[0]

    def without_query(self) -> str:
        head, sep, fragment = self._url.partition("#")
        return head.split("?", 1)[0] + sep + fragment

    def without_base(self) -> "Url":
        """
        The part after scheme://host with surrounding slashes removed, e.g.
        http://example.com/blog/post/ -> blog/post. The root becomes "/".
        """
        if self.is_absolute():
            p = self._parts
            remainder = urlunsplit(("", "", p.path, p.query, p.fragment))
        else:
            remainder = self._url
        remainder = remainder.strip("/")
        return Url(remainder) if remainder else Url("/")

    def concat(self, link: Union[str, "Url"]) -> "Url":
        """
        Join self and a relative link with exactly one slash between them.
        Query ("?q=1") and fragment ("#top") links are appended without one.
        """
        link = Url.parse(link)
        if link.is_absolute():
            raise InvalidUrlError(f"Only a relative link can be concatenated, got {link}")

        path = link.without_leading_slash()
        separator = "" if path.startswith(("?", "#")) else "/"
        return Url(self.without_trailing_slash() + separator + path)

    def prefix_base(self, base: Union[str, "Url"]) -> "Url":
        """Self in absolute form, using base when self is relative."""
        if self.is_absolute():
            return self
        return Url.parse(base).concat(self)
