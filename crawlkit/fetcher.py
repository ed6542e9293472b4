import logging
import os
import threading
import time
from typing import Optional, Protocol
from urllib.robotparser import RobotFileParser

import requests

from .errors import FetchError
from .models import Response
from .url import Url

logger = logging.getLogger(__name__)

# realistic browser UA, avoids most trivial bot blocks
USER_AGENT = os.getenv(
    "CRAWLER_USER_AGENT",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
)

DEFAULT_TIMEOUT = float(os.getenv("CRAWLER_TIMEOUT", "15"))  # seconds
MAX_CONTENT_BYTES = int(os.getenv("CRAWLER_MAX_CONTENT_BYTES", str(5 * 1024 * 1024)))  # runaway page ceiling

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Connection": "keep-alive",
}


class Transport(Protocol):
    def get(self, url: Url, timeout: float) -> Response:
        ...


class RobotsGate(Protocol):
    def is_allowed(self, url: Url) -> bool:
        ...


class RequestsTransport:
    """
    One HTTP GET per call, redirects NOT followed. The Resolver owns the
    redirect policy and needs to see every 3xx.
    """

    def __init__(self, session: Optional[requests.Session] = None, headers: Optional[dict] = None):
        self.session = session or requests.Session()
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}

    def get(self, url: Url, timeout: float = DEFAULT_TIMEOUT) -> Response:
        start = time.perf_counter()
        try:
            resp = self.session.get(str(url), headers=self.headers, timeout=timeout, allow_redirects=False)
            body = resp.text[:MAX_CONTENT_BYTES]
        except requests.RequestException as exc:
            raise FetchError(f"GET {url} failed: {exc}", url=str(url)) from exc

        return Response(
            url=url,
            status=resp.status_code,
            headers=resp.headers,
            body=body,
            total_time=time.perf_counter() - start,
        )


def _robots_url(url: Url) -> str:
    return f"{url.to_base()}/robots.txt"


class RobotsTxtGate:
    """robots.txt check, one parsed file cached per scheme+host."""

    def __init__(
        self,
        user_agent: str = "*",
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self.timeout = timeout
        self._parsers: dict[str, Optional[RobotFileParser]] = {}
        self._lock = threading.Lock()

    def _parser_for(self, url: Url) -> Optional[RobotFileParser]:
        key = str(url.to_base())
        with self._lock:
            if key in self._parsers:
                return self._parsers[key]

        robots_url = _robots_url(url)
        rp = RobotFileParser(robots_url)
        try:
            resp = self.session.get(robots_url, headers=DEFAULT_HEADERS, timeout=self.timeout)
        except requests.RequestException as exc:
            # if robots.txt is unreachable, assume allowed
            logger.debug("robots.txt unreachable for %s: %s", key, exc)
            rp = None
        else:
            if resp.status_code in (401, 403):
                rp.disallow_all = True
            elif 400 <= resp.status_code < 500:
                rp.allow_all = True
            elif resp.status_code >= 500:
                logger.debug("robots.txt for %s answered %d, assuming allowed", key, resp.status_code)
                rp = None
            else:
                rp.parse(resp.text.splitlines())

        with self._lock:
            self._parsers[key] = rp
        return rp

    def is_allowed(self, url: Url) -> bool:
        if not url.is_absolute():
            return True
        rp = self._parser_for(url)
        if rp is None:
            return True
        return rp.can_fetch(self.user_agent, str(url))
