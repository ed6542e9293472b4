import logging
import time
from fnmatch import fnmatch
from typing import Callable, Iterable, Optional, Union

from .document import Document
from .errors import FetchError, HttpStatusError, RelativeUrlError, RobotsDisallowedError
from .extractor import DEFAULT_LINK_XPATH, ExtractorRegistry
from .fetcher import DEFAULT_TIMEOUT, RobotsGate, RobotsTxtGate, Transport
from .models import CrawlState, Response
from .resolver import DEFAULT_REDIRECT_LIMIT, Resolver
from .url import Url

logger = logging.getLogger(__name__)

# link extensions crawl_site is willing to follow; "" is an extensionless path
FOLLOWED_EXTENSIONS = ("", "htm", "html")

DocumentObserver = Callable[[Document], None]


class CrawlEngine:
    """
    Fetches pages into Documents: one Url, a list of Urls, or a whole site.

    Network conditions never raise out of the engine: a failed fetch gives an
    empty Document whose .error says what went wrong. Malformed input (bad
    Urls, bad arguments) still raises.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        registry: Optional[ExtractorRegistry] = None,
        robots: Optional[RobotsGate] = None,
        redirect_limit: int = DEFAULT_REDIRECT_LIMIT,
        timeout: float = DEFAULT_TIMEOUT,
        resolver: Optional[Resolver] = None,
    ):
        self.resolver = resolver or Resolver(transport, redirect_limit=redirect_limit, timeout=timeout)
        self.registry = registry
        self.robots = robots
        self.last_response: Optional[Response] = None

    # --- single page ---

    def crawl_url(
        self,
        url: Union[Url, str],
        follow_external_redirects: bool = True,
        domain: Union[str, Url, None] = None,
        observer: Optional[DocumentObserver] = None,
    ) -> Document:
        url = Url.parse(url)
        if not url.is_absolute():
            raise RelativeUrlError(f"Only absolute urls can be crawled, got {url}")

        if self.robots is not None and not self.robots.is_allowed(url):
            logger.info("robots.txt disallows %s, skipping", url)
            doc = self._empty(url, RobotsDisallowedError(f"robots.txt disallows crawling {url}", url=str(url)))
            return self._notify(doc, observer)

        start = time.perf_counter()
        try:
            response = self.resolver.resolve(
                url,
                follow_external_redirects=follow_external_redirects,
                domain=domain,
            )
        except FetchError as exc:
            url.mark_crawled(success=False, duration=time.perf_counter() - start)
            logger.warning("Fetch failed for %s: %s", url, exc)
            return self._notify(self._empty(url, exc), observer)

        self.last_response = response
        url.mark_crawled(success=response.is_success(), duration=response.total_time)

        if response.is_not_found():
            logger.info("Page not found: %s", url)
        elif not response.is_success():
            logger.warning("Non-2xx response for %s: %d", url, response.status)
        if not response.is_success():
            error = HttpStatusError(f"{url} responded with {response.status}", url=str(url), status=response.status)
            return self._notify(self._empty(url, error), observer)

        if not response.is_html():
            # nothing to extract, but not a failure either
            logger.debug("Skipping non-HTML content at %s (%s)", url, response.content_type)
            return self._notify(self._empty(url), observer)

        logger.debug("Crawled %s in %.3fs", url, response.total_time)
        doc = Document(url, response.body, registry=self.registry, no_index=response.is_no_index())
        return self._notify(doc, observer)

    def crawl_urls(
        self,
        urls: Iterable[Union[Url, str]],
        follow_external_redirects: bool = True,
        domain: Union[str, Url, None] = None,
        observer: Optional[DocumentObserver] = None,
    ) -> Document:
        """Crawl each url in turn; returns the last Document. Use observer to see them all."""
        urls = list(urls)
        if not urls:
            raise ValueError("At least one url is required")

        doc = None
        for url in urls:
            doc = self.crawl_url(
                url,
                follow_external_redirects=follow_external_redirects,
                domain=domain,
                observer=observer,
            )
        return doc

    # --- whole site ---

    def crawl_site(
        self,
        base_url: Union[Url, str],
        follow: str = DEFAULT_LINK_XPATH,
        allow_paths: Union[str, list, None] = None,
        disallow_paths: Union[str, list, None] = None,
        observer: Optional[DocumentObserver] = None,
    ) -> Optional[list[Url]]:
        """
        Crawl every reachable page of base_url's site, once each.

        Internal links are followed breadth first; external links are collected
        and returned (deduplicated, in discovery order). Returns None when the
        seed page can't be crawled at all.

        allow_paths/disallow_paths are fnmatch globs over the link path, e.g.
        "blog/*". Only pages whose links have no extension or an htm/html one
        are followed.
        """
        base_url = Url.parse(base_url)
        if not base_url.is_absolute():
            raise ValueError(f"crawl_site needs an absolute url, got {base_url}")

        doc = self.crawl_url(base_url, observer=observer)
        if doc.is_empty():
            logger.info("Seed %s could not be crawled, aborting site crawl", base_url)
            return None

        # the seed may have been redirected (http -> https, www...), the final
        # host is the site from here on
        site = base_url.final_url()
        host = site.to_host()
        base = site.to_base()

        state = CrawlState()
        state.visited.add(_path_key(base_url))
        state.visited.add(_path_key(site))
        state.frontier.extend(self._internal_links(doc, follow))
        state.external.extend(self._external_links(doc, follow))

        if not state.frontier:
            return state.unique_external()

        while True:
            links = state.pending()
            if not links:
                break

            for link in links:
                state.visited.add(str(link))
                if not _path_allowed(link, allow_paths, disallow_paths):
                    logger.debug("Skipping %s, filtered by path rules", link)
                    continue

                url = base.concat(link)
                doc = self.crawl_url(url, follow_external_redirects=False, domain=host, observer=observer)
                state.visited.add(_path_key(url.final_url()))

                if doc.is_empty():
                    continue
                state.frontier.extend(self._internal_links(doc, follow))
                state.external.extend(self._external_links(doc, follow))

        logger.info("Site crawl of %s finished, %d paths visited", base_url, len(state.visited))
        return state.unique_external()

    # --- helpers ---

    def _empty(self, url: Url, error=None) -> Document:
        return Document(url, "", registry=self.registry, error=error)

    @staticmethod
    def _notify(doc: Document, observer: Optional[DocumentObserver]) -> Document:
        if observer is not None:
            observer(doc)
        return doc

    @staticmethod
    def _links(doc: Document, follow: str) -> tuple[list, list]:
        if follow == DEFAULT_LINK_XPATH:
            return doc.internal_links, doc.external_links
        return doc.extract_links(follow)

    def _internal_links(self, doc: Document, follow: str) -> list[Url]:
        links = []
        for link in self._links(doc, follow)[0]:
            link = Url.parse_or_none(link.without_anchor())
            if link is None:
                continue
            if (link.to_extension() or "").lower() not in FOLLOWED_EXTENSIONS:
                continue
            links.append(link.without_base())
        return links

    def _external_links(self, doc: Document, follow: str) -> list[Url]:
        return self._links(doc, follow)[1]


def _path_key(url: Url) -> str:
    return str(url.without_base())


def _as_list(patterns: Union[str, list, None]) -> list:
    if patterns is None:
        return []
    if isinstance(patterns, str):
        return [patterns]
    return list(patterns)


def _path_allowed(link: Url, allow_paths, disallow_paths) -> bool:
    path = link.without_query().strip("/") or "/"
    allow = _as_list(allow_paths)
    if allow and not any(fnmatch(path, pattern) for pattern in allow):
        return False
    return not any(fnmatch(path, pattern) for pattern in _as_list(disallow_paths))


# --- module-level conveniences, used by the API ---

def crawl(url: Union[Url, str], respect_robots: bool = True, engine: Optional[CrawlEngine] = None) -> Document:
    """Crawl a single page with a default engine. Never raises for network errors."""
    engine = engine or CrawlEngine(robots=RobotsTxtGate() if respect_robots else None)
    return engine.crawl_url(url)


def crawl_site(url: Union[Url, str], respect_robots: bool = True, **kwargs) -> Optional[list[Url]]:
    engine = CrawlEngine(robots=RobotsTxtGate() if respect_robots else None)
    return engine.crawl_site(url, **kwargs)
