import logging

from fastapi import APIRouter, HTTPException
from starlette.concurrency import run_in_threadpool

from crawlkit.core import crawl, crawl_site
from crawlkit.document import Document
from crawlkit.errors import FetchError
from .cache import get_cached, set_cached, is_cache_healthy
from .schemas import (
    CrawlRequest,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    SearchRequest,
    SearchResponse,
    SiteCrawlRequest,
    SiteCrawlResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Malformed url or selector"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    502: {"model": ErrorResponse, "description": "The target could not be reached"},
}


def _to_response(doc: Document, cached: bool = False) -> DocumentResponse:
    fields = doc.to_dict()
    bookkeeping = doc.url.to_dict()
    return DocumentResponse(
        url=str(doc.url),
        cached=cached,
        crawled=bookkeeping["crawled"],
        date_crawled=bookkeeping["date_crawled"],
        crawl_duration=bookkeeping["crawl_duration"],
        redirects=bookkeeping["redirects"],
        base=fields.get("base"),
        title=fields.get("title"),
        description=fields.get("description"),
        author=fields.get("author"),
        keywords=fields.get("keywords") or [],
        links=fields.get("links") or [],
        text=fields.get("text") or [],
        internal_links=[str(link) for link in doc.internal_links],
        external_links=[str(link) for link in doc.external_links],
        no_index=doc.is_no_index(),
        error=str(doc.error) if doc.error else None,
    )


def _raise_if_unreachable(doc: Document) -> None:
    # robots refusals and non-HTML pages are answers, fetch failures are not
    if isinstance(doc.error, FetchError):
        raise HTTPException(status_code=502, detail=f"Failed to reach URL: {doc.error}")


@router.post("/crawl", response_model=DocumentResponse, summary="Crawl a URL and extract its fields", responses=ERROR_RESPONSES)
async def crawl_url(request: CrawlRequest) -> DocumentResponse:
    """
    Crawls one page and returns its extracted fields, text sentences and links.

    - Checks Redis cache first; a hit is rebuilt from the stored field map.
    - Respects robots.txt by default (`respect_robots: true`).
    - Set `respect_robots: false` to bypass the robots.txt check (useful for testing).
    """
    url = request.url

    # cache-aside: serve from Redis if we've crawled this URL recently
    cached = get_cached(url)
    if cached:
        logger.info("Cache hit for %s", url)
        return _to_response(Document.from_record(cached), cached=True)

    # the engine blocks on the network, keep it off the event loop
    doc = await run_in_threadpool(crawl, url, respect_robots=request.respect_robots)
    _raise_if_unreachable(doc)

    # only cache real pages, not robots blocks, non-HTML responses or noindex pages
    if not doc.is_empty() and not doc.is_no_index():
        set_cached(url, {**doc.to_dict(), "url": doc.url.to_dict()})

    return _to_response(doc)


@router.post("/crawl/site", response_model=SiteCrawlResponse, summary="Crawl every page of a site", responses=ERROR_RESPONSES)
async def crawl_whole_site(request: SiteCrawlRequest) -> SiteCrawlResponse:
    pages: list[Document] = []

    externals = await run_in_threadpool(
        crawl_site,
        request.url,
        respect_robots=request.respect_robots,
        allow_paths=request.allow_paths,
        disallow_paths=request.disallow_paths,
        observer=pages.append,
    )
    if externals is None:
        raise HTTPException(status_code=502, detail=f"Failed to crawl site: {request.url}")

    return SiteCrawlResponse(
        url=request.url,
        pages_crawled=sum(1 for page in pages if not page.is_empty()),
        external_links=[str(link) for link in externals],
    )


@router.post("/search", response_model=SearchResponse, summary="Search a page's text", responses=ERROR_RESPONSES)
async def search_page(request: SearchRequest) -> SearchResponse:
    cached = get_cached(request.url)
    if cached:
        doc = Document.from_record(cached)
    else:
        doc = await run_in_threadpool(crawl, request.url, respect_robots=request.respect_robots)
        _raise_if_unreachable(doc)

    results = doc.search(
        request.query,
        case_sensitive=request.case_sensitive,
        whole_sentence=request.whole_sentence,
        sentence_limit=request.sentence_limit,
    )
    return SearchResponse(url=request.url, query=request.query, results=results)


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check() -> HealthResponse:
    cache_status = "connected" if is_cache_healthy() else "unavailable"
    return HealthResponse(status="ok", cache=cache_status)
