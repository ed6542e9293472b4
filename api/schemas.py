from typing import Optional
from pydantic import BaseModel, field_validator


def _http_url(v: str) -> str:
    v = v.strip()
    if not v.startswith(("http://", "https://")):
        raise ValueError("URL must start with http:// or https://")
    return v


class CrawlRequest(BaseModel):
    url: str
    respect_robots: bool = True  # set False only for testing/demo purposes

    @field_validator("url")
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        return _http_url(v)


class DocumentResponse(BaseModel):
    url: str
    cached: bool = False

    # crawl bookkeeping
    crawled: bool = False
    date_crawled: Optional[str] = None
    crawl_duration: Optional[float] = None
    redirects: dict[str, str] = {}

    # default extractors
    base: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    keywords: list[str] = []
    links: list[str] = []
    text: list[str] = []

    # link partitions
    internal_links: list[str] = []
    external_links: list[str] = []

    # the page asked not to be indexed, so it was not cached
    no_index: bool = False

    # set when the page came back empty, e.g. robots.txt refusal
    error: Optional[str] = None


class SiteCrawlRequest(BaseModel):
    url: str
    respect_robots: bool = True
    allow_paths: Optional[list[str]] = None      # fnmatch globs, e.g. "blog/*"
    disallow_paths: Optional[list[str]] = None

    @field_validator("url")
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        return _http_url(v)


class SiteCrawlResponse(BaseModel):
    url: str
    pages_crawled: int
    external_links: list[str] = []


class SearchRequest(BaseModel):
    url: str
    query: str
    respect_robots: bool = True
    case_sensitive: bool = False
    whole_sentence: bool = True
    sentence_limit: int = 80

    @field_validator("url")
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        return _http_url(v)

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be blank")
        return v

    @field_validator("sentence_limit")
    @classmethod
    def sentence_limit_even(cls, v: int) -> int:
        if v < 0 or v % 2:
            raise ValueError("sentence_limit must be a non-negative even number")
        return v


class SearchResponse(BaseModel):
    url: str
    query: str
    results: list[str] = []


class HealthResponse(BaseModel):
    status: str
    cache: str  # "connected" or "unavailable"


class ErrorResponse(BaseModel):
    detail: str
    code: str
