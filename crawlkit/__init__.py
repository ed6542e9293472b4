from .core import CrawlEngine, crawl, crawl_site
from .document import Document
from .errors import (
    CrawlError,
    ExternalRedirectError,
    FetchError,
    HttpStatusError,
    InvalidSelectorError,
    InvalidUrlError,
    RobotsDisallowedError,
    TooManyRedirectsError,
)
from .extractor import ExtractorRegistry, SourceKind, default_registry
from .fetcher import RequestsTransport, RobotsTxtGate
from .models import Response
from .resolver import Resolver
from .text import TextExtractor, html_to_text
from .url import Url

__all__ = [
    "CrawlEngine", "crawl", "crawl_site",
    "Document", "Url", "Response", "Resolver",
    "ExtractorRegistry", "SourceKind", "default_registry",
    "TextExtractor", "html_to_text",
    "RequestsTransport", "RobotsTxtGate",
    "CrawlError", "FetchError", "HttpStatusError", "TooManyRedirectsError",
    "ExternalRedirectError", "RobotsDisallowedError", "InvalidUrlError", "InvalidSelectorError",
]
