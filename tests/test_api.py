import pytest
from unittest.mock import patch, MagicMock
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.main import app
from api.middleware import RateLimitMiddleware
from crawlkit.document import Document
from crawlkit.errors import FetchError, RelativeUrlError, RobotsDisallowedError
from crawlkit.url import Url

client = TestClient(app)

ARTICLE_HTML = """
<html>
<head>
    <title>Example Article Title</title>
    <meta name="description" content="An example article about web crawling.">
</head>
<body>
    <h1>Example Article Title</h1>
    <p>This is the body text of the article about web crawling.</p>
    <p>Crawling the web one page at a time.</p>
    <a href="/about">About</a>
    <a href="https://other.com/">Other</a>
</body>
</html>
"""


def _article():
    url = Url("https://example.com/article")
    url.mark_crawled(duration=0.2)
    return Document(url, ARTICLE_HTML)


# --- /health ---

def test_health_returns_ok():
    with patch("api.routes.is_cache_healthy", return_value=True):
        response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["cache"] == "connected"


def test_health_when_cache_down():
    with patch("api.routes.is_cache_healthy", return_value=False):
        response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["cache"] == "unavailable"


# --- /crawl ---

def test_crawl_success():
    with patch("api.routes.get_cached", return_value=None), \
         patch("api.routes.set_cached"), \
         patch("api.routes.crawl", return_value=_article()):
        response = client.post("/crawl", json={"url": "https://example.com/article"})

    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "Example Article Title"
    assert data["crawled"] is True
    assert "Crawling the web one page at a time." in data["text"]
    assert data["internal_links"] == ["about"]
    assert data["external_links"] == ["https://other.com"]
    assert data["cached"] is False


def test_crawl_returns_cached_result():
    doc = _article()
    cached_record = {**doc.to_dict(), "url": doc.url.to_dict()}
    with patch("api.routes.get_cached", return_value=cached_record), \
         patch("api.routes.crawl") as mock_crawl:
        response = client.post("/crawl", json={"url": "https://example.com/article"})

    assert response.status_code == 200
    data = response.json()
    assert data["cached"] is True
    assert data["title"] == "Example Article Title"
    assert data["crawl_duration"] == 0.2
    mock_crawl.assert_not_called()


def test_crawl_invalid_url_rejected():
    response = client.post("/crawl", json={"url": "not-a-url"})
    assert response.status_code == 422


def test_crawl_missing_url_rejected():
    response = client.post("/crawl", json={})
    assert response.status_code == 422


def test_crawl_network_failure_returns_502():
    failed = Document("https://dead.example.com", "", error=FetchError("Connection timeout"))
    with patch("api.routes.get_cached", return_value=None), \
         patch("api.routes.crawl", return_value=failed):
        response = client.post("/crawl", json={"url": "https://dead.example.com"})

    assert response.status_code == 502
    assert "Failed to reach URL" in response.json()["detail"]
    assert response.json()["code"] == "http_502"


def test_crawl_robots_block_returns_result_with_error():
    # robots.txt blocks are an answer, not a 502
    blocked = Document(
        "https://blocked.example.com/page",
        "",
        error=RobotsDisallowedError("robots.txt disallows crawling https://blocked.example.com/page"),
    )
    with patch("api.routes.get_cached", return_value=None), \
         patch("api.routes.set_cached") as mock_set, \
         patch("api.routes.crawl", return_value=blocked):
        response = client.post("/crawl", json={"url": "https://blocked.example.com/page"})

    assert response.status_code == 200
    data = response.json()
    assert data["crawled"] is False
    assert "robots" in data["error"].lower()
    mock_set.assert_not_called()


def test_crawl_respect_robots_false_passes_through():
    with patch("api.routes.get_cached", return_value=None), \
         patch("api.routes.set_cached"), \
         patch("api.routes.crawl", return_value=_article()) as mock_crawl:
        client.post("/crawl", json={"url": "https://example.com/article", "respect_robots": False})

    mock_crawl.assert_called_once_with("https://example.com/article", respect_robots=False)


def test_successful_crawl_is_cached():
    with patch("api.routes.get_cached", return_value=None), \
         patch("api.routes.set_cached") as mock_set, \
         patch("api.routes.crawl", return_value=_article()):
        client.post("/crawl", json={"url": "https://example.com/article"})

    mock_set.assert_called_once()
    url, record = mock_set.call_args.args
    assert url == "https://example.com/article"
    assert record["url"]["crawled"] is True
    assert "html" not in record


def test_noindex_page_returned_but_not_cached():
    html = ARTICLE_HTML.replace("<head>", '<head><meta name="robots" content="noindex">')
    with patch("api.routes.get_cached", return_value=None), \
         patch("api.routes.set_cached") as mock_set, \
         patch("api.routes.crawl", return_value=Document("https://example.com/private", html)):
        response = client.post("/crawl", json={"url": "https://example.com/private"})

    assert response.status_code == 200
    data = response.json()
    assert data["no_index"] is True
    assert data["title"] == "Example Article Title"
    mock_set.assert_not_called()


def test_crawl_error_returns_400_with_code():
    with patch("api.routes.get_cached", return_value=None), \
         patch("api.routes.crawl", side_effect=RelativeUrlError("Only absolute urls can be crawled")):
        response = client.post("/crawl", json={"url": "https://example.com/article"})

    assert response.status_code == 400
    assert response.json() == {
        "detail": "Only absolute urls can be crawled",
        "code": "RelativeUrlError",
    }


def test_error_schema_documented():
    schema = client.get("/openapi.json").json()
    responses = schema["paths"]["/crawl"]["post"]["responses"]

    assert "ErrorResponse" in schema["components"]["schemas"]
    assert responses["502"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")


# --- /crawl/site ---

def test_crawl_site_reports_pages_and_externals():
    def fake_crawl_site(url, respect_robots, allow_paths, disallow_paths, observer):
        observer(_article())
        observer(Document("https://example.com/gone", "", error=FetchError("timeout")))
        return [Url("https://other.com")]

    with patch("api.routes.crawl_site", side_effect=fake_crawl_site) as mock_site:
        response = client.post("/crawl/site", json={"url": "https://example.com", "disallow_paths": ["private/*"]})

    assert response.status_code == 200
    assert response.json() == {
        "url": "https://example.com",
        "pages_crawled": 1,
        "external_links": ["https://other.com"],
    }
    assert mock_site.call_args.kwargs["disallow_paths"] == ["private/*"]


def test_crawl_site_unreachable_seed_returns_502():
    with patch("api.routes.crawl_site", return_value=None):
        response = client.post("/crawl/site", json={"url": "https://dead.example.com"})
    assert response.status_code == 502


# --- /search ---

def test_search_page():
    with patch("api.routes.get_cached", return_value=None), \
         patch("api.routes.crawl", return_value=_article()):
        response = client.post("/search", json={"url": "https://example.com/article", "query": "crawling"})

    assert response.status_code == 200
    assert response.json()["results"] == [
        "This is the body text of the article about web crawling.",
        "Crawling the web one page at a time.",
    ]


def test_search_odd_sentence_limit_rejected():
    response = client.post(
        "/search", json={"url": "https://example.com/article", "query": "crawling", "sentence_limit": 5}
    )
    assert response.status_code == 422


# --- middleware ---

def test_rate_limit_returns_429():
    limited = FastAPI()
    limited.add_middleware(RateLimitMiddleware, requests_per_window=2, window_seconds=60)

    @limited.get("/ping")
    def ping():
        return {"ok": True}

    limited_client = TestClient(limited)
    assert limited_client.get("/ping").status_code == 200
    assert limited_client.get("/ping").status_code == 200

    response = limited_client.get("/ping")
    assert response.status_code == 429
    assert response.json()["code"] == "rate_limit_exceeded"
    assert int(response.headers["Retry-After"]) > 0
