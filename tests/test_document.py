import pytest

from crawlkit.document import Document, format_sentence_length
from crawlkit.errors import FetchError, RelativeUrlError
from crawlkit.url import Url


EVEREST = "Mount Everest is the highest mountain. Everest is in Nepal. Climbers love Everest."

SEARCH_HTML = f"""
<html>
<head><title>Mountains</title></head>
<body>
    <p>{EVEREST}</p>
    <p>Everest base camp is busy.</p>
    <p>Nothing to see here.</p>
</body>
</html>
"""

LINKS_HTML = """
<html>
<body>
    <nav>
        <a href="/about">About</a>
        <a href="contact.html">Contact</a>
    </nav>
    <a href="http://example.com/team/">Team</a>
    <a href="https://example.com/about">About again</a>
    <a href="http://other.com/">Other</a>
    <a href="http://other.com">Other again</a>
    <a href="#top">Top</a>
    <a href="mailto:someone@example.com">Mail</a>
</body>
</html>
"""


# --- search ---

def test_search_ranks_by_hits():
    doc = Document("http://example.com", SEARCH_HTML)
    results = doc.search("everest")

    assert len(results) == 2
    # the three-hit sentence is longer than the limit and gets cut around the first hit
    assert results[0] == EVEREST[:80]
    assert results[1] == "Everest base camp is busy."


def test_search_case_sensitive():
    doc = Document("http://example.com", SEARCH_HTML)
    assert doc.search("everest", case_sensitive=True) == []
    assert len(doc.search("Everest", case_sensitive=True)) == 2


def test_search_any_word_keeps_page_order_on_ties():
    doc = Document("http://example.com", SEARCH_HTML)
    results = doc.search("base nepal", whole_sentence=False, sentence_limit=0)
    assert results == [EVEREST, "Everest base camp is busy."]


def test_search_whole_sentence_matches_phrase():
    doc = Document("http://example.com", SEARCH_HTML)
    assert doc.search("base camp") == ["Everest base camp is busy."]
    assert doc.search("camp base") == []


def test_search_unlimited_sentence_length():
    doc = Document("http://example.com", SEARCH_HTML)
    assert doc.search("climbers", sentence_limit=0) == [EVEREST]


def test_search_odd_limit_rejected():
    doc = Document("http://example.com", SEARCH_HTML)
    with pytest.raises(ValueError):
        doc.search("everest", sentence_limit=11)


def test_search_blank_query_rejected():
    doc = Document("http://example.com", SEARCH_HTML)
    with pytest.raises(ValueError):
        doc.search("  ")


def test_search_inplace_replaces_text():
    doc = Document("http://example.com", SEARCH_HTML)
    original = doc.search_inplace("base camp")

    assert "Nothing to see here." in original
    assert doc.text == ["Everest base camp is busy."]


# --- sentence truncation ---

def test_format_sentence_length_centres_on_match():
    sentence = "a" * 100 + " Everest " + "b" * 100
    snippet = format_sentence_length(sentence, sentence.index("Everest"), 20)
    assert len(snippet) == 20
    assert "Everest" in snippet


def test_format_sentence_length_near_end():
    sentence = "x" * 50 + "end"
    snippet = format_sentence_length(sentence, 50, 10)
    assert snippet == sentence[-10:]


def test_format_sentence_length_short_sentence_untouched():
    assert format_sentence_length("short", 0, 80) == "short"


# --- links ---

def test_internal_links_relative_and_deduplicated():
    doc = Document("http://example.com/blog/", LINKS_HTML)
    assert doc.internal_links == ["about", "contact.html", "team", "#top"]


def test_external_links_deduplicated_without_trailing_slash():
    doc = Document("http://example.com/blog/", LINKS_HTML)
    assert doc.external_links == ["http://other.com"]


def test_internal_absolute_links():
    doc = Document("http://example.com/blog/", LINKS_HTML)
    absolute = doc.internal_absolute_links
    assert absolute[:3] == [
        "http://example.com/about",
        "http://example.com/contact.html",
        "http://example.com/team",
    ]


def test_base_element_honoured():
    html = '<html><head><base href="/docs/"></head><body><a href="intro">Intro</a></body></html>'
    doc = Document("http://example.com/page", html)

    assert doc.base_url() == "http://example.com/docs/"
    assert doc.internal_absolute_links == ["http://example.com/docs/intro"]


def test_extract_links_with_custom_selector():
    doc = Document("http://example.com/blog/", LINKS_HTML)
    internal, external = doc.extract_links("//nav//a/@href")
    assert internal == ["about", "contact.html"]
    assert external == []


def test_links_partitioned_against_redirect_target():
    doc = Document("http://example.com", '<a href="https://www.example.com/x">X</a>')
    doc.url.redirects["http://example.com"] = Url("https://www.example.com/")
    assert doc.internal_links == ["x"]


# --- stored source ---

def test_from_record_takes_stored_values():
    record = {
        "url": "http://example.com",
        "title": "Stored   title",
        "text": ["Everest is high."],
        "links": ["/a", "http://other.com/"],
        "score": 1.5,
    }
    doc = Document.from_record(record)

    assert doc.source_kind == "stored"
    assert doc.title == "Stored title"
    assert doc.description is None
    assert doc.score == 1.5
    assert not doc.is_empty()
    assert doc.search("everest") == ["Everest is high."]
    assert doc.internal_links == ["a"]
    assert doc.external_links == ["http://other.com"]


def test_from_record_recomputes_missing_fields_from_html():
    record = {"url": "http://example.com", "title": "Stored", "html": "<p>From the page</p>"}
    doc = Document.from_record(record)

    assert doc.title == "Stored"
    assert doc.text == ["From the page"]


def test_from_record_without_content_is_empty():
    assert Document.from_record({"url": "http://example.com"}).is_empty()


def test_from_record_needs_url():
    with pytest.raises(ValueError):
        Document.from_record({"title": "no url"})


def test_from_record_keeps_crawl_bookkeeping():
    record = {
        "url": {"url": "http://example.com", "crawled": True, "crawl_duration": 0.5, "redirects": {}},
        "title": "T",
    }
    doc = Document.from_record(record)
    assert doc.url.crawled is True
    assert doc.url.crawl_duration == 0.5


def test_to_dict_roundtrip():
    doc = Document("http://example.com", SEARCH_HTML)
    record = doc.to_dict(include_html=True)

    assert record["url"] == "http://example.com"
    assert record["title"] == "Mountains"
    assert "score" not in record
    assert Document.from_record(record) == doc
    assert "html" not in doc.to_dict()


# --- misc ---

def test_empty_document():
    doc = Document("http://example.com")
    assert doc.is_empty()
    assert doc.internal_links == []
    assert doc.error is None


def test_error_is_carried():
    error = FetchError("Connection timeout", url="http://example.com")
    doc = Document("http://example.com", "", error=error)
    assert doc.error is error


def test_unknown_field_raises():
    doc = Document("http://example.com", SEARCH_HTML)
    with pytest.raises(AttributeError):
        doc.nonexistent
    with pytest.raises(KeyError):
        doc["nonexistent"]


def test_xpath_and_stats():
    doc = Document("http://example.com/blog/", LINKS_HTML)
    assert doc.xpath("//nav/a/text()") == ["About", "Contact"]

    stats = doc.stats()
    assert stats["links"] == 7
    assert stats["html"] == len(LINKS_HTML)


def test_relative_url_rejected():
    with pytest.raises(RelativeUrlError):
        Document("page.html", LINKS_HTML)
    with pytest.raises(RelativeUrlError):
        Document.from_record({"url": "/page.html", "title": "Stored"})


# --- noindex ---

def test_meta_robots_noindex():
    html = '<html><head><meta name="robots" content="NOINDEX, follow"></head><body><p>Hi</p></body></html>'
    assert Document("http://example.com", html).is_no_index()
    assert not Document("http://example.com", SEARCH_HTML).is_no_index()
    assert not Document("http://example.com", "").is_no_index()


def test_no_index_survives_storage():
    doc = Document("http://example.com", SEARCH_HTML, no_index=True)
    data = doc.to_dict()

    assert data["no_index"] is True
    assert Document.from_record(data).is_no_index()
