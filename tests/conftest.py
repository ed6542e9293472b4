import pytest

from crawlkit.errors import FetchError
from crawlkit.models import Response


class FakeTransport:
    """Serves canned responses keyed by url string and records every GET."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls = []

    def add(self, url, body="", status=200, headers=None):
        headers = {"Content-Type": "text/html; charset=utf-8", **(headers or {})}
        self.pages[url] = (status, headers, body)

    def redirect(self, url, location, status=301):
        self.pages[url] = (status, {"Location": location}, "")

    def fail(self, url, message="Connection timeout"):
        self.pages[url] = FetchError(message, url=url)

    def get(self, url, timeout):
        key = str(url)
        self.calls.append(key)
        page = self.pages.get(key)
        if page is None:
            return Response(url=url, status=404, headers={"Content-Type": "text/html"}, total_time=0.01)
        if isinstance(page, Exception):
            raise page
        status, headers, body = page
        return Response(url=url, status=status, headers=headers, body=body, total_time=0.01)


@pytest.fixture
def transport():
    return FakeTransport()
