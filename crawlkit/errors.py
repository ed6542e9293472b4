"""Exception types raised (or recorded on Documents) by the crawler."""


class CrawlError(Exception):
    """Base class for everything crawlkit raises on purpose."""


# --- fetch failures: recovered by the engine, recorded on Document.error ---

class FetchError(CrawlError):
    """The page could not be fetched (timeout, DNS, connection reset...)."""

    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url


class HttpStatusError(FetchError):
    """The final response was not a 2xx."""

    def __init__(self, message: str, url: str = None, status: int = None):
        super().__init__(message, url=url)
        self.status = status


class RedirectError(FetchError):
    """A redirect was refused by the resolver's policy."""


class TooManyRedirectsError(RedirectError):
    def __init__(self, message: str, url: str = None, limit: int = None):
        super().__init__(message, url=url)
        self.limit = limit


class ExternalRedirectError(RedirectError):
    def __init__(self, message: str, url: str = None, location: str = None):
        super().__init__(message, url=url)
        self.location = location


class RobotsDisallowedError(CrawlError):
    """robots.txt refused the Url. A skip, not a failure."""

    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url


# --- contract errors: always raised to the caller ---

class InvalidUrlError(CrawlError, ValueError):
    pass


class RelativeUrlError(CrawlError, ValueError):
    """An absolute Url was required but a relative one was given."""


class ExtractorError(CrawlError, ValueError):
    pass


class InvalidSelectorError(ExtractorError):
    pass
