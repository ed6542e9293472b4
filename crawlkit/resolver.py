import logging
import os
from typing import Callable, Optional, Union
from urllib.parse import urljoin

from .errors import ExternalRedirectError, FetchError, InvalidUrlError, TooManyRedirectsError
from .fetcher import DEFAULT_TIMEOUT, RequestsTransport, Transport
from .models import Response
from .url import Url

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_LIMIT = int(os.getenv("CRAWLER_REDIRECT_LIMIT", "5"))

# (url being fetched, its 3xx response, absolute redirect target)
RedirectObserver = Callable[[Url, Response, Url], None]


def _host_of(domain: Union[str, Url]) -> str:
    """Accepts "example.com", "http://example.com/x" or a Url."""
    url = Url.parse(domain)
    if url.is_absolute():
        return str(url.to_host())
    # a bare host parses as a relative path
    return str(url).strip("/").split("/", 1)[0].lower()


class Resolver:
    """
    Performs one logical fetch: GET, then follow 3xx Location headers until a
    non-redirect response, the redirect limit, or a refused external hop.

    Every recorded hop lands in url.redirects (from -> to). Network errors are
    raised as FetchError; turning them into empty Documents is the engine's job.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        redirect_limit: int = DEFAULT_REDIRECT_LIMIT,
        timeout: float = DEFAULT_TIMEOUT,
        observer: Optional[RedirectObserver] = None,
    ):
        self.transport = transport or RequestsTransport()
        self.redirect_limit = redirect_limit
        self.timeout = timeout
        self.observer = observer

    def resolve(
        self,
        url: Url,
        redirect_limit: Optional[int] = None,
        follow_external_redirects: bool = True,
        domain: Union[str, Url, None] = None,
        timeout: Optional[float] = None,
        observer: Optional[RedirectObserver] = None,
    ) -> Response:
        if not follow_external_redirects and domain is None:
            raise ValueError("domain is required when follow_external_redirects is False")

        limit = self.redirect_limit if redirect_limit is None else redirect_limit
        timeout = self.timeout if timeout is None else timeout
        observer = observer or self.observer
        allowed_host = _host_of(domain) if domain is not None else None

        current = url
        redirect_count = 0
        total_time = 0.0

        while True:
            response = self.transport.get(current, timeout)
            total_time += response.total_time

            location = response.location
            if not response.is_redirect() or location is None:
                break

            try:
                target = Url(urljoin(str(current), location))
            except InvalidUrlError as exc:
                raise FetchError(f"Unusable redirect from {current}: {exc}", url=str(current)) from exc

            if observer is not None:
                observer(current, response, target)

            redirect_count += 1
            if redirect_count > limit:
                raise TooManyRedirectsError(
                    f"Too many redirects ({limit} allowed) starting at {url}",
                    url=str(url),
                    limit=limit,
                )

            if not follow_external_redirects and str(target.to_host()) != allowed_host:
                raise ExternalRedirectError(
                    f"External redirect not allowed: {current} -> {target} is outside of {allowed_host}",
                    url=str(current),
                    location=str(target),
                )

            logger.debug("Redirect %d: %s -> %s", redirect_count, current, target)
            url.redirects[current] = target
            current = target

        response.total_time = total_time
        response.redirects = {str(src): str(dst) for src, dst in url.redirects.items()}
        return response
