# ABOUTME: HTTP client used to download externally supplied cover images.
# ABOUTME: Throttles requests, retries transient failures, and caps how much of a body it will read.

import logging
import time
from typing import Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

_TRANSIENT = frozenset({429, 500, 502, 503, 504})
_USER_AGENT = "librarium/0.1.0"


class CoverFetchError(Exception):
    """Raised when downloading a remote cover image fails."""


@runtime_checkable
class HttpClient(Protocol):
    """Anything that can fetch a URL as raw bytes plus its content type."""

    def get_bytes(self, url: str) -> tuple[bytes, str | None]: ...


class LibrariumHttpClient:
    """Binary GET client for cover hosts.

    Redirects are followed since image hosts commonly answer through a CDN.
    Bodies are streamed so an oversized download is abandoned as soon as it
    passes ``max_bytes``.
    """

    def __init__(
        self,
        *,
        min_request_interval: float = 0.1,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        max_bytes: int = 20 * 1024 * 1024,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            headers={"User-Agent": _USER_AGENT},
            timeout=30.0,
            follow_redirects=True,
            transport=transport,
        )
        self._min_interval = min_request_interval
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._max_bytes = max_bytes
        self._next_allowed = 0.0

    def get_bytes(self, url: str) -> tuple[bytes, str | None]:
        """Download ``url``, returning the body and its declared content type.

        Transient statuses are retried with exponential backoff. Any other
        non-200 status, a transport failure, or a body over the size cap
        raises CoverFetchError.
        """
        attempts = self._max_retries + 1
        status = 0
        for attempt in range(1, attempts + 1):
            self._throttle()
            status, body, content_type = self._fetch_once(url)
            if status == 200:
                return body, content_type
            if status not in _TRANSIENT:
                raise CoverFetchError(f"HTTP {status} from {url}")
            if attempt < attempts:
                wait = self._retry_delay * 2 ** (attempt - 1)
                logger.warning("HTTP %d from %s, retry %d/%d in %.1fs", status, url, attempt, self._max_retries, wait)
                time.sleep(wait)
        raise CoverFetchError(f"HTTP {status} from {url} after {attempts} attempts")

    def close(self) -> None:
        self._client.close()

    def _fetch_once(self, url: str) -> tuple[int, bytes, str | None]:
        try:
            with self._client.stream("GET", url) as response:
                if response.status_code != 200:
                    return response.status_code, b"", None
                buffer = bytearray()
                for chunk in response.iter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > self._max_bytes:
                        raise CoverFetchError(f"Response from {url} is over the {self._max_bytes} limit")
                return 200, bytes(buffer), response.headers.get("content-type")
        except httpx.HTTPError as exc:
            raise CoverFetchError(f"Request failed: {url}: {exc}") from exc

    def _throttle(self) -> None:
        if self._min_interval <= 0:
            return
        pause = self._next_allowed - time.monotonic()
        if pause > 0:
            time.sleep(pause)
        self._next_allowed = time.monotonic() + self._min_interval
