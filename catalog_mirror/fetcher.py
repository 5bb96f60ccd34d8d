"""HTTP fetching of supplier pages."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

import requests  # type: ignore[import-untyped]

from catalog_mirror.config import (
    BATCH_MAX_RETRIES,
    HEADERS,
    HTTP_ERROR_SAMPLE_CHARS,
    REQUEST_TIMEOUT,
    RETRY_BACKOFF_BASE,
    RETRY_BACKOFF_STEP,
)
from catalog_mirror.logging_config import get_logger, log_event
from catalog_mirror.url_validation import validate_url

__all__ = [
    "FetcherConfig",
    "INTERACTIVE_FETCHER_CONFIG",
    "BATCH_FETCHER_CONFIG",
    "FetchError",
    "NetworkFailure",
    "HttpStatusFailure",
    "Fetcher",
    "create_session",
]

logger = get_logger("fetcher")


class FetchError(Exception):
    """Base class for failures to obtain a page."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class NetworkFailure(FetchError):
    """Timeout, DNS failure, connection reset. Retryable in batch mode."""

    def __init__(self, url: str, reason: str, detail: str = ""):
        super().__init__(url, f"{reason} fetching {url}" + (f": {detail}" if detail else ""))
        self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.reason in ("timeout", "connection")

    @property
    def is_timeout(self) -> bool:
        return self.reason == "timeout"


class HttpStatusFailure(FetchError):
    """Non-2xx response. Never retried."""

    def __init__(self, url: str, status_code: int, body_sample: str = ""):
        super().__init__(url, f"HTTP {status_code} :: {body_sample}")
        self.status_code = status_code
        self.body_sample = body_sample


@dataclass(frozen=True)
class FetcherConfig:
    """How a Fetcher talks to the supplier.

    ``max_retries`` counts extra attempts after the first one and only
    applies to network failures.
    """

    headers: Mapping[str, str] = field(default_factory=lambda: dict(HEADERS))
    timeout: float = REQUEST_TIMEOUT
    max_retries: int = 0
    backoff_base: float = RETRY_BACKOFF_BASE
    backoff_step: float = RETRY_BACKOFF_STEP
    allowed_domains: Optional[frozenset] = None

    def backoff(self, attempt: int) -> float:
        return self.backoff_base + self.backoff_step * attempt


# Page views fail fast; operator batches ride out flaky connections
INTERACTIVE_FETCHER_CONFIG = FetcherConfig()
BATCH_FETCHER_CONFIG = FetcherConfig(max_retries=BATCH_MAX_RETRIES)


def create_session(headers: Optional[Mapping[str, str]] = None) -> requests.Session:
    """Create a requests Session carrying the browser-like headers."""
    session = requests.Session()
    session.headers.update(dict(headers or HEADERS))
    return session


class Fetcher:
    """GET supplier pages and return their HTML.

    Usage:
        fetcher = Fetcher(BATCH_FETCHER_CONFIG)
        html = fetcher.fetch("https://www.abmgood.com/search?query=T3189")

    Any object with a requests-compatible ``get`` can be passed as
    ``session``, which is how tests inject a fake transport.
    """

    def __init__(
        self,
        config: FetcherConfig = INTERACTIVE_FETCHER_CONFIG,
        session: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.session = session if session is not None else create_session(config.headers)
        self._sleep = sleep

    def close(self) -> None:
        self.session.close()

    def fetch(self, url: str) -> str:
        """Fetch ``url`` and return the response body.

        Raises:
            URLValidationError: If the URL is not an allowed supplier URL
            NetworkFailure: On timeout or connection errors (after retries)
            HttpStatusFailure: On a non-2xx response
        """
        url = validate_url(url, allowed_domains=self.config.allowed_domains)
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            try:
                return self._get(url)
            except NetworkFailure as e:
                if e.retryable and attempt + 1 < attempts:
                    backoff = self.config.backoff(attempt)
                    logger.warning(
                        f"{e.reason} on {url}, retrying in {backoff:.1f}s "
                        f"(attempt {attempt + 1}/{attempts})"
                    )
                    self._sleep(backoff)
                    continue
                log_event(
                    "fetch_failed",
                    {"message": str(e), "url": url, "reason": e.reason, "attempts": attempts},
                    level=logging.WARNING,
                    logger_name="fetcher",
                )
                raise

        # attempts is always >= 1, the loop either returns or raises
        raise NetworkFailure(url, "connection", "no attempt made")

    def _get(self, url: str) -> str:
        headers: Dict[str, str] = dict(self.config.headers)
        try:
            resp = self.session.get(
                url,
                headers=headers,
                timeout=self.config.timeout,
                allow_redirects=True,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkFailure(url, "timeout", str(e)) from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkFailure(url, "connection", str(e)) from e
        except requests.exceptions.RequestException as e:
            raise NetworkFailure(url, "request", str(e)) from e

        if not 200 <= resp.status_code < 300:
            sample = (resp.text or "")[:HTTP_ERROR_SAMPLE_CHARS]
            failure = HttpStatusFailure(url, resp.status_code, sample)
            log_event(
                "fetch_failed",
                {"message": str(failure), "url": url, "status_code": resp.status_code},
                level=logging.WARNING,
                logger_name="fetcher",
            )
            raise failure

        return str(resp.text)
