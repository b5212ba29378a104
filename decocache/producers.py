"""
HTTP producers for the fetch coordinator.

SourceClient fetches JSON from an upstream content source (category
listings, search, source lists) and hands out zero-argument async
producers that FetchCoordinator.observe can run.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import requests
from dotenv import load_dotenv
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from decocache.cache.keys import build_key
from config.settings import settings

load_dotenv()

logger = logging.getLogger("producers")

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class SourceError(Exception):
    """Upstream request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientSourceError(SourceError):
    """Upstream failure worth retrying (timeouts, 429, 5xx)."""


class SourceClient:
    """
    Thin JSON client over requests with retry on transient failures.

    Usage:
        client = SourceClient("https://cms.example.com/api")
        coordinator.observe(
            client.cache_key("vod", {"ac": "list", "t": type_id}),
            client.producer("vod", {"ac": "list", "t": type_id}),
            [type_id],
        )
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        session: Optional[requests.Session] = None,
        retry_wait: Optional[wait_base] = None,
    ):
        base_url = base_url or settings.source_base_url
        if not base_url:
            raise ValueError("SourceClient needs a base_url (or SOURCE_BASE_URL)")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.source_timeout_seconds
        self.max_attempts = max_attempts or settings.source_max_attempts
        self.session = session or requests.Session()
        self.retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=8)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get_once(self, path: str, params: Dict[str, Any]) -> Any:
        url = self._url(path)
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"Upstream unreachable: {url} - {e}")
            raise TransientSourceError(f"{url}: {e}") from e
        except requests.RequestException as e:
            raise SourceError(f"{url}: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            logger.warning(f"Upstream returned {response.status_code}: {url}")
            raise TransientSourceError(
                f"{url} returned {response.status_code}", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise SourceError(
                f"{url} returned {response.status_code}", status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise SourceError(f"{url} returned invalid JSON: {e}") from e

    def fetch_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET path and decode the JSON body.

        Transient failures are retried with exponential backoff.

        Raises:
            SourceError: If the request ultimately fails
        """
        params = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        fetch = retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(TransientSourceError),
            reraise=True,
        )(self._get_once)
        return fetch(path, params)

    def producer(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Callable[[], Awaitable[Any]]:
        """Async producer that runs fetch_json in a worker thread."""
        frozen = dict(params or {})

        async def produce() -> Any:
            return await asyncio.to_thread(self.fetch_json, path, frozen)

        return produce

    def cache_key(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Cache key matching producer(path, params)."""
        return build_key(f"source:{path.strip('/')}", params or {})

    def close(self) -> None:
        self.session.close()
