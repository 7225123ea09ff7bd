"""
Shared HTTP plumbing with automatic rate limit handling and retry logic.

The indexer and price feed clients both go through ``RetryingHTTPClient``,
which owns the ``requests`` session and retries HTTP 429, 5xx and transport
errors with exponential backoff.
"""

import random
import time
from typing import Any, Callable, Dict, Optional

import requests


# Retry configuration
DEFAULT_INITIAL_DELAY = 1.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_DELAY = 16.0  # seconds
DEFAULT_JITTER = 0.1  # ±10%
DEFAULT_TIMEOUT = 15.0  # seconds


class IndexerAPIError(Exception):
    """Exception raised for indexer and price feed API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class IndexerRateLimitError(IndexerAPIError):
    """Exception raised when rate limit is exceeded and retries are exhausted."""

    pass


class RetryingHTTPClient:
    """
    Base class for JSON-over-HTTP clients with 429/5xx retry handling.

    Subclasses set ``base_url`` and build their endpoints on top of
    ``_get_json``.
    """

    def __init__(
        self,
        base_url: str,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, without trailing slash
            initial_delay: Initial delay in seconds for retry backoff
            backoff_multiplier: Multiplier for exponential backoff
            max_retries: Maximum number of retry attempts
            max_delay: Maximum delay cap in seconds
            jitter: Jitter factor (±percentage) to randomize delays
            timeout: Per-request timeout in seconds
            headers: Extra headers sent with every request
        """
        self.base_url = base_url.rstrip("/")
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_retries = max_retries
        self.max_delay = max_delay
        self.jitter = jitter
        self.timeout = timeout
        self.session = requests.Session()
        if headers:
            self.session.headers.update(headers)

    def _apply_jitter(self, delay: float) -> float:
        """Apply random jitter to a delay value."""
        jitter_range = delay * self.jitter
        return delay + random.uniform(-jitter_range, jitter_range)

    def _backoff(self, delay: float) -> float:
        """Sleep for the current delay and return the next one."""
        time.sleep(self._apply_jitter(min(delay, self.max_delay)))
        return delay * self.backoff_multiplier

    def _execute_with_retry(
        self,
        request_func: Callable[[], requests.Response],
    ) -> requests.Response:
        """
        Execute a request function with retry logic for rate limits and server errors.

        Client errors other than 429 are not retried.

        Args:
            request_func: A callable that returns a requests.Response

        Returns:
            The successful response

        Raises:
            IndexerAPIError: For API errors after retries exhausted
            IndexerRateLimitError: When rate limit retries are exhausted
        """
        delay = self.initial_delay

        for attempt in range(self.max_retries + 1):
            try:
                response = request_func()
            except requests.RequestException as e:
                if attempt < self.max_retries:
                    delay = self._backoff(delay)
                    continue
                raise IndexerAPIError(f"Request failed: {e}") from e

            if response.status_code == 429:
                if attempt < self.max_retries:
                    delay = self._backoff(delay)
                    continue
                raise IndexerRateLimitError(
                    "Rate limit exceeded and max retries reached",
                    status_code=429,
                )

            if response.status_code >= 500:
                if attempt < self.max_retries:
                    delay = self._backoff(delay)
                    continue
                raise IndexerAPIError(
                    f"Server error: {response.status_code}",
                    status_code=response.status_code,
                )

            if response.status_code >= 400:
                raise IndexerAPIError(
                    f"Client error: {response.status_code} {response.text[:200]}".rstrip(),
                    status_code=response.status_code,
                )

            return response

        raise IndexerAPIError("Max retries exceeded")

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET ``base_url + path`` and decode the JSON body.

        Raises:
            IndexerAPIError: On HTTP failure or a body that is not JSON
        """
        url = f"{self.base_url}{path}"
        response = self._execute_with_retry(
            lambda: self.session.get(url, params=params, timeout=self.timeout)
        )
        try:
            return response.json()
        except ValueError as e:
            raise IndexerAPIError(f"Invalid JSON from {path}") from e
