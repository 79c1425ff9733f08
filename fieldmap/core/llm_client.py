"""HTTP transport for chat-completion style inference APIs."""

import asyncio
from typing import Any, Dict, Optional

import httpx

from fieldmap.core.exceptions import APIClientError, APITimeoutError
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)


def is_retryable_status(status_code: int) -> bool:
    """Rate limiting and server errors are retried; other client errors are final."""
    return status_code == 429 or status_code >= 500


class BaseLLMClient:
    """POSTs JSON payloads with exponential backoff between attempts."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: int = 2,
        extra_headers: Optional[Dict[str, str]] = None,
    ):
        """Initialize the transport.

        Args:
            api_key: Bearer token
            base_url: Endpoint URL
            timeout: Request timeout in seconds
            max_retries: Total number of attempts
            retry_delay: Base delay for exponential backoff
            extra_headers: Headers sent with every request
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.extra_headers = extra_headers or {}
        self.logger = LOGGER

    async def call_api(
        self,
        endpoint: str = "",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST ``payload`` and return the decoded JSON body.

        Raises:
            APIClientError: Non-retryable status, or retries exhausted
            APITimeoutError: The last attempt timed out
        """
        url = f"{self.base_url}{endpoint}" if endpoint else self.base_url
        request_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            **self.extra_headers,
            **(headers or {}),
        }

        last_error: Optional[httpx.HTTPError] = None
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.post(url, headers=request_headers, json=payload)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    status_code = e.response.status_code
                    if not is_retryable_status(status_code):
                        raise APIClientError(
                            f"API Client Error {status_code}: {e.response.text[:500]}", e
                        ) from e
                    last_error = e
                except httpx.HTTPError as e:
                    last_error = e

                self.logger.warning(
                    f"Inference API attempt {attempt}/{self.max_retries} failed: {last_error!r}",
                    extra={"url": url},
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * 2 ** (attempt - 1))

        raise self._exhausted(url, last_error) from last_error

    def _exhausted(self, url: str, error: Optional[httpx.HTTPError]) -> APIClientError:
        attempts = f"after {self.max_retries} attempts"
        if isinstance(error, httpx.TimeoutException):
            return APITimeoutError(f"API Timeout {attempts}", error)
        if isinstance(error, httpx.HTTPStatusError):
            return APIClientError(f"API HTTP Error {error.response.status_code} {attempts}", error)
        return APIClientError(f"Failed to call API {url} {attempts}: {error}", error)
