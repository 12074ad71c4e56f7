"""
API Client - Shared aiohttp client for the portal REST API.
"""

import asyncio
from typing import Dict, Any, Optional, Iterable
from dataclasses import dataclass
import aiohttp

from medportal.config.constants import REQUEST_TIMEOUT_SECONDS, REQUEST_RETRIES
from medportal.infra.exceptions import BackendError
from medportal.infra.logger import get_logger


logger = get_logger(__name__)


@dataclass
class ApiResponse:
    """Status and decoded JSON body of a response."""
    status: int
    data: Any

    @property
    def body(self) -> Dict[str, Any]:
        return self.data if isinstance(self.data, dict) else {}


class ApiClient:
    """
    Authenticated JSON client with retry.

    Connection errors, timeouts, 429 and 5xx responses are retried with
    exponential backoff; other non-2xx responses raise BackendError at once.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        retries: int = REQUEST_RETRIES,
        backoff_base: float = 1.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff_base = backoff_base

        self._session = session
        self._request_count = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json"
                }
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def url(self, route: str) -> str:
        return f"{self.base_url}{route}"

    async def request(
        self,
        method: str,
        route: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_status: Iterable[int] = (),
        operation: Optional[str] = None
    ) -> ApiResponse:
        """
        Send a request with retry.

        Args:
            method: HTTP method
            route: Path under the base URL
            json: JSON body
            params: Query parameters
            allow_status: Non-2xx statuses returned to the caller instead of raised
            operation: Name used in logs and errors

        Returns:
            The response status and decoded body

        Raises:
            BackendError: On a non-retryable error status or when retries run out
        """
        session = await self._get_session()
        allowed = set(allow_status)
        operation = operation or f"{method} {route}"
        last_error: Optional[BackendError] = None

        for attempt in range(self.retries):
            try:
                async with session.request(
                    method,
                    self.url(route),
                    json=json,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    self._request_count += 1
                    data = await self._read_body(response)

                    if 200 <= response.status < 300 or response.status in allowed:
                        return ApiResponse(status=response.status, data=data)

                    message = self._error_message(data, f"{operation} failed")
                    error = BackendError(
                        f"API error {response.status}: {message}",
                        status=response.status,
                        operation=operation
                    )

                    if response.status != 429 and response.status < 500:
                        raise error

                    last_error = error
                    logger.warning(f"{operation} got {response.status} (attempt {attempt + 1})")

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = BackendError(
                    f"{operation} request failed: {e}",
                    operation=operation
                )
                logger.warning(f"{operation} failed (attempt {attempt + 1}): {e}")

            if attempt < self.retries - 1:
                await asyncio.sleep(self.backoff_base * (2 ** attempt))

        raise BackendError(
            f"{operation} failed after {self.retries} attempts: {last_error.message if last_error else ''}",
            status=last_error.status if last_error else None,
            operation=operation
        )

    async def _read_body(self, response) -> Any:
        try:
            return await response.json(content_type=None)
        except ValueError:
            return None

    def _error_message(self, data: Any, default: str) -> str:
        if isinstance(data, dict):
            return data.get("error") or data.get("message") or default
        return default

    def get_stats(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "request_count": self._request_count
        }
