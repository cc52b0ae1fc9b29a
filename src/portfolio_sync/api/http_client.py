"""
HTTP client for the trading API.

Wraps a single aiohttp.ClientSession and provides:
- Authentication headers on every request (api key, user key, fresh request id)
- Per request class timeouts (primary vs secondary calls)
- Retry logic with exponential backoff for transport errors and
  retryable statuses (429, 502, 503, 504)
- Translation of failures into ApiResponseError / NetworkError
"""

import asyncio
import json
import time
import uuid
from typing import Any, Dict, Optional

import aiohttp

from ..config import ApiSettings
from ..exceptions import ApiResponseError, MissingCredentialsError, NetworkError
from ..models.entities import ApiKeys
from ..utils import get_logger

logger = get_logger(__name__)

REQUEST_PRIMARY = 'primary'
REQUEST_SECONDARY = 'secondary'


class TradingApiClient:
    """
    Authenticated JSON client for the trading API.

    Example:
        ```python
        keys = ApiKeys.create(api_key, user_key)
        async with TradingApiClient(keys) as client:
            data = await client.get_json('/trading/info/portfolio',
                                         request_class=REQUEST_PRIMARY)
        ```

    A session passed in by the caller is used as-is and never closed by the
    client; otherwise the client creates and owns its own session.
    """

    def __init__(
        self,
        keys: Optional[ApiKeys],
        settings: Optional[ApiSettings] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize the client.

        Args:
            keys: Credential pair
            settings: API settings. Uses defaults if not provided.
            session: Optional externally managed session

        Raises:
            MissingCredentialsError: If keys are absent or blank
        """
        if keys is None or not keys.is_complete:
            raise MissingCredentialsError()

        self._keys = keys
        self.settings = settings or ApiSettings()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> 'TradingApiClient':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def base_url(self) -> str:
        return f"{self.settings.base_url}{self.settings.api_prefix}"

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def build_headers(self) -> Dict[str, str]:
        return {
            'x-api-key': self._keys.api_key,
            'x-user-key': self._keys.user_key,
            'x-request-id': str(uuid.uuid4()),
            'Content-Type': 'application/json',
        }

    def timeout_for(self, request_class: str) -> aiohttp.ClientTimeout:
        if request_class == REQUEST_PRIMARY:
            return aiohttp.ClientTimeout(total=self.settings.primary_timeout_seconds)
        return aiohttp.ClientTimeout(total=self.settings.secondary_timeout_seconds)

    def _calculate_backoff_delay(self, attempt: int) -> float:
        """
        Calculate exponential backoff delay.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self.settings.retry_delay_base * (2 ** attempt)
        return min(delay, self.settings.retry_delay_max)

    async def get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        request_class: str = REQUEST_SECONDARY
    ) -> Any:
        """
        Issue a GET request and decode the JSON body.

        Args:
            path: Path below the versioned API prefix
            params: Query parameters
            request_class: REQUEST_PRIMARY or REQUEST_SECONDARY (selects timeout)

        Returns:
            Decoded JSON, or None for an empty body

        Raises:
            ApiResponseError: On a non-success status (after retries when retryable)
            NetworkError: On transport failure, timeout or an undecodable body
        """
        if self._session is None:
            await self.open()

        max_retries = self.settings.max_retries
        for attempt in range(max_retries + 1):
            try:
                body = await self._request_once(path, params, request_class)
                break
            except ApiResponseError as e:
                if not e.is_retryable or attempt >= max_retries:
                    raise
                delay = self._calculate_backoff_delay(attempt)
                logger.warning(f"{path} returned {e.status}, retrying in {delay}s...")
                await asyncio.sleep(delay)
            except NetworkError as e:
                if attempt >= max_retries:
                    raise NetworkError(
                        message=f"Network error after {max_retries} retries: {e}",
                        details={'path': path, 'attempt': attempt}
                    ) from e
                delay = self._calculate_backoff_delay(attempt)
                logger.warning(f"Network error on {path}, retrying in {delay}s: {e}")
                await asyncio.sleep(delay)

        if not body:
            return None
        try:
            return json.loads(body.decode('utf-8'))
        except ValueError as e:
            raise NetworkError(
                message=f"Invalid JSON from {path}: {e}",
                details={'path': path}
            ) from e

    async def _request_once(
        self,
        path: str,
        params: Optional[Dict[str, Any]],
        request_class: str
    ) -> bytes:
        headers = self.build_headers()
        started = time.monotonic()
        try:
            async with self._session.get(
                self.build_url(path),
                params=params,
                headers=headers,
                timeout=self.timeout_for(request_class),
            ) as response:
                status = response.status
                body = await response.read()
        except asyncio.TimeoutError as e:
            raise NetworkError(
                message=f"Request to {path} timed out",
                details={'path': path, 'request_class': request_class}
            ) from e
        except aiohttp.ClientError as e:
            raise NetworkError(
                message=f"Request to {path} failed: {e}",
                details={'path': path}
            ) from e

        logger.log_api_event({
            'method': 'GET',
            'path': path,
            'status': status,
            'request_id': headers['x-request-id'],
            'elapsed_ms': round((time.monotonic() - started) * 1000, 1),
        })

        if not 200 <= status < 300:
            raise ApiResponseError(
                status=status,
                body=body.decode('utf-8', errors='replace'),
                path=path
            )
        return body
