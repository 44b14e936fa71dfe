"""
Signed API Client
=================

Single responsibility: fetch signed beacon values from public Signed APIs.

`GET <base_url>/<airnode>` returns `{"data": {beaconId: {...}}}`. The same
data is served by more than one Signed API, so requests are raced and the
first successful response wins.
"""

import asyncio
import logging
from typing import Dict, List, Optional

import aiohttp

from ..config import config

logger = logging.getLogger(__name__)


class SignedApiError(Exception):
    """A Signed API request failed or returned an unusable response."""


class SignedApiClient:
    """
    Async client for Signed APIs.

    Handles:
    - Fetching all signed values of an Airnode from one Signed API
    - Racing the configured Signed APIs for the first successful response
    """

    def __init__(self, base_urls: List[str] = None, timeout: float = None):
        self.base_urls = list(base_urls or config.signed_api_urls)
        self.timeout = timeout if timeout is not None else config.signed_api_timeout_sec
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        """Create session if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch_signed_data(self, base_url: str, airnode: str) -> Dict[str, dict]:
        """
        Fetch signed data for an Airnode from a single Signed API.

        Returns:
            Mapping of beacon ID to signed data

        Raises:
            SignedApiError: On transport errors, non-200 responses, bodies
                that are not JSON, or a response without a "data" object
        """
        await self._ensure_session()
        url = f"{base_url.rstrip('/')}/{airnode}"

        try:
            async with self._session.get(url) as response:
                if response.status != 200:
                    raise SignedApiError(f"{url} returned {response.status}: {await response.text()}")
                body = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SignedApiError(f"Request to {url} failed: {e}") from e
        except ValueError as e:
            raise SignedApiError(f"{url} returned invalid JSON: {e}") from e

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise SignedApiError(f"{url} returned no signed data")
        return data

    async def fetch_first(self, airnode: str) -> Optional[Dict[str, dict]]:
        """
        Race all Signed APIs for an Airnode.

        The first response to complete successfully wins and the remaining
        requests are cancelled. Failures are logged.

        Returns:
            Signed data of the winning response, or None if every Signed API failed
        """
        pending = {
            asyncio.ensure_future(self.fetch_signed_data(base_url, airnode))
            for base_url in self.base_urls
        }

        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.exception() is None:
                        return task.result()
                    logger.warning(f"Failed to fetch signed data: {task.exception()}")
        finally:
            for task in pending:
                task.cancel()

        logger.error(f"All Signed APIs failed for Airnode {airnode}")
        return None
