# Copyright Rand Arete @ Ananke 2025
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
"""HTTP transport layer for remote tokenizer retrieval.

Provides a small async client around httpx for one-shot JSON document
downloads. There is no retry policy: every failure is surfaced to the caller
as FetchError or MalformedDescriptorError.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from ..errors import FetchError, MalformedDescriptorError

logger = logging.getLogger(__name__)


class AsyncHttpTransport:
    """Asynchronous HTTP transport using httpx.

    Attributes:
        base_url: Base URL of the document host
        timeout: Request timeout in seconds
        headers: Default headers for all requests
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize async HTTP transport.

        Args:
            base_url: Base URL of the document host (e.g., "https://huggingface.co")
            timeout: Request timeout in seconds
            headers: Additional headers for all requests
            transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Accept": "application/json"}
        if headers:
            self.headers.update(headers)

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.headers,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def get_json(self, path: str) -> tuple[Any, float]:
        """Make GET request and return (decoded JSON body, latency_ms).

        Args:
            path: Path relative to base_url (e.g., "/gpt2/resolve/main/tokenizer.json")

        Returns:
            Tuple of (decoded body, latency in milliseconds)

        Raises:
            FetchError: On transport failure or a non-success status
            MalformedDescriptorError: If the body is not valid JSON
        """
        url = f"{self.base_url}{path}"
        start_time = time.perf_counter()
        logger.debug(f"GET {url}")

        try:
            response = await self._get_client().get(path)
        except httpx.HTTPError as e:
            logger.warning(f"Request to {url} failed: {e}")
            raise FetchError(f"Request to {url} failed: {e}", url=url) from e

        latency_ms = (time.perf_counter() - start_time) * 1000

        if not response.is_success:
            logger.warning(f"GET {url} returned HTTP {response.status_code}")
            raise FetchError(
                f"Failed to fetch {url}: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                url=url,
                response_body=response.text,
            )

        try:
            return response.json(), latency_ms
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedDescriptorError(f"Response from {url} is not valid JSON: {e}") from e

    async def close(self) -> None:
        """Close the httpx client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "AsyncHttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
