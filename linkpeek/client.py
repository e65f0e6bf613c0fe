"""Client for the preview endpoint: ``resolve(url) -> Preview | None``."""

import asyncio
import logging

import httpx
from pydantic import ValidationError

from linkpeek.api.models import Preview
from linkpeek.resolver.cache import LRUCache

logger = logging.getLogger(__name__)


class PreviewClient:
    """Calls a preview endpoint and hands back Previews.

    None means "treat as unavailable": an unexpected status, a transport
    failure or a body that is not a Preview. A 502 yields the failure
    Preview sent by the server. Concurrent calls for the same URL share one
    request; results go into the optional cache.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        param_name: str = "url",
        timeout_s: float = 10.0,
        cache: LRUCache | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.param_name = param_name
        self.timeout_s = timeout_s
        self.cache = cache
        self._http_client = http_client
        self._inflight: dict[str, asyncio.Task] = {}

    async def resolve(self, url: str) -> Preview | None:
        if self.cache is not None:
            cached = self.cache.get(url)
            if cached is not None:
                return cached

        task = self._inflight.get(url)
        if task is None:
            task = asyncio.create_task(self._fetch(url))
            self._inflight[url] = task
            task.add_done_callback(lambda done: self._forget(url, done))
        return await asyncio.shield(task)

    def _forget(self, url: str, done: asyncio.Task) -> None:
        if self._inflight.get(url) is done:
            del self._inflight[url]

    async def _fetch(self, url: str) -> Preview | None:
        try:
            if self._http_client is not None:
                response = await self._request(self._http_client, url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await self._request(client, url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Preview request for {url} failed: {e}")
            return None

        if response.status_code not in (200, 502):
            logger.warning(f"Preview endpoint returned {response.status_code} for {url}")
            return None

        try:
            preview = Preview.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.warning(f"Malformed preview body for {url}: {e}")
            return None

        if self.cache is not None:
            self.cache.set(url, preview, is_failure=preview.is_failure)
        return preview

    async def _request(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.get(
            self.endpoint, params={self.param_name: url}, timeout=self.timeout_s
        )
