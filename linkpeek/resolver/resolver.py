"""Preview resolution: cache lookup, safe fetch, metadata extraction, caching."""

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import httpx

from linkpeek.api.models import CacheStats, Preview, PreviewError, ResolveOptions
from linkpeek.exceptions import ErrorCode, LinkpeekError
from linkpeek.resolver.cache import CacheRegistry, LRUCache
from linkpeek.scraper.fetcher import fetch_url
from linkpeek.scraper.metadata import parse_html

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def failure_preview(url: str, code: ErrorCode, message: str) -> Preview:
    return Preview(
        url=url,
        fetched_at=_now_iso(),
        error=PreviewError(code=code, message=message),
    )


class PreviewResolver:
    """Turns a URL into a Preview. Never raises.

    Owns its caches through a CacheRegistry: construct one at startup,
    call close() at shutdown. Concurrent calls for the same URL and options
    share one in-flight resolution.
    """

    def __init__(
        self,
        registry: CacheRegistry | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.registry = registry or CacheRegistry()
        self._client = client
        self._inflight: dict[tuple[str, str], asyncio.Task] = {}

    async def resolve(
        self,
        url: str,
        options: ResolveOptions | Mapping[str, Any] | None = None,
    ) -> Preview:
        try:
            opts = ResolveOptions.coerce(options)
            cache = self.registry.get(opts.cache)
            if cache is not None:
                cached = cache.get(url)
                if cached is not None:
                    logger.debug(f"Cache hit for {url}")
                    return cached
            task = self._inflight_task(url, opts, cache)
        except LinkpeekError as e:
            return failure_preview(url, e.code, e.message)
        except Exception as e:
            logger.error(f"Unexpected error preparing {url}: {type(e).__name__}: {e}")
            return failure_preview(url, ErrorCode.UNKNOWN_ERROR, GENERIC_ERROR_MESSAGE)

        # A cancelled caller must not cancel the shared resolution
        return await asyncio.shield(task)

    def _inflight_task(
        self, url: str, opts: ResolveOptions, cache: LRUCache | None
    ) -> asyncio.Task:
        key = (url, opts.model_dump_json())
        task = self._inflight.get(key)
        if task is not None:
            logger.debug(f"Joining in-flight resolution for {url}")
            return task

        task = asyncio.create_task(self._resolve_uncached(url, opts, cache))
        self._inflight[key] = task

        def _forget(done: asyncio.Task) -> None:
            if self._inflight.get(key) is done:
                del self._inflight[key]

        task.add_done_callback(_forget)
        return task

    async def _resolve_uncached(
        self, url: str, opts: ResolveOptions, cache: LRUCache | None
    ) -> Preview:
        try:
            result = await fetch_url(url, opts, client=self._client)
            metadata = parse_html(result.html, result.final_url)

            canonical_url = metadata.canonical_url
            if canonical_url is None and result.final_url != url:
                canonical_url = result.final_url

            preview = Preview(
                url=url,
                canonical_url=canonical_url,
                title=metadata.title,
                description=metadata.description,
                site_name=metadata.site_name,
                image=metadata.image,
                favicon=metadata.favicon,
                fetched_at=_now_iso(),
            )
            logger.info(f"Resolved preview for {url}")
        except LinkpeekError as e:
            logger.info(f"Preview failed for {url}: {e.code.value}: {e.message}")
            preview = failure_preview(url, e.code, e.message)
        except Exception as e:
            logger.error(f"Unexpected error resolving {url}: {type(e).__name__}: {e}")
            preview = failure_preview(url, ErrorCode.UNKNOWN_ERROR, GENERIC_ERROR_MESSAGE)

        if cache is not None:
            cache.set(url, preview, is_failure=preview.is_failure)
        return preview

    def stats(self) -> dict[str, CacheStats]:
        return self.registry.stats()

    def close(self) -> None:
        """Drop all cached previews."""
        self.registry.clear()


async def resolve_url_preview(
    url: str,
    options: ResolveOptions | Mapping[str, Any] | None = None,
    resolver: PreviewResolver | None = None,
) -> Preview:
    """Resolve ``url`` to a Preview; failures come back as a failure Preview.

    Without an explicit ``resolver`` a fresh one is used, so nothing is
    cached between calls.
    """
    return await (resolver or PreviewResolver()).resolve(url, options)
