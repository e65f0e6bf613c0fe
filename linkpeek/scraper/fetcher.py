"""HTML fetching with manual redirects, per-hop SSRF checks and size limits.

Redirects are never delegated to the HTTP client: every hop is re-validated
(URL rules, domain lists, fresh DNS check) before a request is sent to it.
"""

import asyncio
import logging
import zlib
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx

from linkpeek.api.models import ResolveOptions
from linkpeek.exceptions import ErrorCode, FetchError
from linkpeek.utils.security import validate_resolved_ip, validate_url

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "text/html, application/xhtml+xml"
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
# Compressed bodies are inflated here in bounded pieces, never by httpx
ACCEPT_ENCODING_HEADER = "identity"
COMPRESSED_ENCODINGS = ("gzip", "x-gzip", "deflate")


@dataclass(frozen=True)
class FetchResult:
    """Decoded HTML and the URL it was finally served from."""

    html: str
    final_url: str


@dataclass(frozen=True)
class _Hop:
    status_code: int
    location: str | None = None
    html: str | None = None


def _matches_domain(hostname: str, domains: list[str]) -> bool:
    """Exact hostname or any subdomain of it, case-insensitive."""
    hostname = hostname.lower()
    return any(hostname == d or hostname.endswith("." + d) for d in domains)


def check_domain_lists(hostname: str, options: ResolveOptions) -> None:
    """Apply the allowlist (authoritative when non-empty) or the blocklist.

    Raises:
        FetchError: DOMAIN_BLOCKED if the hostname is not permitted.
    """
    if options.allowlist_domains:
        if not _matches_domain(hostname, options.allowlist_domains):
            raise FetchError(
                ErrorCode.DOMAIN_BLOCKED, f'Domain "{hostname}" is not in the allowlist'
            )
        return

    if options.blocklist_domains and _matches_domain(hostname, options.blocklist_domains):
        raise FetchError(ErrorCode.DOMAIN_BLOCKED, f'Domain "{hostname}" is blocked')


async def _validate_hop(url: str, options: ResolveOptions) -> None:
    """Run every pre-request check for one hop."""
    url_check = validate_url(url)
    if not url_check.valid:
        raise FetchError(ErrorCode.INVALID_URL, url_check.reason or "Invalid URL")

    hostname = (urlparse(url).hostname or "").rstrip(".")
    check_domain_lists(hostname, options)

    if options.ssrf_protection.enabled:
        ip_check = await validate_resolved_ip(hostname)
        if not ip_check.valid:
            logger.info(f"SSRF check rejected {hostname}")
            raise FetchError(ErrorCode.SSRF_BLOCKED, ip_check.reason or "SSRF check failed")


async def read_body_with_limit(chunks: AsyncIterator[bytes], max_bytes: int) -> str:
    """Consume ``chunks`` until exhausted, failing as soon as ``max_bytes`` is exceeded.

    Decodes as UTF-8, replacing invalid sequences.
    """
    buffer = bytearray()
    async for chunk in chunks:
        if len(buffer) + len(chunk) > max_bytes:
            raise FetchError(
                ErrorCode.BODY_TOO_LARGE,
                f"Response body exceeds maximum of {max_bytes} bytes",
            )
        buffer.extend(chunk)
    return buffer.decode("utf-8", errors="replace")


def _body_decoder(content_encoding: str):
    """zlib decompressor for the response encoding, or None for plain bodies.

    Raises:
        FetchError: FETCH_FAILED for encodings that cannot be inflated here.
    """
    encodings = [e.strip().lower() for e in content_encoding.split(",")]
    encodings = [e for e in encodings if e not in ("", "identity")]
    if not encodings:
        return None
    if len(encodings) > 1 or encodings[0] not in COMPRESSED_ENCODINGS:
        raise FetchError(
            ErrorCode.FETCH_FAILED, f"Unsupported content-encoding: {content_encoding}"
        )
    # +32 auto-detects the gzip or zlib header
    return zlib.decompressobj(zlib.MAX_WBITS | 32)


async def inflate_with_limit(
    chunks: AsyncIterator[bytes], decoder, max_bytes: int
) -> AsyncIterator[bytes]:
    """Inflate compressed ``chunks`` so no single output piece exceeds ``max_bytes + 1``."""
    try:
        async for data in chunks:
            while data:
                piece = decoder.decompress(data, max_bytes + 1)
                if piece:
                    yield piece
                elif data == decoder.unconsumed_tail:
                    break
                data = decoder.unconsumed_tail
        while not decoder.eof:
            piece = decoder.decompress(b"", max_bytes + 1)
            if not piece:
                break
            yield piece
    except zlib.error as e:
        raise FetchError(ErrorCode.FETCH_FAILED, f"Invalid compressed body: {e}") from e


async def _fetch_hop(client: httpx.AsyncClient, url: str, options: ResolveOptions) -> _Hop:
    headers = {
        "User-Agent": options.user_agent,
        "Accept": ACCEPT_HEADER,
        "Accept-Encoding": ACCEPT_ENCODING_HEADER,
    }
    async with client.stream("GET", url, headers=headers, follow_redirects=False) as response:
        status = response.status_code
        if 300 <= status < 400:
            return _Hop(status, location=response.headers.get("location"))

        if not 200 <= status < 300:
            raise FetchError(
                ErrorCode.HTTP_ERROR, f"HTTP {status} {response.reason_phrase}".rstrip()
            )

        content_type = response.headers.get("content-type", "")
        if not any(t in content_type.lower() for t in HTML_CONTENT_TYPES):
            raise FetchError(
                ErrorCode.NOT_HTML,
                f"Expected HTML content-type but got: {content_type or '(empty)'}",
            )

        declared = response.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > options.max_bytes:
            raise FetchError(
                ErrorCode.BODY_TOO_LARGE,
                f"Response body exceeds maximum of {options.max_bytes} bytes",
            )

        decoder = _body_decoder(response.headers.get("content-encoding", ""))
        if decoder is None:
            chunks = response.aiter_bytes()
        else:
            # Raw bytes: httpx would inflate each network chunk in full before it is counted
            chunks = inflate_with_limit(response.aiter_raw(), decoder, options.max_bytes)
        html = await read_body_with_limit(chunks, options.max_bytes)
        return _Hop(status, html=html)


async def _timed_hop(client: httpx.AsyncClient, url: str, options: ResolveOptions) -> _Hop:
    """One hop under the per-hop timeout; expiry cancels the in-flight request."""
    try:
        return await asyncio.wait_for(
            _fetch_hop(client, url, options), timeout=options.timeout_ms / 1000
        )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        raise FetchError(
            ErrorCode.TIMEOUT, f"Request timed out after {options.timeout_ms}ms"
        ) from None
    except httpx.InvalidURL as e:
        raise FetchError(ErrorCode.INVALID_URL, str(e) or "Invalid URL") from e
    except httpx.HTTPError as e:
        logger.warning(f"Fetch failed for {url}: {type(e).__name__}: {e}")
        raise FetchError(ErrorCode.FETCH_FAILED, str(e) or "Network request failed") from e


async def _follow_redirects(
    client: httpx.AsyncClient, url: str, options: ResolveOptions
) -> FetchResult:
    current_url = url
    redirect_count = 0

    while True:
        await _validate_hop(current_url, options)
        hop = await _timed_hop(client, current_url, options)

        if hop.html is not None:
            return FetchResult(html=hop.html, final_url=current_url)

        if not hop.location:
            raise FetchError(
                ErrorCode.REDIRECT_ERROR,
                f"Redirect ({hop.status_code}) with no Location header",
            )

        redirect_count += 1
        if redirect_count > options.max_redirects:
            raise FetchError(
                ErrorCode.TOO_MANY_REDIRECTS,
                f"Exceeded maximum of {options.max_redirects} redirects",
            )

        try:
            next_url = urljoin(current_url, hop.location.strip())
        except ValueError:
            raise FetchError(
                ErrorCode.REDIRECT_ERROR, f"Invalid redirect URL: {hop.location}"
            ) from None

        logger.debug(f"Redirect {redirect_count}/{options.max_redirects}: {current_url} -> {next_url}")
        current_url = next_url


async def fetch_url(
    url: str,
    options: ResolveOptions | Mapping[str, Any] | None = None,
    client: httpx.AsyncClient | None = None,
) -> FetchResult:
    """Fetch ``url`` as HTML, following redirects manually.

    A caller-supplied ``client`` is used as-is (redirects are still disabled
    per request); otherwise a client is created and closed here.

    Raises:
        FetchError: With one of INVALID_URL, DOMAIN_BLOCKED, SSRF_BLOCKED,
            TIMEOUT, FETCH_FAILED, REDIRECT_ERROR, TOO_MANY_REDIRECTS,
            HTTP_ERROR, NOT_HTML or BODY_TOO_LARGE.
    """
    opts = ResolveOptions.coerce(options)
    if client is not None:
        return await _follow_redirects(client, url, opts)

    async with httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(opts.timeout_ms / 1000),
    ) as owned:
        return await _follow_redirects(owned, url, opts)
