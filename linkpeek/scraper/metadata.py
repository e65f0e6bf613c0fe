"""Open Graph / Twitter Card / standard meta extraction."""

import logging
import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from linkpeek.api.models import PreviewImage

logger = logging.getLogger(__name__)

# Fallback chains, highest priority first
TITLE_KEYS = ("og:title", "twitter:title")
DESCRIPTION_KEYS = ("og:description", "twitter:description", "description")
IMAGE_KEYS = ("og:image", "twitter:image")
CANONICAL_META_KEYS = ("og:url",)
FAVICON_RELS = ("icon", "shortcut icon", "apple-touch-icon")

_LEADING_DIGITS = re.compile(r"\s*(\d+)")


@dataclass(frozen=True)
class PageMetadata:
    """Preview fields extracted from one HTML document."""

    title: str | None = None
    description: str | None = None
    site_name: str | None = None
    image: PreviewImage | None = None
    canonical_url: str | None = None
    favicon: str | None = None


def _clean(value: object) -> str | None:
    """Trim; empty means absent."""
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _meta(soup: BeautifulSoup, key: str) -> str | None:
    """Content of ``<meta property=key>``, else ``<meta name=key>``."""
    for attr in ("property", "name"):
        for tag in soup.find_all("meta", attrs={attr: key}):
            content = _clean(tag.get("content"))
            if content:
                return content
    return None


def _first_meta(soup: BeautifulSoup, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = _meta(soup, key)
        if value:
            return value
    return None


def _link_href(soup: BeautifulSoup, rel: str) -> str | None:
    """href of the first ``<link>`` whose rel attribute is exactly ``rel``."""
    for tag in soup.find_all("link", href=True):
        value = tag.get("rel")
        if isinstance(value, list):
            value = " ".join(value)
        if isinstance(value, str) and value.strip().lower() == rel:
            href = _clean(tag.get("href"))
            if href:
                return href
    return None


def to_absolute(raw: str | None, base_url: str) -> str | None:
    """Resolve ``raw`` against ``base_url``; anything not absolute http(s) is None."""
    raw = _clean(raw)
    if not raw:
        return None
    try:
        resolved = urljoin(base_url, raw)
        parsed = urlparse(resolved)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return resolved


def _positive_int(raw: str | None) -> int | None:
    if not raw:
        return None
    match = _LEADING_DIGITS.match(raw)
    if not match:
        return None
    value = int(match.group(1))
    return value if value > 0 else None


def _title(soup: BeautifulSoup) -> str | None:
    title = _first_meta(soup, TITLE_KEYS)
    if title:
        return title
    tag = soup.find("title")
    return _clean(tag.get_text()) if isinstance(tag, Tag) else None


def _image(soup: BeautifulSoup, base_url: str) -> PreviewImage | None:
    url = to_absolute(_first_meta(soup, IMAGE_KEYS), base_url)
    if not url:
        return None
    return PreviewImage(
        url=url,
        width=_positive_int(_meta(soup, "og:image:width")),
        height=_positive_int(_meta(soup, "og:image:height")),
    )


def _canonical(soup: BeautifulSoup, base_url: str) -> str | None:
    """Canonical URL, or None when it is the base URL itself."""
    canonical = to_absolute(_link_href(soup, "canonical"), base_url) or to_absolute(
        _first_meta(soup, CANONICAL_META_KEYS), base_url
    )
    if not canonical or canonical == base_url:
        return None
    return canonical


def _favicon(soup: BeautifulSoup, base_url: str) -> str | None:
    for rel in FAVICON_RELS:
        href = _link_href(soup, rel)
        if href:
            return to_absolute(href, base_url)
    return None


def parse_html(html: str, base_url: str) -> PageMetadata:
    """Extract preview metadata from ``html`` served at ``base_url``.

    Priority per field:
    - title: og:title > twitter:title > <title>
    - description: og:description > twitter:description > meta[name=description]
    - site_name: og:site_name
    - image: og:image > twitter:image, with og:image:width/height
    - canonical_url: <link rel=canonical> > og:url, omitted when equal to base_url
    - favicon: rel=icon > rel="shortcut icon" > rel=apple-touch-icon

    Relative URLs are resolved against ``base_url``. Never raises on bad markup.
    """
    soup = BeautifulSoup(html, "html.parser")

    metadata = PageMetadata(
        title=_title(soup),
        description=_first_meta(soup, DESCRIPTION_KEYS),
        site_name=_meta(soup, "og:site_name"),
        image=_image(soup, base_url),
        canonical_url=_canonical(soup, base_url),
        favicon=_favicon(soup, base_url),
    )
    logger.debug(
        f"Parsed {base_url}: title={'yes' if metadata.title else 'no'}, "
        f"image={'yes' if metadata.image else 'no'}"
    )
    return metadata
