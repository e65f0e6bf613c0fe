"""Service configuration from environment variables.

Only the HTTP service reads the environment; the resolver itself is
configured per call through ResolveOptions.
"""

import logging
import os
from collections.abc import Mapping

from linkpeek.api.models import (
    DEFAULT_CACHE_MAX,
    DEFAULT_CACHE_TTL_MS,
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_USER_AGENT,
    CacheOptions,
    ResolveOptions,
    SsrfOptions,
)

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper()
if LOG_LEVEL not in _LOG_LEVELS:
    LOG_LEVEL = "INFO"
PARAM_NAME = os.environ.get("LINKPEEK_PARAM_NAME", "").strip() or "url"


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer, using {default}")
        return default


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    if raw:
        logger.warning(f"Ignoring {name}={raw!r}: not a boolean, using {default}")
    return default


def _domains(env: Mapping[str, str], name: str) -> list[str] | None:
    raw = env.get(name, "")
    domains = [d.strip() for d in raw.split(",") if d.strip()]
    return domains or None


def load_resolve_options(env: Mapping[str, str] | None = None) -> ResolveOptions:
    """Build the service-wide ResolveOptions.

    Caching is on by default for the service (1000 entries, 24h).
    """
    env = os.environ if env is None else env
    return ResolveOptions(
        user_agent=env.get("LINKPEEK_USER_AGENT", "").strip() or DEFAULT_USER_AGENT,
        timeout_ms=max(1, _int(env, "LINKPEEK_TIMEOUT_MS", DEFAULT_TIMEOUT_MS)),
        max_bytes=max(1, _int(env, "LINKPEEK_MAX_BYTES", DEFAULT_MAX_BYTES)),
        max_redirects=max(0, _int(env, "LINKPEEK_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS)),
        allowlist_domains=_domains(env, "LINKPEEK_ALLOWLIST"),
        blocklist_domains=_domains(env, "LINKPEEK_BLOCKLIST"),
        cache=CacheOptions(
            enabled=_bool(env, "LINKPEEK_CACHE_ENABLED", True),
            ttl_ms=max(1, _int(env, "LINKPEEK_CACHE_TTL_MS", DEFAULT_CACHE_TTL_MS)),
            max=max(1, _int(env, "LINKPEEK_CACHE_MAX", DEFAULT_CACHE_MAX * 10)),
        ),
        ssrf_protection=SsrfOptions(enabled=_bool(env, "LINKPEEK_SSRF_PROTECTION", True)),
    )
