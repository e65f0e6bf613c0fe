"""Pydantic models for previews, resolver options and cache stats."""

from collections.abc import Mapping
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from linkpeek.exceptions import ErrorCode, InvalidOptionsError

DEFAULT_USER_AGENT = "linkpeek/0.1 (+https://github.com/linkpeek)"
DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_MAX_BYTES = 1_048_576  # 1 MB
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_CACHE_TTL_MS = 24 * 60 * 60 * 1000  # 24 hours
DEFAULT_CACHE_MAX = 100

# Fields that only a successful Preview may carry
_METADATA_FIELDS = ("canonical_url", "title", "description", "site_name", "image", "favicon")


class _CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PreviewImage(_CamelModel):
    """Preview image with optional pixel dimensions."""

    model_config = ConfigDict(frozen=True)

    url: str
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)


class PreviewError(_CamelModel):
    """Typed failure attached to a Preview."""

    model_config = ConfigDict(frozen=True)

    code: ErrorCode
    message: str


class Preview(_CamelModel):
    """Result of one resolution attempt: either success or failure, never both."""

    model_config = ConfigDict(frozen=True)

    url: str
    canonical_url: str | None = None
    title: str | None = None
    description: str | None = None
    site_name: str | None = None
    image: PreviewImage | None = None
    favicon: str | None = None
    fetched_at: str | None = None
    error: PreviewError | None = None

    @field_validator(
        "canonical_url", "title", "description", "site_name", "favicon", mode="before"
    )
    @classmethod
    def blank_is_absent(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip() or None
        return v

    @model_validator(mode="after")
    def check_single_state(self) -> "Preview":
        if self.error is not None:
            present = [f for f in _METADATA_FIELDS if getattr(self, f) is not None]
            if present:
                raise ValueError(
                    f"failure Preview cannot carry metadata: {', '.join(present)}"
                )
        return self

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting absent fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CacheOptions(_CamelModel):
    """Result cache configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    ttl_ms: int = Field(default=DEFAULT_CACHE_TTL_MS, gt=0)
    max: int = Field(default=DEFAULT_CACHE_MAX, gt=0)

    @property
    def fingerprint(self) -> tuple[int, int]:
        """Caches are shared only between identical (max, ttl_ms) configurations."""
        return (self.max, self.ttl_ms)


class SsrfOptions(_CamelModel):
    """SSRF protection switch (DNS safety check at every hop)."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True


class ResolveOptions(_CamelModel):
    """Per-invocation resolver configuration."""

    model_config = ConfigDict(frozen=True)

    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    max_bytes: int = Field(default=DEFAULT_MAX_BYTES, gt=0)
    max_redirects: int = Field(default=DEFAULT_MAX_REDIRECTS, ge=0)
    allowlist_domains: list[str] | None = None
    blocklist_domains: list[str] | None = None
    cache: CacheOptions | None = None
    ssrf_protection: SsrfOptions = Field(default_factory=SsrfOptions)

    @field_validator("allowlist_domains", "blocklist_domains")
    @classmethod
    def normalize_domains(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        return [d.strip().lower().strip(".") for d in v if d and d.strip(". ")]

    @classmethod
    def coerce(
        cls, options: "ResolveOptions | Mapping[str, Any] | None"
    ) -> "ResolveOptions":
        """Merge caller-supplied options over the defaults.

        Raises:
            InvalidOptionsError: If a supplied value fails validation.
        """
        if options is None:
            return cls()
        if isinstance(options, ResolveOptions):
            return options
        try:
            return cls.model_validate(dict(options))
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise InvalidOptionsError(", ".join(fields) or "malformed") from e


class CacheStats(BaseModel):
    """Cache stats for debugging."""

    size: int
    hits: int
    misses: int
