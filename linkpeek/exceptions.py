"""Custom exceptions for Linkpeek with machine-readable error codes."""

from enum import Enum


class ErrorCode(str, Enum):
    """Tag carried by every failure Preview."""

    INVALID_URL = "INVALID_URL"
    DOMAIN_BLOCKED = "DOMAIN_BLOCKED"
    SSRF_BLOCKED = "SSRF_BLOCKED"
    TIMEOUT = "TIMEOUT"
    FETCH_FAILED = "FETCH_FAILED"
    REDIRECT_ERROR = "REDIRECT_ERROR"
    TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"
    HTTP_ERROR = "HTTP_ERROR"
    NOT_HTML = "NOT_HTML"
    BODY_TOO_LARGE = "BODY_TOO_LARGE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    # Endpoint-level codes, never produced by the resolver
    MISSING_URL = "MISSING_URL"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LinkpeekError(Exception):
    """Base exception for Linkpeek errors.

    ``message`` is what ends up in a failure Preview, so it must be safe to
    show to callers.
    """

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FetchError(LinkpeekError):
    """A fetch step failed; ``code`` says which one."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code

    def __repr__(self) -> str:
        return f"FetchError({self.code.value}, {self.message!r})"


class InvalidOptionsError(LinkpeekError):
    """Resolve options could not be validated."""

    def __init__(self, reason: str):
        super().__init__(f"Invalid resolve options: {reason}")
