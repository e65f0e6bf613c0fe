"""API endpoints for link preview resolution."""

import logging
import traceback

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from linkpeek.config import PARAM_NAME, load_resolve_options
from linkpeek.exceptions import ErrorCode
from linkpeek.resolver.resolver import PreviewResolver

logger = logging.getLogger(__name__)
router = APIRouter()

resolver = PreviewResolver()
resolve_options = load_resolve_options()

# 1 hour in browsers, 24 hours in shared caches
SUCCESS_CACHE_CONTROL = "public, max-age=3600, s-maxage=86400"
FAILURE_CACHE_CONTROL = "no-store"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def error_body(code: ErrorCode, message: str) -> dict:
    return {"error": {"code": code.value, "message": message}}


@router.get("/preview")
async def get_preview(request: Request) -> JSONResponse:
    """Resolve the URL in the query string into a serialized Preview.

    200 on success, 502 on a typed failure, 400 without a URL, 500 on any
    unexpected fault.
    """
    target_url = request.query_params.get(PARAM_NAME)
    if not target_url:
        return JSONResponse(
            status_code=400,
            content=error_body(ErrorCode.MISSING_URL, f'Missing "{PARAM_NAME}" query parameter'),
            headers={"Cache-Control": FAILURE_CACHE_CONTROL},
        )

    try:
        preview = await resolver.resolve(target_url, resolve_options)
    except Exception as e:
        logger.error(
            "preview_internal_error",
            extra={"exc_type": type(e).__name__, "detail": traceback.format_exc()},
        )
        return JSONResponse(
            status_code=500,
            content=error_body(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred"),
            headers={"Cache-Control": FAILURE_CACHE_CONTROL},
        )

    if preview.is_failure:
        return JSONResponse(
            status_code=502,
            content=preview.to_dict(),
            headers={"Cache-Control": FAILURE_CACHE_CONTROL},
        )
    return JSONResponse(
        status_code=200,
        content=preview.to_dict(),
        headers={"Cache-Control": SUCCESS_CACHE_CONTROL},
    )


@router.options("/preview")
async def preview_preflight() -> Response:
    """CORS preflight; never touches the resolver."""
    return Response(status_code=204, headers=CORS_HEADERS)


@router.get("/health/ready")
async def health_ready() -> dict:
    """Readiness plus stats for every preview cache owned by the service."""
    return {
        "ready": True,
        "ssrf_protection": resolve_options.ssrf_protection.enabled,
        "caches": {name: stats.model_dump() for name, stats in resolver.stats().items()},
    }
