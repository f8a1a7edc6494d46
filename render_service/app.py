"""
Render Service - FastAPI application for PDF rendering.

Provides endpoints for converting a web page (url) or an inline document
(html) to PDF using Playwright/Chromium. Each request gets its own browser;
the number of simultaneous browsers is capped by a semaphore.
"""

import asyncio
import logging
import time
from datetime import datetime
from io import BytesIO
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import get_settings, validate_config_on_startup
from .errors import RenderValidationError, describe_exception
from .models import ErrorResponse, HealthResponse, PDFRequest, validate_pdf_request
from .pipeline import RenderPipeline
from .types import RenderRequest

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Validate configuration at startup
validate_config_on_startup()

app = FastAPI(
    title="PDF Render Service",
    version=__version__,
    description="Renders web pages and HTML documents to PDF using Playwright/Chromium"
)

MAX_CONCURRENT_RENDERS = settings.max_concurrent_renders

# Semaphore for admission control
_render_semaphore = asyncio.Semaphore(MAX_CONCURRENT_RENDERS)

# Browser readiness state, set by the startup self-check
_browser_ready = False
_browser_error: Optional[str] = None

SELF_CHECK_HTML = "<html><body><h1>Test</h1></body></html>"
PDF_HEADERS = {"Content-Disposition": "inline; filename=report.pdf"}


def get_pipeline() -> RenderPipeline:
    """Pipeline used by the /pdf endpoint (overridden in tests)."""
    return RenderPipeline(get_settings())


def _active_renders() -> int:
    return MAX_CONCURRENT_RENDERS - _render_semaphore._value


# ============================================================================
# Middleware
# ============================================================================

def _body_too_large(limit: int) -> HTTPException:
    return HTTPException(status_code=413, detail=f"Request body too large (limit {limit} bytes)")


class BodySizeLimitMiddleware:
    """
    Reject request bodies above MAX_BODY_BYTES.

    A declared Content-Length over the limit is refused before anything is
    read. Bodies without one (chunked uploads) are counted as they arrive and
    the read is aborted with a 413 as soon as the running total passes the
    limit.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = get_settings().max_body_bytes
        content_length = Headers(scope=scope).get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > limit:
            logger.warning(f"Rejecting {content_length} byte body (limit {limit})")
            response = JSONResponse(status_code=413, content={"error": _body_too_large(limit).detail})
            await response(scope, receive, send)
            return

        received = 0
        response_started = False

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    logger.warning(f"Rejecting streamed body after {received} bytes (limit {limit})")
                    raise _body_too_large(limit)
            return message

        async def tracking_send(message):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except StarletteHTTPException as e:
            # Raised from limited_receive outside any route's exception handling
            if e.status_code != 413 or response_started:
                raise
            response = JSONResponse(status_code=413, content={"error": e.detail})
            await response(scope, receive, send)


app.add_middleware(BodySizeLimitMiddleware)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request on arrival and on completion."""
    started_at = time.monotonic()
    client = request.headers.get("x-forwarded-for") or (
        request.client.host if request.client else "unknown"
    )
    logger.info(f"-> {request.method} {request.url.path} from {client}")
    response = await call_next(request)
    elapsed_ms = int((time.monotonic() - started_at) * 1000)
    logger.info(f"<- {request.method} {request.url.path} {response.status_code} ({elapsed_ms}ms)")
    return response


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or wrongly typed fields."""
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request body", "detail": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Keep HTTP errors in the same {"error": ...} shape as render errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ============================================================================
# Startup Event - Validate Browser
# ============================================================================

@app.on_event("startup")
async def validate_browser_on_startup():
    """
    Render a tiny document through the full pipeline on startup.

    The service won't report as healthy if Chromium can't actually
    produce PDFs. A failure is logged, the process keeps running.
    """
    global _browser_ready, _browser_error

    current = get_settings()
    logger.info(f"PDF render service starting on port {current.port}")
    logger.info(f"Environment: {current.environment}")

    if not current.validate_browser_on_startup:
        logger.info("Browser self-check disabled")
        _browser_ready = True
        _browser_error = None
        return

    logger.info("Validating Chromium with a test render...")
    try:
        result = await get_pipeline().render(RenderRequest(html=SELF_CHECK_HTML))
    except Exception as e:
        _browser_ready = False
        _browser_error = f"Self-check render raised: {describe_exception(e)}"
        logger.error(f"❌ Browser validation failed: {_browser_error}")
        logger.error("PDF generation will not work until this is resolved.")
        return

    if result.ok:
        _browser_ready = True
        _browser_error = None
        logger.info(f"✅ Browser validation successful - generated {len(result.pdf)} byte test PDF")
    else:
        _browser_ready = False
        _browser_error = f"{result.error.message} ({result.error.stage.value}): {result.error.detail}"
        logger.error(f"❌ Browser validation failed: {_browser_error}")
        logger.error("PDF generation will not work until this is resolved.")


# ============================================================================
# Liveness / Health
# ============================================================================

@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    """Liveness check."""
    return "PDF render service is running"


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint for container orchestration.

    Returns service status, capacity information, and browser readiness.
    Returns HTTP 503 if the startup self-check failed.
    """
    health = HealthResponse(
        status="healthy" if _browser_ready else "unhealthy",
        timestamp=datetime.utcnow(),
        environment=get_settings().environment,
        active_renders=_active_renders(),
        max_concurrent=MAX_CONCURRENT_RENDERS,
        browser_ready=_browser_ready,
        browser_error=_browser_error,
    )
    if not _browser_ready:
        return JSONResponse(status_code=503, content=health.model_dump(mode="json"))
    return health


# ============================================================================
# PDF Endpoint
# ============================================================================

@app.post(
    "/pdf",
    responses={
        200: {"content": {"application/pdf": {}}, "description": "Rendered PDF"},
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def render_pdf(
    body: Optional[PDFRequest] = None,
    pipeline: RenderPipeline = Depends(get_pipeline),
):
    """
    Render a url or inline html to PDF.

    Args:
        body: { url } or { html } or { url, storageSeed }

    Returns:
        StreamingResponse with PDF binary data

    Raises:
        400 for missing/invalid input, 500 when launch or print fails,
        503 when all render slots are busy
    """
    try:
        render_request = validate_pdf_request(body or PDFRequest())
    except RenderValidationError as e:
        logger.info(f"Rejected render request: {e.message}")
        return JSONResponse(status_code=e.status_code, content={"error": e.message})

    if _render_semaphore.locked():
        logger.warning("Render service overloaded, rejecting request")
        return JSONResponse(
            status_code=503,
            content={"error": "Service overloaded. Too many concurrent PDF renders."}
        )

    async with _render_semaphore:
        result = await pipeline.render(render_request)

    if not result.ok:
        return JSONResponse(
            status_code=500,
            content=result.error.to_dict(include_detail=get_settings().expose_error_detail)
        )

    logger.info("PDF generated successfully, sending response")
    return StreamingResponse(
        BytesIO(result.pdf),
        media_type="application/pdf",
        headers=PDF_HEADERS
    )
