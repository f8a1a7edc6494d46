"""
Pydantic models for the render service HTTP surface.

These models define the structure for API requests and responses. The
validator turns a parsed PDFRequest into an immutable RenderRequest.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from .errors import RenderValidationError
from .types import RenderRequest

logger = logging.getLogger(__name__)

MISSING_SOURCE_MESSAGE = "Need url or html"


class PDFRequest(BaseModel):
    """Request body for POST /pdf: { url } or { html } or { url, storageSeed }."""

    url: Optional[str] = Field(None, description="Page to render")
    html: Optional[str] = Field(None, description="Inline document to render when no url is given")
    storageSeed: Optional[Dict[str, str]] = Field(
        None,
        validation_alias=AliasChoices("storageSeed", "localStorage"),
        description="localStorage key/value pairs set on the url's origin before navigating"
    )

    @field_validator("storageSeed", mode="before")
    @classmethod
    def stringify_seed_values(cls, v: Any) -> Any:
        """localStorage only stores strings; encode anything else as JSON text."""
        if not isinstance(v, dict):
            return v
        return {
            str(key): value if isinstance(value, str) else json.dumps(value)
            for key, value in v.items()
        }


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime
    environment: str
    active_renders: int
    max_concurrent: int
    browser_ready: bool = True
    browser_error: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error body of every non-200 response."""
    error: str
    stage: Optional[str] = None
    detail: Optional[Any] = None


def validate_pdf_request(body: PDFRequest) -> RenderRequest:
    """
    Normalize a request body into a RenderRequest.

    Any non-empty html string counts as a document, whitespace included.
    A url that is not http(s) is dropped in favour of html when html was
    also sent, and rejected otherwise.

    Args:
        body: Parsed POST /pdf body

    Returns:
        Immutable RenderRequest

    Raises:
        RenderValidationError: neither url nor html given, or the only source is a non-http(s) url
    """
    url = (body.url or "").strip() or None
    html = body.html or None

    if not url and not html:
        raise RenderValidationError(MISSING_SOURCE_MESSAGE)

    if url and not url.lower().startswith(("http://", "https://")):
        if not html:
            raise RenderValidationError("url must start with http:// or https://")
        logger.warning("Ignoring non-http(s) url, rendering the supplied html instead")
        url = None

    if url and html:
        logger.warning("Both url and html supplied, rendering url and ignoring html")
        html = None

    seed = body.storageSeed or {}
    if seed and not url:
        logger.warning("storageSeed ignored: seeding requires a url")

    return RenderRequest(url=url, html=html, storage_seed=seed)
