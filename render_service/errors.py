"""
Exception taxonomy for the render pipeline.

Launch, page acquisition and print failures abort a request. Degraded
stages never raise; they are recorded as StageOutcome values instead.
"""

from typing import Optional


class RenderError(Exception):
    """Base class for render failures carrying the stage they happened in."""

    stage: str = "render"
    status_code: int = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class RenderValidationError(RenderError):
    """Request is missing or carries unusable input."""

    stage = "validate"
    status_code = 400


class LaunchError(RenderError):
    """Browser engine could not be started."""

    stage = "launch"


class PageError(RenderError):
    """Browser started but no usable page could be opened."""

    stage = "page"


class PrintError(RenderError):
    """PDF rasterization failed; there is no partial PDF to fall back to."""

    stage = "print"


class TeardownError(RenderError):
    """Releasing the browser failed. Logged, never surfaced."""

    stage = "teardown"


def describe_exception(exc: BaseException) -> str:
    """One-line diagnostic for an engine exception."""
    text = str(exc).strip()
    name = type(exc).__name__
    if not text:
        return name
    return f"{name}: {text.splitlines()[0]}"
