"""
Render Service Configuration Module

Centralized configuration management with Pydantic validation.
All environment variables are validated at startup to catch misconfigurations early.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class RenderSettings(BaseSettings):
    """
    Render service configuration with validation.

    All settings can be overridden via environment variables
    (NAVIGATION_TIMEOUT_MS, PAGE_FORMAT, ...).
    """

    # === Server ===
    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=10000, ge=1, le=65535, description="Listen port")
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )
    log_level: str = Field(default="INFO", description="Root log level")
    max_body_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Maximum accepted request body size in bytes"
    )

    # === Concurrency ===
    max_concurrent_renders: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum concurrent browser instances (1-50)"
    )

    # === Browser ===
    playwright_headless: bool = Field(default=True, description="Run Chromium headless")
    chromium_executable_path: Optional[str] = Field(
        default=None,
        description="Explicit Chromium binary (defaults to Playwright's bundled build)"
    )
    viewport_width: int = Field(default=1280, ge=320, le=7680)
    viewport_height: int = Field(default=800, ge=240, le=4320)
    validate_browser_on_startup: bool = Field(
        default=True,
        description="Render a test document on startup to verify Chromium works"
    )

    # === Timeouts (milliseconds) ===
    navigation_timeout_ms: int = Field(
        default=45000,
        ge=1,
        le=300000,
        description="Main navigation / setContent timeout"
    )
    seed_navigation_timeout_ms: int = Field(
        default=15000,
        ge=1,
        le=120000,
        description="Origin navigation timeout used before seeding localStorage"
    )
    script_timeout_ms: int = Field(
        default=10000,
        ge=1,
        le=120000,
        description="Timeout for in-page scripts (seeding, post-processing)"
    )
    readiness_timeout_ms: int = Field(
        default=30000,
        ge=1,
        le=300000,
        description="Maximum time to wait for the readiness marker to disappear"
    )
    readiness_poll_ms: int = Field(default=250, ge=10, le=10000)
    settle_delay_ms: int = Field(
        default=2000,
        ge=0,
        le=30000,
        description="Fixed pause before printing (0 disables)"
    )
    print_timeout_ms: int = Field(
        default=60000,
        ge=1,
        le=300000,
        description="PDF rasterization timeout"
    )

    # === Content loading ===
    wait_until: str = Field(
        default="load",
        description="Playwright load state for navigation: load, domcontentloaded, networkidle, commit"
    )
    readiness_marker: Optional[str] = Field(
        default=None,
        description="Text whose absence from the body means the page is ready (unset disables the wait)"
    )

    # === Printing ===
    page_format: str = Field(default="A4", description="Paper format passed to page.pdf")
    pdf_width_px: Optional[int] = Field(
        default=None,
        ge=100,
        le=20000,
        description="Print at a fixed pixel width with computed height instead of a paper format"
    )

    # === DOM post-processing ===
    post_processors: str = Field(
        default="",
        description="Comma-separated post-processing hooks to run before printing"
    )
    header_selector: str = Field(default="header", description="Element removed by strip-header")
    root_selectors: str = Field(
        default="html,body,#root",
        description="Comma-separated containers whose top margin/padding is zeroed"
    )
    top_padding: str = Field(default="24px", description="Top padding applied to the body")

    # === Error reporting ===
    expose_error_detail: bool = Field(
        default=True,
        description="Include engine diagnostics in 500 responses"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of: {', '.join(sorted(allowed))}")
        return v_lower

    @field_validator("wait_until")
    @classmethod
    def validate_wait_until(cls, v: str) -> str:
        """Validate the load state is one Playwright understands."""
        allowed = {"load", "domcontentloaded", "networkidle", "commit"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"wait_until must be one of: {', '.join(sorted(allowed))}")
        return v_lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return v_upper

    @field_validator("readiness_marker", "chromium_executable_path")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty environment values as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def post_processor_names(self) -> List[str]:
        """Parse post-processor names into a list."""
        return [name.strip() for name in self.post_processors.split(",") if name.strip()]

    @property
    def root_selector_list(self) -> List[str]:
        return [sel.strip() for sel in self.root_selectors.split(",") if sel.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration is suitable for production.

        Returns list of warning/error messages.
        """
        from .postprocess import POST_PROCESSORS

        issues = []

        unknown = [name for name in self.post_processor_names if name not in POST_PROCESSORS]
        if unknown:
            issues.append(f"CRITICAL: Unknown post-processors: {', '.join(unknown)}")

        if self.is_production:
            if self.expose_error_detail:
                issues.append("WARNING: EXPOSE_ERROR_DETAIL enabled in production")
            if not self.playwright_headless:
                issues.append("WARNING: Running headful Chromium in production")

        return issues

    class Config:
        env_prefix = ""  # No prefix, use exact env var names
        case_sensitive = False  # PORT = port


@lru_cache()
def get_settings() -> RenderSettings:
    """
    Get cached settings instance.

    Settings are loaded once and cached. Use this function to access
    configuration throughout the app.
    """
    return RenderSettings()


def validate_config_on_startup() -> None:
    """
    Validate configuration at application startup.

    Raises ValueError with details if config is invalid.
    Logs warnings for non-critical issues.
    """
    try:
        settings = get_settings()
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")

    issues = settings.validate_production_config()

    for issue in issues:
        if issue.startswith("CRITICAL"):
            raise ValueError(issue)
        else:
            logger.warning(issue)

    logger.info(f"Configuration loaded: environment={settings.environment}")
    logger.info(f"  max_concurrent_renders={settings.max_concurrent_renders}")
    logger.info(
        f"  timeouts: navigation={settings.navigation_timeout_ms}ms "
        f"readiness={settings.readiness_timeout_ms}ms "
        f"settle={settings.settle_delay_ms}ms print={settings.print_timeout_ms}ms"
    )
    logger.info(f"  page_format={settings.page_format} pdf_width_px={settings.pdf_width_px}")
    logger.info(f"  post_processors={settings.post_processor_names or 'none'}")
