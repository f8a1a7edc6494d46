"""
Render orchestration pipeline.

Runs one request through the ordered stages:

    launch -> page -> seed -> load -> readiness -> settle -> postprocess -> print -> teardown

Every stage returns a StageOutcome. Waiting stages (seed, load, readiness,
settle, postprocess) degrade and let the pipeline continue on failure or
timeout, since a partial PDF beats no PDF. Launch, page acquisition and
print are fatal: there is nothing to print without a browser, and no
partial PDF exists if the rasterizer fails. A degraded stage escalates to
fatal only when the browser itself went away.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .browser import RenderSession, render_session
from .config import RenderSettings, get_settings
from .errors import LaunchError, PageError, PrintError, describe_exception
from .postprocess import PostProcessor, build_post_processors
from .types import (
    OutcomeKind,
    RenderFailure,
    RenderRequest,
    RenderResult,
    Stage,
    StageOutcome,
)

logger = logging.getLogger(__name__)

SEED_STORAGE_SCRIPT = """
(entries) => {
    for (const [key, value] of Object.entries(entries)) {
        window.localStorage.setItem(key, value);
    }
    return Object.keys(entries).length;
}
"""

# Ready once the loading marker text is gone from the rendered body
READINESS_SCRIPT = "(marker) => !document.body || !document.body.innerText.includes(marker)"

MEASURE_HEIGHT_SCRIPT = """
() => Math.ceil(Math.max(
    document.documentElement ? document.documentElement.scrollHeight : 0,
    document.body ? document.body.scrollHeight : 0
))
"""

PDF_SIGNATURE = b"%PDF"


@dataclass
class _RenderRun:
    """Mutable state of one pipeline run."""
    request: RenderRequest
    session: RenderSession
    pdf: Optional[bytes] = None

    @property
    def page(self):
        return self.session.page


StageStep = Callable[[_RenderRun], Awaitable[StageOutcome]]


def _seconds(ms: int) -> float:
    return ms / 1000


class RenderPipeline:
    """
    Turns a RenderRequest into a RenderResult.

    Holds no per-request state: every call to render() launches and tears
    down its own browser, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        settings: Optional[RenderSettings] = None,
        post_processors: Optional[List[PostProcessor]] = None,
        playwright_factory: Optional[Callable[[], Any]] = None,
    ):
        self.settings = settings or get_settings()
        if post_processors is None:
            post_processors = build_post_processors(self.settings)
        self.post_processors = post_processors
        self._playwright_factory = playwright_factory

    def _stages(self) -> List[Tuple[Stage, StageStep]]:
        return [
            (Stage.PAGE, self._acquire_page),
            (Stage.SEED, self._seed_storage),
            (Stage.LOAD, self._load_content),
            (Stage.READINESS, self._await_readiness),
            (Stage.SETTLE, self._settle),
            (Stage.POSTPROCESS, self._post_process),
            (Stage.PRINT, self._print),
        ]

    async def render(self, request: RenderRequest) -> RenderResult:
        """
        Run the full pipeline for one request.

        Never raises for browser/content failures: they come back as
        result.error with the failing stage.
        """
        started = time.monotonic()
        result = RenderResult()
        logger.info(f"Starting render (source={request.source}, seed_keys={len(request.storage_seed)})")

        try:
            async with render_session(self.settings, self._playwright_factory) as session:
                self._record(result, StageOutcome.success(Stage.LAUNCH))
                run = _RenderRun(request=request, session=session)

                for stage, step in self._stages():
                    outcome = await step(run)
                    self._record(result, outcome)
                    if outcome.is_fatal:
                        result.error = RenderFailure(outcome.reason, stage, outcome.detail)
                        break

                if result.error is None:
                    result.pdf = run.pdf

            self._record(result, self._teardown_outcome(session))
        except LaunchError as e:
            self._record(result, StageOutcome.fatal(Stage.LAUNCH, e.message, e.detail))
            result.error = RenderFailure(e.message, Stage.LAUNCH, e.detail)

        result.elapsed_ms = int((time.monotonic() - started) * 1000)
        if result.ok:
            degraded = ", ".join(s.value for s in result.degraded_stages) or "none"
            logger.info(
                f"Render finished in {result.elapsed_ms}ms "
                f"({len(result.pdf)} bytes, degraded stages: {degraded})"
            )
        else:
            logger.error(
                f"Render failed at stage '{result.error.stage.value}' after {result.elapsed_ms}ms: "
                f"{result.error.message}"
            )
        return result

    # ------------------------------------------------------------------
    # Outcome helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _record(result: RenderResult, outcome: StageOutcome) -> None:
        result.outcomes.append(outcome)
        message = f"[{outcome.stage.value}] {outcome.kind.value}"
        if outcome.reason:
            message += f": {outcome.reason}"
        if outcome.detail:
            message += f" ({outcome.detail})"

        if outcome.kind == OutcomeKind.DEGRADED:
            logger.warning(message)
        elif outcome.kind == OutcomeKind.FATAL:
            logger.error(message)
        elif outcome.kind == OutcomeKind.SKIPPED:
            logger.debug(message)
        else:
            logger.info(message)

    @staticmethod
    def _degrade(run: _RenderRun, stage: Stage, reason: str, exc: BaseException) -> StageOutcome:
        """Continue past a failed stage unless the browser itself is gone."""
        if isinstance(exc, asyncio.TimeoutError):
            detail = "timed out"
        else:
            detail = describe_exception(exc)
        if not run.session.is_alive():
            return StageOutcome.fatal(stage, "Browser engine failed", detail)
        return StageOutcome.degraded(stage, reason, detail)

    @staticmethod
    def _teardown_outcome(session: RenderSession) -> StageOutcome:
        if session.teardown_error is not None:
            return StageOutcome.degraded(
                Stage.TEARDOWN, session.teardown_error.message, session.teardown_error.detail
            )
        return StageOutcome.success(Stage.TEARDOWN)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _acquire_page(self, run: _RenderRun) -> StageOutcome:
        try:
            await run.session.open_page()
        except PageError as e:
            return StageOutcome.fatal(Stage.PAGE, e.message, e.detail)
        return StageOutcome.success(Stage.PAGE)

    async def _seed_storage(self, run: _RenderRun) -> StageOutcome:
        """Set localStorage on the target origin so the real page starts authenticated."""
        request = run.request
        if not request.wants_seeding:
            return StageOutcome.skipped(Stage.SEED)

        timeout_ms = self.settings.seed_navigation_timeout_ms
        try:
            logger.info(f"Seeding localStorage on {request.origin}")
            await asyncio.wait_for(
                run.page.goto(request.origin, wait_until="domcontentloaded", timeout=timeout_ms),
                timeout=_seconds(timeout_ms),
            )
            count = await asyncio.wait_for(
                run.page.evaluate(SEED_STORAGE_SCRIPT, dict(request.storage_seed)),
                timeout=_seconds(self.settings.script_timeout_ms),
            )
        except Exception as e:
            return self._degrade(run, Stage.SEED, "Storage seeding failed, continuing without it", e)
        return StageOutcome.success(Stage.SEED, f"seeded {count} keys")

    async def _load_content(self, run: _RenderRun) -> StageOutcome:
        request = run.request
        timeout_ms = self.settings.navigation_timeout_ms
        wait_until = self.settings.wait_until

        if request.url:
            try:
                logger.info(f"Navigating to URL: {request.url}")
                response = await asyncio.wait_for(
                    run.page.goto(request.url, wait_until=wait_until, timeout=timeout_ms),
                    timeout=_seconds(timeout_ms),
                )
            except Exception as e:
                return self._degrade(
                    run, Stage.LOAD, "Navigation timed out or failed, continuing with current content", e
                )
            status = getattr(response, "status", None)
            if isinstance(status, int) and status >= 400:
                logger.warning(f"Main document answered HTTP {status}, printing it anyway")
                return StageOutcome.success(Stage.LOAD, f"HTTP {status}")
            return StageOutcome.success(Stage.LOAD)

        try:
            logger.info(f"Setting HTML content ({len(request.html)} chars)")
            await asyncio.wait_for(
                run.page.set_content(request.html, wait_until=wait_until, timeout=timeout_ms),
                timeout=_seconds(timeout_ms),
            )
        except Exception as e:
            return self._degrade(
                run, Stage.LOAD, "setContent timed out or failed, continuing with current content", e
            )
        return StageOutcome.success(Stage.LOAD)

    async def _await_readiness(self, run: _RenderRun) -> StageOutcome:
        marker = self.settings.readiness_marker
        if not marker:
            return StageOutcome.skipped(Stage.READINESS)

        timeout_ms = self.settings.readiness_timeout_ms
        try:
            await asyncio.wait_for(
                run.page.wait_for_function(
                    READINESS_SCRIPT,
                    arg=marker,
                    polling=self.settings.readiness_poll_ms,
                    timeout=timeout_ms,
                ),
                timeout=_seconds(timeout_ms),
            )
        except Exception as e:
            return self._degrade(run, Stage.READINESS, f"Page still showed '{marker}', printing anyway", e)
        return StageOutcome.success(Stage.READINESS)

    async def _settle(self, run: _RenderRun) -> StageOutcome:
        delay_ms = self.settings.settle_delay_ms
        if delay_ms <= 0:
            return StageOutcome.skipped(Stage.SETTLE)
        await asyncio.sleep(_seconds(delay_ms))
        return StageOutcome.success(Stage.SETTLE, f"{delay_ms}ms")

    async def _post_process(self, run: _RenderRun) -> StageOutcome:
        if not self.post_processors:
            return StageOutcome.skipped(Stage.POSTPROCESS)

        failures = []
        last_error: Optional[BaseException] = None
        for hook in self.post_processors:
            try:
                summary = await hook.apply(run.page, self.settings.script_timeout_ms)
                logger.info(f"Post-processor {hook.name} applied: {summary}")
            except Exception as e:
                last_error = e
                failures.append(hook.name)
                logger.warning(f"Post-processor {hook.name} failed: {describe_exception(e)}")

        if last_error is not None:
            return self._degrade(
                run, Stage.POSTPROCESS, f"Post-processors failed: {', '.join(failures)}", last_error
            )
        return StageOutcome.success(Stage.POSTPROCESS)

    async def _print(self, run: _RenderRun) -> StageOutcome:
        try:
            run.pdf = await self._rasterize(run)
        except PrintError as e:
            return StageOutcome.fatal(Stage.PRINT, e.message, e.detail)
        return StageOutcome.success(Stage.PRINT, f"{len(run.pdf)} bytes")

    # ------------------------------------------------------------------
    # Printing
    # ------------------------------------------------------------------

    async def _pdf_options(self, run: _RenderRun) -> Dict[str, Any]:
        """Fixed paper format, or fixed pixel width with the document's own height."""
        options: Dict[str, Any] = {"print_background": True}
        width_px = self.settings.pdf_width_px
        if not width_px:
            options["format"] = self.settings.page_format
            return options

        try:
            height_px = int(await asyncio.wait_for(
                run.page.evaluate(MEASURE_HEIGHT_SCRIPT),
                timeout=_seconds(self.settings.script_timeout_ms),
            ))
        except Exception as e:
            height_px = self.settings.viewport_height
            logger.warning(f"Could not measure document height ({describe_exception(e)}), using {height_px}px")
        options["width"] = f"{width_px}px"
        options["height"] = f"{max(height_px, 1)}px"
        return options

    async def _rasterize(self, run: _RenderRun) -> bytes:
        """
        Print the current page to PDF.

        Raises:
            PrintError: rasterization failed, timed out, or produced no PDF
        """
        timeout_ms = self.settings.print_timeout_ms
        options = await self._pdf_options(run)
        logger.info(f"Generating PDF ({', '.join(f'{k}={v}' for k, v in options.items())})")
        try:
            pdf_bytes = await asyncio.wait_for(run.page.pdf(**options), timeout=_seconds(timeout_ms))
        except asyncio.TimeoutError as e:
            raise PrintError("Failed to generate PDF", f"Rasterization timed out after {timeout_ms}ms") from e
        except Exception as e:
            raise PrintError("Failed to generate PDF", describe_exception(e)) from e

        if not pdf_bytes:
            raise PrintError("Failed to generate PDF", "Renderer returned an empty document")
        if not pdf_bytes.startswith(PDF_SIGNATURE):
            raise PrintError("Failed to generate PDF", "Renderer output is not a PDF")
        return bytes(pdf_bytes)
