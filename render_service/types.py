"""
Data types for the render pipeline.

- RenderRequest: normalized, immutable input of one render
- Stage / OutcomeKind / StageOutcome: per-stage result threaded through the pipeline
- RenderFailure / RenderResult: PDF bytes or a structured error, plus every stage outcome
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit


class Stage(str, Enum):
    """Pipeline stages in execution order."""
    LAUNCH = "launch"
    PAGE = "page"
    SEED = "seed"
    LOAD = "load"
    READINESS = "readiness"
    SETTLE = "settle"
    POSTPROCESS = "postprocess"
    PRINT = "print"
    TEARDOWN = "teardown"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"    # Stage failed, pipeline continues with current state
    FATAL = "fatal"          # Pipeline stops, session is torn down
    SKIPPED = "skipped"      # Conditional stage not activated


@dataclass(frozen=True)
class RenderRequest:
    """
    A validated render request.

    At most one content source is used: url wins over html when both are set.
    """

    url: Optional[str] = None
    html: Optional[str] = None
    storage_seed: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the seed so the request stays immutable after parsing
        object.__setattr__(self, "storage_seed", MappingProxyType(dict(self.storage_seed)))

    @property
    def source(self) -> str:
        return "url" if self.url else "html"

    @property
    def origin(self) -> Optional[str]:
        """scheme://host[:port] of the target URL."""
        if not self.url:
            return None
        parts = urlsplit(self.url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def wants_seeding(self) -> bool:
        return bool(self.url and self.storage_seed)


@dataclass(frozen=True)
class StageOutcome:
    """Result of one pipeline stage."""

    stage: Stage
    kind: OutcomeKind
    reason: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, stage: Stage, reason: Optional[str] = None) -> "StageOutcome":
        return cls(stage, OutcomeKind.SUCCESS, reason)

    @classmethod
    def degraded(cls, stage: Stage, reason: str, detail: Optional[str] = None) -> "StageOutcome":
        return cls(stage, OutcomeKind.DEGRADED, reason, detail)

    @classmethod
    def fatal(cls, stage: Stage, reason: str, detail: Optional[str] = None) -> "StageOutcome":
        return cls(stage, OutcomeKind.FATAL, reason, detail)

    @classmethod
    def skipped(cls, stage: Stage, reason: Optional[str] = None) -> "StageOutcome":
        return cls(stage, OutcomeKind.SKIPPED, reason)

    @property
    def is_fatal(self) -> bool:
        return self.kind == OutcomeKind.FATAL

    @property
    def is_degraded(self) -> bool:
        return self.kind == OutcomeKind.DEGRADED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "stage": self.stage.value,
            "kind": self.kind.value,
            "reason": self.reason,
            "detail": self.detail,
        }


@dataclass
class RenderFailure:
    """Structured error of a failed render."""

    message: str
    stage: Stage
    detail: Optional[str] = None

    def to_dict(self, include_detail: bool = True) -> Dict[str, Any]:
        body = {"error": self.message, "stage": self.stage.value}
        if include_detail and self.detail:
            body["detail"] = self.detail
        return body


@dataclass
class RenderResult:
    """Outcome of a full pipeline run."""

    pdf: Optional[bytes] = None
    error: Optional[RenderFailure] = None
    outcomes: List[StageOutcome] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.pdf is not None and self.error is None

    @property
    def degraded_stages(self) -> List[Stage]:
        """Stages that failed but let the pipeline continue."""
        return [o.stage for o in self.outcomes if o.is_degraded]

    def outcome_for(self, stage: Stage) -> Optional[StageOutcome]:
        """Latest recorded outcome of a stage, if it ran."""
        for outcome in reversed(self.outcomes):
            if outcome.stage == stage:
                return outcome
        return None
