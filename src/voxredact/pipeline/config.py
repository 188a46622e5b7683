"""Configuration primitives and result payloads for the voxredact pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


@dataclass
class RunConfig:
    """Runtime configuration for detection, rendering, and page streaming."""

    lang: str = "eng"
    psm: int = 3
    dpi: int = 200
    min_confidence: float = 0.0
    # Max decoded pages alive at once (in flight + waiting to be emitted)
    window: int = 2
    box_inflation_px: int = 2
    fill_rgb: Tuple[int, int, int] = (0, 0, 0)
    jpeg_quality: int = 95
    on_detection_failure: str = "passthrough"  # 'passthrough' or 'exclude'
    track_reasons: bool = True
    instrument: bool = True

    def __post_init__(self) -> None:
        if self.window < 1:
            raise ValueError("window must be at least 1")
        if self.on_detection_failure not in {"passthrough", "exclude"}:
            raise ValueError(
                "on_detection_failure must be 'passthrough' or 'exclude'"
            )


class PageStatus(str, Enum):
    """Per-page state machine. ``DONE`` and ``FAILED`` are terminal."""

    PENDING = "pending"
    DETECTING = "detecting"
    CLASSIFYING = "classifying"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PageResult(BaseModel):
    """Per-page output payload."""

    page_index: int
    status: PageStatus = PageStatus.PENDING
    tokens: int = 0
    boxes_applied: int = 0
    boxes: Optional[List[Dict[str, object]]] = None
    redacted: bool = False
    flagged: bool = False
    excluded: bool = False
    error: Optional[str] = None
    timings: Optional[Dict[str, float]] = None


class ProgressEvent(BaseModel):
    """Page ``page_index`` of ``page_count`` entered ``status`` during run ``sequence``."""

    sequence: int
    page_index: int
    page_count: int
    status: PageStatus


class RunResult(BaseModel):
    """Outcome of one coordinator run."""

    sequence: int
    categories: List[str] = Field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    page_count: int = 0
    pages: List[PageResult] = Field(default_factory=list)
    output: Optional[str] = None
    error: Optional[str] = None

    @property
    def unredacted_pages(self) -> List[int]:
        """Indices of pages that could not be analyzed or painted."""
        return [p.page_index for p in self.pages if p.flagged]

    @property
    def summary(self) -> str:
        if self.status == RunStatus.CANCELLED:
            return "Run superseded by a newer command"
        if self.status == RunStatus.FAILED:
            return f"Run failed: {self.error}"
        failed = len(self.unredacted_pages)
        if failed:
            return f"{failed} of {self.page_count} pages could not be analyzed"
        return f"{self.page_count} of {self.page_count} pages processed"


__all__ = [
    "RunConfig",
    "PageStatus",
    "RunStatus",
    "PageResult",
    "ProgressEvent",
    "RunResult",
]
