"""Composable building blocks for the voxredact redaction pipeline."""

from .config import (
    PageResult,
    PageStatus,
    ProgressEvent,
    RunConfig,
    RunResult,
    RunStatus,
)
from .context import RunContext
from .coordinator import CommittedRun, DocumentCoordinator, DocumentWriter
from .pages import PageOutcome, PagePipeline

__all__ = [
    "RunConfig",
    "PageResult",
    "PageStatus",
    "ProgressEvent",
    "RunResult",
    "RunStatus",
    "RunContext",
    "PageOutcome",
    "PagePipeline",
    "CommittedRun",
    "DocumentCoordinator",
    "DocumentWriter",
]
