"""Entry points that wire the voxredact pipeline together.

The implementation lives in ``voxredact.pipeline`` (page streaming and run
coordination), ``voxredact.voice`` (commands) and ``voxredact.policy`` (the
active policy). This module assembles them for the CLI and the API.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union

from .ocr import TesseractDetector, TextDetector, open_pages
from .pipeline import (
    DocumentCoordinator,
    PagePipeline,
    ProgressEvent,
    RunConfig,
    RunResult,
)
from .pipeline.coordinator import DocumentWriter, ProgressFn
from .policy import Category, PolicyStore
from .redact import PdfWriter
from .voice import CommandInterpreter


def build_coordinator(
    cfg: RunConfig,
    output_path: Optional[Union[str, Path]] = None,
    store: Optional[PolicyStore] = None,
    detector: Optional[TextDetector] = None,
    writer: Optional[DocumentWriter] = None,
) -> DocumentCoordinator:
    """Create a coordinator with a Tesseract detector and a PDF writer."""
    if detector is None:
        detector = TesseractDetector(
            lang=cfg.lang, psm=cfg.psm, min_confidence=cfg.min_confidence
        )
    if writer is None and output_path is not None:
        writer = PdfWriter(output_path, quality=cfg.jpeg_quality)
    return DocumentCoordinator(PagePipeline(detector, cfg), writer=writer, store=store)


def redact_path(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    cfg: RunConfig,
    *,
    command: Optional[str] = None,
    categories: Iterable[Category] = (),
    store: Optional[PolicyStore] = None,
    detector: Optional[TextDetector] = None,
    progress: Optional[ProgressFn] = None,
) -> RunResult:
    """Redact one input under a command and/or explicit categories.

    Explicit ``categories`` are merged with whatever ``command`` matches. A
    command that does not match leaves the store's policy unchanged.
    """
    store = store or PolicyStore()
    if command:
        CommandInterpreter().apply(command, store)
    extra = set(categories)
    if extra:
        store.set(set(store.snapshot().categories) | extra)
    document = open_pages(input_path, dpi=cfg.dpi)
    coordinator = build_coordinator(cfg, output_path, store=store, detector=detector)
    if progress is not None:
        coordinator.subscribe_progress(progress)
    return coordinator.run(document, store.snapshot())


__all__ = [
    "RunConfig",
    "RunResult",
    "ProgressEvent",
    "build_coordinator",
    "redact_path",
]
