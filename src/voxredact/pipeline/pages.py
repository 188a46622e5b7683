"""Bounded-memory page streaming: detect, classify, render, emit in order."""

from __future__ import annotations

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set

from PIL import Image

from voxredact.classify import classify, matching_categories
from voxredact.errors import DetectionFailed, RenderFailed, RunCancelled
from voxredact.logging import get_logger
from voxredact.ocr import TextDetector, Token
from voxredact.policy import ActivePolicy
from voxredact.redact import render

from .config import PageResult, PageStatus, ProgressEvent, RunConfig
from .context import RunContext

logger = get_logger(__name__)

EmitFn = Callable[[int, Image.Image], None]
ProgressFn = Callable[[ProgressEvent], None]


@dataclass
class PageOutcome:
    result: PageResult
    image: Optional[Image.Image]


class PagePipeline:
    """Process pages through the per-page state machine with a fixed window.

    At most ``cfg.window`` source pages are decoded at any moment, counting
    both pages being processed and finished pages waiting in the reorder
    buffer for an earlier page. Pages reach ``emit`` in ascending index order.
    """

    def __init__(
        self,
        detector: TextDetector,
        cfg: Optional[RunConfig] = None,
        classifier: Callable[[str, ActivePolicy], bool] = classify,
    ) -> None:
        self.detector = detector
        self.cfg = cfg or RunConfig()
        self.classifier = classifier

    def run(
        self,
        pages: Iterable[Image.Image],
        page_count: int,
        ctx: RunContext,
        emit: EmitFn,
        progress: Optional[ProgressFn] = None,
    ) -> List[PageResult]:
        """Stream ``pages`` through the pipeline under ``ctx.policy``.

        Returns the results of every page that finished, in index order. A
        cancelled run returns early and emits nothing further.
        """
        window = self.cfg.window
        results: List[PageResult] = []
        reorder: Dict[int, PageOutcome] = {}
        inflight: Set[Future] = set()
        source = iter(enumerate(pages))
        exhausted = False
        next_index = 0

        with ThreadPoolExecutor(max_workers=window, thread_name_prefix="page") as pool:
            try:
                while True:
                    while (
                        not exhausted
                        and not ctx.cancelled
                        and len(inflight) + len(reorder) < window
                    ):
                        try:
                            index, image = next(source)
                        except StopIteration:
                            exhausted = True
                            break
                        inflight.add(
                            pool.submit(
                                self._process, index, image, page_count, ctx, progress
                            )
                        )
                        del image
                    if not inflight:
                        break
                    done, inflight = wait(inflight, return_when=FIRST_COMPLETED)
                    for fut in done:
                        try:
                            outcome = fut.result()
                        except RunCancelled:
                            continue
                        reorder[outcome.result.page_index] = outcome
                    while next_index in reorder and not ctx.cancelled:
                        outcome = reorder.pop(next_index)
                        if outcome.image is not None:
                            emit(next_index, outcome.image)
                        outcome.image = None
                        results.append(outcome.result)
                        next_index += 1
            except BaseException:
                for fut in inflight:
                    fut.cancel()
                raise
            finally:
                # Drop buffered pages on cancellation or failure.
                reorder.clear()
        if ctx.cancelled:
            logger.info(
                "Run cancelled",
                extra={"extra": {"sequence": ctx.sequence, "emitted": next_index}},
            )
        return results

    def _advance(
        self,
        result: PageResult,
        status: PageStatus,
        page_count: int,
        ctx: RunContext,
        progress: Optional[ProgressFn],
    ) -> None:
        ctx.check()
        result.status = status
        if progress is not None:
            progress(
                ProgressEvent(
                    sequence=ctx.sequence,
                    page_index=result.page_index,
                    page_count=page_count,
                    status=status,
                )
            )

    def _fail(
        self,
        result: PageResult,
        error: Exception,
        page_count: int,
        ctx: RunContext,
        progress: Optional[ProgressFn],
    ) -> None:
        result.flagged = True
        result.redacted = False
        result.error = f"{type(error).__name__}: {error}"
        logger.warning(
            "Page left unredacted",
            extra={
                "extra": {
                    "sequence": ctx.sequence,
                    "page_index": result.page_index,
                    "error": result.error,
                }
            },
        )
        result.status = PageStatus.FAILED
        if progress is not None:
            progress(
                ProgressEvent(
                    sequence=ctx.sequence,
                    page_index=result.page_index,
                    page_count=page_count,
                    status=PageStatus.FAILED,
                )
            )

    def _process(
        self,
        index: int,
        image: Image.Image,
        page_count: int,
        ctx: RunContext,
        progress: Optional[ProgressFn],
    ) -> PageOutcome:
        policy = ctx.policy
        cfg = self.cfg
        result = PageResult(page_index=index)
        timings: Dict[str, float] = {}
        t0 = time.perf_counter()

        self._advance(result, PageStatus.DETECTING, page_count, ctx, progress)
        tokens: List[Token] = []
        if not policy.is_empty:
            try:
                tokens = self.detector.detect(image, index)
            except DetectionFailed as exc:
                self._fail(result, exc, page_count, ctx, progress)
                if cfg.on_detection_failure == "exclude":
                    result.excluded = True
                    return PageOutcome(result=result, image=None)
                return PageOutcome(result=result, image=image)
        result.tokens = len(tokens)
        t_detect = time.perf_counter()

        self._advance(result, PageStatus.CLASSIFYING, page_count, ctx, progress)
        selected = [t for t in tokens if self.classifier(t.text, policy)]
        t_classify = time.perf_counter()

        self._advance(result, PageStatus.RENDERING, page_count, ctx, progress)
        regions = [t.box for t in selected]
        try:
            rendered = render(
                image, regions, fill_rgb=cfg.fill_rgb, inflate_px=cfg.box_inflation_px
            )
        except RenderFailed as exc:
            self._fail(result, exc, page_count, ctx, progress)
            return PageOutcome(result=result, image=image)
        t_render = time.perf_counter()

        result.boxes_applied = len(regions)
        result.redacted = bool(regions)
        if cfg.track_reasons:
            result.boxes = [
                {
                    "box": t.box,
                    "categories": sorted(c.value for c in matching_categories(t.text, policy)),
                }
                for t in selected
            ]
        if cfg.instrument:
            timings = {
                "detect": t_detect - t0,
                "classify": t_classify - t_detect,
                "render": t_render - t_classify,
                "total": t_render - t0,
            }
            result.timings = timings
        self._advance(result, PageStatus.DONE, page_count, ctx, progress)
        return PageOutcome(result=result, image=rendered)


__all__ = ["PageOutcome", "PagePipeline"]
