"""High-level orchestration for voxredact redaction runs.

A :class:`DocumentCoordinator` owns the loaded document and drives one
:class:`~voxredact.pipeline.pages.PagePipeline` run per policy version. When
attached to a :class:`~voxredact.policy.PolicyStore`, every policy change
starts a fresh run and cancels the one in flight; only the newest run may
hand its pages to the writer.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Union

from PIL import Image

from voxredact.errors import WriteFailed
from voxredact.logging import get_logger
from voxredact.ocr import PageSource
from voxredact.policy import ActivePolicy, PolicyStore, Subscription
from voxredact.redact import encode_page

from .config import PageResult, ProgressEvent, RunConfig, RunResult, RunStatus
from .context import RunContext
from .pages import PagePipeline

logger = get_logger("voxredact")

ProgressFn = Callable[[ProgressEvent], None]


class DocumentWriter(Protocol):
    def write(self, pages: Sequence[Union[bytes, Image.Image]]) -> str:
        ...


@dataclass
class CommittedRun:
    """Compressed pages of the most recent run that reached the writer."""

    sequence: int
    pages: List[bytes]
    result: RunResult


class DocumentCoordinator:
    """End-to-end runs over one document, re-triggered by policy changes."""

    def __init__(
        self,
        pipeline: PagePipeline,
        writer: Optional[DocumentWriter] = None,
        store: Optional[PolicyStore] = None,
    ) -> None:
        self.pipeline = pipeline
        self.writer = writer
        self.store = store
        self.document: Optional[PageSource] = None
        self._lock = threading.Lock()
        self._commit_lock = threading.Lock()
        self._current: Optional[RunContext] = None
        self._threads: List[threading.Thread] = []
        self._results: List[RunResult] = []
        self._latest_result: Optional[RunResult] = None
        self._committed: Optional[CommittedRun] = None
        self._progress_listeners: List[ProgressFn] = []
        self._progress: Optional[ProgressEvent] = None
        self._subscription: Optional[Subscription] = None
        self._watcher: Optional[threading.Thread] = None
        # Sequence of the last policy the watcher has acted on
        self._handled = threading.Condition()
        self._handled_sequence = 0

    @property
    def cfg(self) -> RunConfig:
        return self.pipeline.cfg

    @property
    def current(self) -> Optional[RunContext]:
        return self._current

    @property
    def latest_progress(self) -> Optional[ProgressEvent]:
        return self._progress

    @property
    def latest_result(self) -> Optional[RunResult]:
        return self._latest_result

    @property
    def committed(self) -> Optional[CommittedRun]:
        return self._committed

    def load(self, document: PageSource) -> None:
        """Replace the loaded document, cancelling any run over the old one."""
        with self._lock:
            if self._current is not None:
                self._current.cancel()
            self.document = document
            self._committed = None
        logger.info("Document loaded", extra={"extra": {"pages": document.page_count}})

    def subscribe_progress(self, callback: ProgressFn) -> None:
        with self._lock:
            self._progress_listeners.append(callback)

    def _on_progress(self, event: ProgressEvent) -> None:
        self._progress = event
        with self._lock:
            listeners = list(self._progress_listeners)
        for callback in listeners:
            callback(event)

    # Policy-change watching

    def attach(self, store: Optional[PolicyStore] = None) -> None:
        """Start a watcher that re-runs the loaded document on every policy change."""
        if store is not None:
            self.store = store
        if self.store is None:
            raise ValueError("No policy store to attach to")
        if self._watcher is not None:
            return
        self._subscription = self.store.subscribe()
        with self._handled:
            self._handled_sequence = self.store.snapshot().sequence
        self._watcher = threading.Thread(
            target=self._watch, name="policy-watcher", daemon=True
        )
        self._watcher.start()

    def _watch(self) -> None:
        sub = self._subscription
        while sub is not None and not sub.closed:
            policy = sub.get()
            if policy is None:
                continue
            if self.document is None:
                logger.info(
                    "Policy changed with no document loaded",
                    extra={"extra": policy.to_dict()},
                )
                self._mark_handled(policy)
                continue
            self.start(policy)
            self._mark_handled(policy)

    def _mark_handled(self, policy: ActivePolicy) -> None:
        with self._handled:
            self._handled_sequence = max(self._handled_sequence, policy.sequence)
            self._handled.notify_all()

    def _settle(self, timeout: Optional[float] = None) -> None:
        """Block until the watcher has acted on every policy published so far."""
        sub = self._subscription
        if sub is None or self.store is None:
            return
        target = self.store.snapshot().sequence
        with self._handled:
            self._handled.wait_for(
                lambda: self._handled_sequence >= target or sub.closed, timeout=timeout
            )

    def close(self) -> None:
        """Stop watching for policy changes and cancel the current run."""
        if self._subscription is not None:
            self._subscription.close()
        with self._handled:
            self._handled.notify_all()
        if self._watcher is not None:
            self._watcher.join(timeout=5)
        self._subscription = None
        self._watcher = None
        with self._lock:
            if self._current is not None:
                self._current.cancel()

    # Runs

    def start(self, policy: Optional[ActivePolicy] = None) -> RunContext:
        """Start a background run, superseding the current one."""
        if policy is None:
            policy = self.store.snapshot() if self.store is not None else ActivePolicy()
        with self._lock:
            if self.document is None:
                raise ValueError("No document loaded")
            document = self.document
            ctx = self._supersede(policy)
            thread = threading.Thread(
                target=self._execute,
                args=(document, ctx),
                name=f"run-{ctx.sequence}",
                daemon=True,
            )
            self._threads.append(thread)
        thread.start()
        return ctx

    def run(self, document: PageSource, policy: ActivePolicy) -> RunResult:
        """Run synchronously over ``document`` under ``policy``."""
        with self._lock:
            ctx = self._supersede(policy)
        return self._execute(document, ctx)

    def _supersede(self, policy: ActivePolicy) -> RunContext:
        if self._current is not None and not self._current.cancelled:
            logger.info(
                "Superseding run",
                extra={
                    "extra": {
                        "old_sequence": self._current.sequence,
                        "new_sequence": policy.sequence,
                    }
                },
            )
            self._current.cancel()
        ctx = RunContext(policy)
        self._current = ctx
        return ctx

    def _execute(self, document: PageSource, ctx: RunContext) -> RunResult:
        result = RunResult(
            sequence=ctx.sequence,
            categories=sorted(c.value for c in ctx.policy.categories),
            page_count=document.page_count,
        )
        if document.page_count == 0:
            result.status = RunStatus.COMPLETED
            return self._finish(result)

        staged: List[bytes] = []
        quality = self.cfg.jpeg_quality

        def emit(index: int, image: Image.Image) -> None:
            if not ctx.cancelled:
                staged.append(encode_page(image, quality))

        logger.info(
            "Run started",
            extra={
                "extra": result.model_dump(include={"sequence", "categories", "page_count"})
            },
        )
        try:
            pages: List[PageResult] = self.pipeline.run(
                document, document.page_count, ctx, emit, progress=self._on_progress
            )
        except Exception as exc:
            # Unreadable pages, classifier defects and encoder errors end the run.
            if ctx.cancelled:
                result.status = RunStatus.CANCELLED
                return self._finish(result)
            logger.error("Run failed", exc_info=exc)
            result.status = RunStatus.FAILED
            result.error = f"{type(exc).__name__}: {exc}"
            return self._finish(result)
        result.pages = pages

        with self._commit_lock:
            with self._lock:
                superseded = ctx.cancelled or ctx is not self._current
            if superseded:
                result.status = RunStatus.CANCELLED
                staged.clear()
                return self._finish(result)
            if self.writer is not None:
                try:
                    result.output = self.writer.write(staged)
                except WriteFailed as exc:
                    logger.error("Run failed", exc_info=exc)
                    result.status = RunStatus.FAILED
                    result.error = f"WriteFailed: {exc}"
                    return self._finish(result)
            result.status = RunStatus.COMPLETED
            self._committed = CommittedRun(sequence=ctx.sequence, pages=staged, result=result)
        return self._finish(result)

    def _finish(self, result: RunResult) -> RunResult:
        with self._lock:
            self._results.append(result)
            if result.status != RunStatus.CANCELLED:
                self._latest_result = result
        logger.info(
            "Run finished",
            extra={
                "extra": {
                    "sequence": result.sequence,
                    "status": result.status.value,
                    "summary": result.summary,
                    "unredacted_pages": result.unredacted_pages,
                }
            },
        )
        return result

    def wait(self, timeout: Optional[float] = None) -> Optional[RunResult]:
        """Join every background run started so far and return the latest result.

        When attached, policies already published but not yet picked up by the
        watcher are started first, so the last command is never skipped.
        """
        self._settle(timeout)
        while True:
            with self._lock:
                pending = [t for t in self._threads if t.is_alive()]
                self._threads = pending
            if not pending:
                break
            for thread in pending:
                thread.join(timeout)
            if timeout is not None:
                break
        return self._latest_result

    @property
    def results(self) -> List[RunResult]:
        with self._lock:
            return list(self._results)

    def export(self, writer: DocumentWriter) -> str:
        """Write the latest committed page sequence with ``writer``."""
        committed = self._committed
        if committed is None or not committed.pages:
            raise WriteFailed("No redacted pages to export")
        return writer.write(committed.pages)


__all__ = ["CommittedRun", "DocumentCoordinator", "DocumentWriter"]
