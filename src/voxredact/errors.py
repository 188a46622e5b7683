"""Exception taxonomy for voxredact runs.

Per-page failures (:class:`DetectionFailed`, :class:`RenderFailed`) are
recorded on the page and the run continues. :class:`ClassificationError` and
:class:`WriteFailed` abort the run.
"""

from __future__ import annotations

from typing import Optional


class VoxRedactError(Exception):
    """Base class for all voxredact errors."""


class DetectionFailed(VoxRedactError):
    """The text detector could not analyse a page image."""

    def __init__(self, message: str, page_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.page_index = page_index


class ClassificationError(VoxRedactError):
    """A category recognizer raised; this is a defect and fails the run."""


class RenderFailed(VoxRedactError):
    """Pixels could not be overwritten for a page."""


class WriteFailed(VoxRedactError):
    """The output document could not be written. Nothing was persisted."""


class RunCancelled(VoxRedactError):
    """Raised inside a page worker once its run has been superseded."""


class TranscriptionError(VoxRedactError):
    """The transcription engine failed to produce an utterance."""


class NoSpeechDetected(TranscriptionError):
    pass


class TranscriptionTimeout(TranscriptionError):
    pass


__all__ = [
    "VoxRedactError",
    "DetectionFailed",
    "ClassificationError",
    "RenderFailed",
    "WriteFailed",
    "RunCancelled",
    "TranscriptionError",
    "NoSpeechDetected",
    "TranscriptionTimeout",
]
