import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Set

import pytest
from PIL import Image

from voxredact.errors import DetectionFailed
from voxredact.ocr import PageSource, Token
from voxredact.pipeline import RunConfig


WHITE = (255, 255, 255)


def blank_page(size=(120, 40), colour=WHITE) -> Image.Image:
    return Image.new("RGB", size, colour)


class FakeDetector:
    """Returns canned tokens per page index; can fail, sleep, or block."""

    def __init__(
        self,
        tokens: Optional[Dict[int, List[tuple]]] = None,
        fail_on: Iterable[int] = (),
        delays: Optional[Dict[int, float]] = None,
        hook: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        self.tokens = tokens or {}
        self.fail_on: Set[int] = set(fail_on)
        self.delays = delays or {}
        self.hook = hook
        self.calls: List[int] = []
        self._lock = threading.Lock()

    def detect(self, image: Image.Image, page_index: int = 0) -> List[Token]:
        with self._lock:
            self.calls.append(page_index)
            call_number = len(self.calls)
        if self.hook is not None:
            self.hook(page_index, call_number)
        if page_index in self.delays:
            time.sleep(self.delays[page_index])
        if page_index in self.fail_on:
            raise DetectionFailed("unsupported image", page_index=page_index)
        return [
            Token(text=text, box=box, page_index=page_index)
            for text, box in self.tokens.get(page_index, [])
        ]


class ListPageSource(PageSource):
    """Lazily creates blank pages and tracks how many are alive."""

    def __init__(self, count: int, size=(120, 40)) -> None:
        self.page_count = count
        self.size = size
        self.produced = 0
        self.released = 0
        self.max_alive = 0
        self._lock = threading.Lock()

    def __iter__(self):
        for _ in range(self.page_count):
            with self._lock:
                self.produced += 1
                self.max_alive = max(self.max_alive, self.produced - self.released)
            yield blank_page(self.size)

    def release(self) -> None:
        with self._lock:
            self.released += 1


class RecordingWriter:
    def __init__(self, fail: Optional[Exception] = None) -> None:
        self.writes: List[list] = []
        self.fail = fail

    def write(self, pages) -> str:
        pages = list(pages)
        if self.fail is not None:
            raise self.fail
        self.writes.append(pages)
        return f"memory://{len(self.writes)}"


@pytest.fixture
def cfg() -> RunConfig:
    return RunConfig(box_inflation_px=0, window=2, instrument=False)
