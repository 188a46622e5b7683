"""OCR and rasterization adapters.

The pipeline only relies on two small contracts defined here:

- a text detector, ``detect(image, page_index) -> list[Token]``, raising
  :class:`~voxredact.errors.DetectionFailed` on unusable input;
- a page source with a known ``page_count`` that yields page images lazily,
  one decoded page at a time.

:class:`TesseractDetector` implements the first with ``pytesseract``;
:class:`PdfPageSource` rasterizes one PDF page per step with ``pdf2image``
(Poppler) and :class:`ImageFileSource` serves image files from disk.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Protocol, Tuple, Union

import pytesseract
from pdf2image import convert_from_path, pdfinfo_from_path
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFSyntaxError,
)
from PIL import Image, UnidentifiedImageError

from voxredact.errors import DetectionFailed
from voxredact.logging import get_logger

logger = get_logger(__name__)

IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp"}


@dataclass(frozen=True)
class Token:
    """One recognized word and its bounding box ``(x, y, w, h)``."""

    text: str
    box: Tuple[int, int, int, int]
    page_index: int = 0
    confidence: Optional[float] = None


class TextDetector(Protocol):
    def detect(self, image: Image.Image, page_index: int = 0) -> List[Token]:
        ...


class TesseractDetector:
    """Word-level text detector backed by Tesseract.

    Parameters
    ----------
    lang:
        Tesseract language code.
    psm:
        Page segmentation mode (0-13).
    min_confidence:
        Words below this confidence (0-100) are dropped. Tesseract reports
        ``-1`` for non-word rows, which are always dropped.
    """

    def __init__(self, lang: str = "eng", psm: int = 3, min_confidence: float = 0.0):
        self.lang = lang
        self.psm = psm
        self.min_confidence = min_confidence

    def _config(self) -> str:
        # Preserve spaces so tokens stay aligned with their boxes
        return f"--oem 1 --psm {self.psm} -c preserve_interword_spaces=1"

    def detect(self, image: Image.Image, page_index: int = 0) -> List[Token]:
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.lang,
                config=self._config(),
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
            raise DetectionFailed(str(exc), page_index=page_index) from exc
        except (OSError, TypeError, ValueError) as exc:
            raise DetectionFailed(
                f"Unsupported page image: {exc}", page_index=page_index
            ) from exc

        tokens: List[Token] = []
        for i, raw in enumerate(data.get("text", [])):
            text = (raw or "").strip()
            if not text:
                continue
            try:
                conf = float(data["conf"][i])
            except (KeyError, TypeError, ValueError):
                conf = -1.0
            if conf < 0 or conf < self.min_confidence:
                continue
            box = (
                int(data["left"][i]),
                int(data["top"][i]),
                int(data["width"][i]),
                int(data["height"][i]),
            )
            tokens.append(Token(text=text, box=box, page_index=page_index, confidence=conf))
        return tokens


class PageSource:
    """Lazily produced, ordered page images with a known count."""

    page_count: int = 0

    def __iter__(self) -> Iterator[Image.Image]:
        raise NotImplementedError

    def __len__(self) -> int:
        return self.page_count


class PdfPageSource(PageSource):
    """Rasterize a PDF one page at a time.

    Environment
    -----------
    POPPLER_PATH:
        Optional explicit path to the Poppler binaries for pdf2image.
    """

    def __init__(self, pdf_path: Union[str, Path], dpi: int = 200) -> None:
        self.pdf_path = str(pdf_path)
        self.dpi = dpi
        self.poppler_path = os.environ.get("POPPLER_PATH") or None
        try:
            info = pdfinfo_from_path(self.pdf_path, poppler_path=self.poppler_path)
        except PDFInfoNotInstalledError as e:
            raise RuntimeError(
                "Poppler not found for pdf2image. Install Poppler (e.g., 'brew install poppler' on macOS, 'apt-get install poppler-utils' on Debian/Ubuntu) or set POPPLER_PATH."
            ) from e
        except (PDFPageCountError, PDFSyntaxError) as e:
            raise ValueError(f"Unreadable PDF: {pdf_path}") from e
        self.page_count = int(info.get("Pages", 0))

    def __iter__(self) -> Iterator[Image.Image]:
        for number in range(1, self.page_count + 1):
            pages = convert_from_path(
                self.pdf_path,
                dpi=self.dpi,
                first_page=number,
                last_page=number,
                poppler_path=self.poppler_path,
            )
            yield pages[0]


class ImageFileSource(PageSource):
    """Serve one image file, or every supported image in a directory, as pages."""

    def __init__(self, paths: List[Path]) -> None:
        self.paths = list(paths)
        self.page_count = len(self.paths)

    def __iter__(self) -> Iterator[Image.Image]:
        for path in self.paths:
            try:
                with Image.open(path) as im:
                    im.load()
                    page = im.copy()
            except (UnidentifiedImageError, OSError) as exc:
                raise ValueError(f"Unreadable image: {path}") from exc
            yield page


def open_pages(input_path: Union[str, Path], dpi: int = 200) -> PageSource:
    """Open a PDF, an image file, or a directory of images as a page source."""
    path = Path(input_path)
    if not path.exists():
        raise FileNotFoundError(f"Input not found: {input_path}")
    source: PageSource
    ext = path.suffix.lower()
    if path.is_dir():
        files = sorted(fp for fp in path.iterdir() if fp.suffix.lower() in IMAGE_EXTS)
        if not files:
            raise ValueError(f"No supported images in directory: {input_path}")
        source = ImageFileSource(files)
    elif ext == ".pdf":
        source = PdfPageSource(path, dpi=dpi)
    elif ext in IMAGE_EXTS:
        try:
            with Image.open(path) as im:
                im.verify()
        except (UnidentifiedImageError, OSError) as exc:
            raise ValueError(f"Unreadable image: {input_path}") from exc
        source = ImageFileSource([path])
    else:
        raise ValueError(f"Unsupported input type: {input_path}")
    logger.info(
        "Input opened",
        extra={"extra": {"path": str(path), "pages": source.page_count}},
    )
    return source


__all__ = [
    "Token",
    "TextDetector",
    "TesseractDetector",
    "PageSource",
    "PdfPageSource",
    "ImageFileSource",
    "open_pages",
]
