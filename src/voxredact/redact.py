"""Redaction routines.

Provides the irreversible renderer that paints opaque rectangles over PII
regions, plus helpers to compress finished pages and export a page sequence
back to a compact PDF.
"""

import io
import os
import tempfile
from pathlib import Path
from typing import Iterable, Sequence, Tuple, Union

import img2pdf
from PIL import Image, ImageDraw

from voxredact.errors import RenderFailed, WriteFailed
from voxredact.logging import get_logger

logger = get_logger(__name__)

Region = Tuple[int, int, int, int]


def _inflate(box: Region, px: int, W: int, H: int) -> Region:
    """Inflate a rectangle while clamping to image bounds.

    Parameters
    ----------
    box:
        Rectangle as ``(x, y, w, h)``.
    px:
        Pixels to inflate on all sides.
    W:
        Image width.
    H:
        Image height.

    Returns
    -------
    tuple
        Clamped rectangle ``(x, y, w, h)``; width or height may be 0 when the
        box lies outside the image.
    """
    x, y, w, h = box
    x2 = min(max(0, x - px), W)
    y2 = min(max(0, y - px), H)
    w2 = max(0, min(W, x + w + px) - x2)
    h2 = max(0, min(H, y + h + px) - y2)
    return (x2, y2, w2, h2)


def render(
    img: Image.Image,
    regions: Sequence[Region],
    fill_rgb=(0, 0, 0),
    inflate_px: int = 0,
) -> Image.Image:
    """Overwrite ``regions`` of a copy of ``img`` with an opaque solid colour.

    The source image is never modified. With no regions the source is
    returned as is. The fill replaces pixel values outright (alpha is forced
    to 255), so nothing under a region can be recovered from the result.

    Parameters
    ----------
    img:
        Source page image.
    regions:
        Rectangles ``(x, y, w, h)`` to fill. Overlaps are fine.
    fill_rgb:
        Fill colour as an RGB tuple.
    inflate_px:
        Pixels to grow each rectangle by for safer coverage.

    Raises
    ------
    RenderFailed
        If the copy or the paint step fails.
    """
    if not regions:
        return img
    try:
        if img.mode == "RGBA":
            out = img.copy()
            fill = tuple(fill_rgb) + (255,)
        else:
            out = img.convert("RGB") if img.mode != "RGB" else img.copy()
            fill = tuple(fill_rgb)
        W, H = out.size
        draw = ImageDraw.Draw(out)
        for box in regions:
            x, y, w, h = _inflate(tuple(int(v) for v in box), inflate_px, W, H)
            if w <= 0 or h <= 0:
                continue
            # PIL rectangles include their end coordinates.
            draw.rectangle([x, y, x + w - 1, y + h - 1], fill=fill)
        return out
    except (OSError, ValueError, MemoryError) as exc:
        raise RenderFailed(f"Could not paint {len(regions)} region(s): {exc}") from exc


def encode_page(img: Image.Image, quality: int = 95) -> bytes:
    """Compress a page to JPEG bytes so the decoded buffer can be released."""
    if img.mode != "RGB":
        img = img.convert("RGB")
    tmp = io.BytesIO()
    img.save(tmp, format="JPEG", quality=quality)
    return tmp.getvalue()


class PdfWriter:
    """Write a page sequence to ``out_path`` as a PDF.

    Pages may be PIL images or already-encoded JPEG bytes. The file is written
    to a temporary sibling and renamed into place, so a failed write leaves no
    partial document behind.
    """

    def __init__(self, out_path: Union[str, Path], quality: int = 95) -> None:
        self.out_path = Path(out_path)
        self.quality = quality

    def write(self, pages: Iterable[Union[bytes, Image.Image]]) -> str:
        encoded = [
            p if isinstance(p, (bytes, bytearray)) else encode_page(p, self.quality)
            for p in pages
        ]
        if not encoded:
            raise WriteFailed("Refusing to write a document with no pages")
        tmp_name = None
        try:
            self.out_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.out_path.stem}.", suffix=".pdf", dir=self.out_path.parent
            )
            with os.fdopen(fd, "wb") as f:
                f.write(img2pdf.convert([bytes(b) for b in encoded]))
            os.replace(tmp_name, self.out_path)
        except (OSError, img2pdf.ImageOpenError, ValueError) as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise WriteFailed(f"Could not write {self.out_path}: {exc}") from exc
        logger.info(
            "Wrote redacted document",
            extra={"extra": {"path": str(self.out_path), "pages": len(encoded)}},
        )
        return str(self.out_path)

