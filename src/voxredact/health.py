"""Infrastructure readiness checks for the API and the CLI."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from typing import List, Optional

from .settings import ServiceSettings


@dataclass
class HealthCheckResult:
    name: str
    status: str  # "pass" | "fail" | "warn"
    detail: Optional[str] = None
    required: bool = True


def _check_tesseract(langs: List[str]) -> HealthCheckResult:
    import pytesseract

    try:
        pytesseract.get_tesseract_version()
    except Exception as exc:  # pragma: no cover - depends on runtime
        return HealthCheckResult(name="tesseract", status="fail", detail=str(exc))

    try:
        available = set(pytesseract.get_languages(config=""))
    except Exception:
        available = set()
    missing = [lang for lang in langs if lang not in available]
    if missing and available:
        return HealthCheckResult(
            name="tesseract",
            status="warn",
            detail=f"Missing language packs: {', '.join(missing)}",
        )
    if missing and not available:
        return HealthCheckResult(
            name="tesseract",
            status="warn",
            detail="Could not enumerate language packs; ensure tessdata is mounted.",
        )
    return HealthCheckResult(name="tesseract", status="pass")


def _check_poppler() -> HealthCheckResult:
    poppler_path = os.environ.get("POPPLER_PATH")
    if poppler_path:
        found = os.path.exists(os.path.join(poppler_path, "pdfinfo"))
    else:
        found = shutil.which("pdfinfo") is not None
    if not found:
        return HealthCheckResult(
            name="poppler",
            status="warn",
            detail="pdfinfo not found; PDF inputs are unavailable, images still work.",
            required=False,
        )
    return HealthCheckResult(name="poppler", status="pass", required=False)


def run_readiness_checks(settings: ServiceSettings) -> List[HealthCheckResult]:
    checks: List[HealthCheckResult] = []
    if settings.readiness_check_ocr:
        checks.append(_check_tesseract(settings.readiness_tesseract_langs))
    if settings.readiness_check_poppler:
        checks.append(_check_poppler())
    return checks
