"""Service configuration helpers for deployment environments.

Runtime settings are read from ``VOXREDACT_*`` environment variables once and
cached. The module has no side effects so it can be imported from both the
CLI and the FastAPI app.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Tuple
import os

from .pipeline.config import RunConfig


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    v = value.strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _split_csv(value: str | None) -> List[str]:
    if not value:
        return []
    parts = [p.strip() for p in value.split(",") if p.strip()]
    return parts


def _parse_rgb(value: str | None) -> Tuple[int, int, int]:
    parts = _split_csv(value)
    if len(parts) != 3:
        return (0, 0, 0)
    r, g, b = (max(0, min(255, int(p))) for p in parts)
    return (r, g, b)


@dataclass
class ServiceSettings:
    """Runtime settings for the CLI, the API, and pipeline defaults."""

    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_token: Optional[str] = None
    cors_origins: List[str] = field(default_factory=list)
    readiness_check_ocr: bool = True
    readiness_check_poppler: bool = True
    readiness_tesseract_langs: List[str] = field(default_factory=lambda: ["eng"])
    allowance_warn_only_checks: bool = True
    lang: str = "eng"
    dpi: int = 200
    window: int = 2
    fill_rgb: Tuple[int, int, int] = (0, 0, 0)
    on_detection_failure: str = "passthrough"
    listen_timeout: float = 10.0

    @staticmethod
    def from_env() -> "ServiceSettings":
        cors_raw = os.environ.get("VOXREDACT_API_CORS_ORIGINS")
        settings = ServiceSettings(
            api_host=os.environ.get("VOXREDACT_API_HOST", "127.0.0.1"),
            api_port=int(os.environ.get("VOXREDACT_API_PORT", "8000")),
            api_token=os.environ.get("VOXREDACT_API_TOKEN"),
            cors_origins=_split_csv(cors_raw),
            readiness_check_ocr=_parse_bool(
                os.environ.get("VOXREDACT_READY_CHECK_OCR"), default=True
            ),
            readiness_check_poppler=_parse_bool(
                os.environ.get("VOXREDACT_READY_CHECK_POPPLER"), default=True
            ),
            readiness_tesseract_langs=_split_csv(
                os.environ.get("VOXREDACT_READY_TESS_LANGS")
            )
            or ["eng"],
            allowance_warn_only_checks=_parse_bool(
                os.environ.get("VOXREDACT_READY_WARN_ONLY"), default=True
            ),
            lang=os.environ.get("VOXREDACT_LANG", "eng"),
            dpi=int(os.environ.get("VOXREDACT_DPI", "200")),
            window=int(os.environ.get("VOXREDACT_WINDOW", "2")),
            fill_rgb=_parse_rgb(os.environ.get("VOXREDACT_FILL_RGB")),
            on_detection_failure=os.environ.get(
                "VOXREDACT_ON_DETECTION_FAILURE", "passthrough"
            ),
            listen_timeout=float(os.environ.get("VOXREDACT_LISTEN_TIMEOUT", "10")),
        )
        return settings

    def run_config(self, **overrides) -> RunConfig:
        """Build a pipeline ``RunConfig`` from these defaults."""
        values = dict(
            lang=self.lang,
            dpi=self.dpi,
            window=self.window,
            fill_rgb=self.fill_rgb,
            on_detection_failure=self.on_detection_failure,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return RunConfig(**values)


@lru_cache(maxsize=1)
def get_settings() -> ServiceSettings:
    """Return cached service settings."""
    return ServiceSettings.from_env()


def reset_settings_cache() -> None:
    """Reset cached settings (useful in tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
