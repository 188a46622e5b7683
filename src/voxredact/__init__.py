"""voxredact

Offline page-image PII redaction driven by spoken commands. See
``voxredact.pipeline`` for the page streaming and run coordination,
``voxredact.voice`` for command interpretation, and ``voxredact.cli`` /
``voxredact.api`` for user entrypoints.
"""

__all__ = [
    "core",
    "ocr",
    "classify",
    "redact",
    "policy",
    "voice",
    "pipeline",
    "audit",
    "api",
    "logging",
    "settings",
    "health",
    "errors",
]

__version__ = "0.1.0"
