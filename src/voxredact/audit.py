"""Audit logging for voxredact runs.

Produces an audit JSON alongside the output PDF including a config snapshot,
the policy the run was made under, hashes, version, page summaries, and an
optional HMAC signature when `VOXREDACT_HMAC_KEY` is present.
"""

from __future__ import annotations

from typing import Dict, Any, List, Optional
from pathlib import Path
import getpass
import hashlib
import hmac
import os
import socket
import time

import orjson

from .pipeline.config import RunResult


def _sha256_file(path: str | Path) -> Optional[str]:
    p = Path(path)
    if not p.is_file():
        return None
    h = hashlib.sha256()
    with open(p, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def write_audit(
    input_path: str,
    output_path: str,
    result: RunResult,
    cfg: Dict[str, Any],
    policy: Optional[Dict[str, Any]] = None,
    errors: Optional[List[str]] = None,
) -> Path:
    """Write an audit JSON next to the output PDF and return its path."""
    out_pdf = Path(output_path)
    audit_path = out_pdf.with_suffix(".audit.json")
    from voxredact import __version__ as version

    page_summaries = []
    for p in result.pages:
        cats: Dict[str, int] = {}
        for bi in p.boxes or []:
            for cat in bi.get("categories", []) or ["OTHER"]:
                cats[cat] = cats.get(cat, 0) + 1
        page_summaries.append({
            "page_index": p.page_index,
            "status": p.status.value,
            "boxes": p.boxes_applied,
            "by_category": cats,
            "flagged": p.flagged,
            "excluded": p.excluded,
            "error": p.error,
        })

    record = {
        "version": version,
        "timestamp": int(time.time()),
        "user": getpass.getuser(),
        "host": socket.gethostname(),
        "input": {
            "path": str(input_path),
            "sha256": _sha256_file(input_path),
        },
        "output": {
            "path": str(out_pdf),
            "sha256": _sha256_file(out_pdf),
        },
        "config": cfg,
        "policy": policy,
        "result": {
            "sequence": result.sequence,
            "status": result.status.value,
            "summary": {
                "pages": result.page_count,
                "boxes": sum(p.boxes_applied for p in result.pages),
                "unredacted_pages": result.unredacted_pages,
                "message": result.summary,
            },
            "pages": page_summaries,
        },
        "errors": (errors or []) + ([result.error] if result.error else []),
    }

    # Optional HMAC signature for tamper detection
    key = os.environ.get("VOXREDACT_HMAC_KEY")
    data_bytes = orjson.dumps(record)
    if key:
        sig = hmac.new(key.encode("utf-8"), data_bytes, hashlib.sha256).hexdigest()
        record["hmac"] = {"alg": "HMAC-SHA256", "key_hint": "env:VOXREDACT_HMAC_KEY", "value": sig}

    audit_path.write_bytes(orjson.dumps(record, option=orjson.OPT_INDENT_2))
    return audit_path
