"""FastAPI service exposing a voxredact redaction session.

The API is the process boundary of an interactive session:

* ``POST /session/document`` loads a document (PDF, image, or directory).
* ``POST /session/commands`` delivers an utterance from a speech front end;
  a recognised command replaces the active policy and re-runs redaction.
* ``POST /session/runs`` starts a run under the current (or given) policy.
* ``GET /session/progress`` and ``GET /session/result`` report progress.
* ``POST /session/export`` saves the latest redacted page sequence.

Run locally::

    uvicorn voxredact.api:app --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Security, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field, field_validator

from .core import build_coordinator
from .errors import WriteFailed
from .health import run_readiness_checks
from .ocr import TextDetector, open_pages
from .pipeline import DocumentCoordinator, ProgressEvent, RunResult
from .policy import Category, PolicyStore
from .redact import PdfWriter
from .settings import ServiceSettings, get_settings
from .voice import CommandInterpreter

settings: ServiceSettings = get_settings()


auth_scheme = HTTPBearer(auto_error=False)


class DocumentRequest(BaseModel):
    """Request payload for loading a document into the session."""

    input_path: str
    output_path: Optional[str] = None
    window: Optional[int] = None
    dpi: Optional[int] = None

    @field_validator("input_path")
    @classmethod
    def validate_input_path(cls, value: str) -> str:
        if not value:
            raise ValueError("input_path must be provided")
        return value


class DocumentResponse(BaseModel):
    input_path: str
    output_path: str
    page_count: int


class CommandRequest(BaseModel):
    utterance: str


class CommandResponse(BaseModel):
    kind: Literal["match", "no_match", "cancel"]
    categories: List[str] = Field(default_factory=list)
    sequence: int


class RunRequest(BaseModel):
    categories: Optional[List[str]] = None


class RunResponse(BaseModel):
    sequence: int
    categories: List[str]


class ProgressResponse(BaseModel):
    running: bool
    event: Optional[ProgressEvent] = None


class ExportRequest(BaseModel):
    output_path: str


class ExportResponse(BaseModel):
    output_path: str
    sequence: int


class HealthResponse(BaseModel):
    """Canonical health endpoint payload."""

    status: Literal["ok"] = "ok"


class ReadinessCheckModel(BaseModel):
    """Single readiness check result."""

    name: str
    status: Literal["pass", "warn", "fail"]
    detail: Optional[str] = None
    required: bool


class ReadyResponse(BaseModel):
    """Aggregated readiness response."""

    ready: bool
    checks: List[ReadinessCheckModel]


class RedactionSession:
    """In-memory session: one policy store, at most one loaded document."""

    def __init__(self) -> None:
        self.store = PolicyStore()
        self.interpreter = CommandInterpreter()
        self.detector: Optional[TextDetector] = None
        self.coordinator: Optional[DocumentCoordinator] = None
        self.input_path: Optional[str] = None
        self.output_path: Optional[str] = None
        self._lock = threading.Lock()

    def load(self, payload: DocumentRequest) -> DocumentResponse:
        input_path = Path(payload.input_path)
        if not input_path.exists():
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Input path not found"
            )
        cfg = settings.run_config(window=payload.window, dpi=payload.dpi)
        try:
            document = open_pages(input_path, dpi=cfg.dpi)
        except (ValueError, RuntimeError) as exc:
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=str(exc)
            ) from exc
        output_path = _resolve_output_path(str(input_path), payload.output_path)
        with self._lock:
            if self.coordinator is not None:
                self.coordinator.close()
            self.coordinator = build_coordinator(
                cfg, output_path, store=self.store, detector=self.detector
            )
            self.coordinator.load(document)
            self.coordinator.attach()
            self.input_path = str(input_path)
            self.output_path = output_path
        return DocumentResponse(
            input_path=str(input_path),
            output_path=output_path,
            page_count=document.page_count,
        )

    def require_coordinator(self) -> DocumentCoordinator:
        if self.coordinator is None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail="No document loaded"
            )
        return self.coordinator


session = RedactionSession()


app = FastAPI(
    title="voxredact API",
    description="Offline, voice-driven page redaction.",
    version="0.1.0",
    openapi_tags=[
        {"name": "health", "description": "Service health and readiness probes."},
        {"name": "session", "description": "Load, command, run, and export."},
    ],
)

if settings.cors_origins:
    allow_origins = ["*"] if "*" in settings.cors_origins else settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


health_router = APIRouter(tags=["health"])
session_router = APIRouter(prefix="/session", tags=["session"])


def require_auth(
    credentials: HTTPAuthorizationCredentials = Security(auth_scheme),
) -> None:
    """Simple bearer-token protection."""

    token = settings.api_token
    if token is None:
        return
    if credentials is None or credentials.credentials != token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def _resolve_output_path(input_path: str, explicit_output: Optional[str]) -> str:
    if explicit_output:
        output = Path(explicit_output)
    else:
        artifacts_dir = Path.cwd() / "artifacts" / "redactions"
        stem = Path(input_path).stem or "document"
        output = artifacts_dir / f"{stem}.redacted.pdf"
    output.parent.mkdir(parents=True, exist_ok=True)
    return str(output)


@health_router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse()


@health_router.get("/livez", response_model=HealthResponse)
def livez() -> HealthResponse:
    return HealthResponse(status="ok")


@health_router.get("/readyz", response_model=ReadyResponse)
def readyz():
    checks = run_readiness_checks(settings)
    ready = True
    payload: List[ReadinessCheckModel] = []
    for check in checks:
        payload.append(
            ReadinessCheckModel(
                name=check.name,
                status=check.status,
                detail=check.detail,
                required=check.required,
            )
        )
        if check.required and check.status == "fail":
            ready = False
        if (
            check.required
            and check.status == "warn"
            and not settings.allowance_warn_only_checks
        ):
            ready = False
    response = ReadyResponse(ready=ready, checks=payload)
    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=response.model_dump())


@session_router.post(
    "/document", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED
)
def load_document(
    payload: DocumentRequest, auth: None = Depends(require_auth)
) -> DocumentResponse:
    return session.load(payload)


@session_router.post("/commands", response_model=CommandResponse)
def post_command(
    payload: CommandRequest, auth: None = Depends(require_auth)
) -> CommandResponse:
    outcome = session.interpreter.apply(payload.utterance, session.store)
    policy = session.store.snapshot()
    return CommandResponse(
        kind=outcome.kind.value,
        categories=sorted(c.value for c in policy.categories),
        sequence=policy.sequence,
    )


@session_router.post(
    "/runs", response_model=RunResponse, status_code=status.HTTP_202_ACCEPTED
)
def start_run(payload: RunRequest, auth: None = Depends(require_auth)) -> RunResponse:
    coordinator = session.require_coordinator()
    if payload.categories is not None:
        try:
            cats = [Category.parse(c) for c in payload.categories]
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
            ) from exc
        # The attached coordinator picks the change up and starts the run.
        policy = session.store.set(cats)
    else:
        policy = coordinator.start().policy
    return RunResponse(
        sequence=policy.sequence,
        categories=sorted(c.value for c in policy.categories),
    )


@session_router.get("/progress", response_model=ProgressResponse)
def get_progress(auth: None = Depends(require_auth)) -> ProgressResponse:
    coordinator = session.require_coordinator()
    current = coordinator.current
    latest = coordinator.latest_result
    running = current is not None and not current.cancelled and (
        latest is None or latest.sequence < current.sequence
    )
    return ProgressResponse(running=running, event=coordinator.latest_progress)


@session_router.get("/result", response_model=RunResult)
def get_result(auth: None = Depends(require_auth)) -> RunResult:
    coordinator = session.require_coordinator()
    result = coordinator.latest_result
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No completed run yet"
        )
    return result


@session_router.post("/export", response_model=ExportResponse)
def export(payload: ExportRequest, auth: None = Depends(require_auth)) -> ExportResponse:
    coordinator = session.require_coordinator()
    committed = coordinator.committed
    if committed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No redacted output available"
        )
    try:
        writer = PdfWriter(payload.output_path, quality=coordinator.cfg.jpeg_quality)
        path = coordinator.export(writer)
    except WriteFailed as exc:
        raise HTTPException(
            status_code=status.HTTP_507_INSUFFICIENT_STORAGE, detail=str(exc)
        ) from exc
    return ExportResponse(output_path=path, sequence=committed.sequence)


app.include_router(health_router)
app.include_router(session_router)


def run(
    host: Optional[str] = None,
    port: Optional[int] = None,
    reload: bool = False,
    log_level: str = "info",
) -> None:
    """Launch the API server via ``uvicorn``."""

    import uvicorn

    bind_host = host or settings.api_host
    bind_port = port or settings.api_port
    uvicorn.run(
        "voxredact.api:app",
        host=bind_host,
        port=bind_port,
        reload=reload,
        log_level=log_level,
    )
