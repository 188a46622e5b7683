"""Command-line interface for voxredact.

Provides:
- `run`: Redact an input path (PDF/image/dir) to a PDF under a command.
- `listen`: Interactive session; every command re-triggers redaction.
- `interpret`: Show which categories an utterance would activate.
- `api`: Launch the local HTTP API.
"""

from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import orjson
import typer
from rich import print
from tqdm import tqdm

from .audit import write_audit
from .core import build_coordinator, redact_path
from .ocr import open_pages
from .pipeline import PageStatus, ProgressEvent, RunResult, RunStatus
from .policy import Category, PolicyStore
from .settings import get_settings
from .voice import CommandInterpreter, ConsoleTranscriber, Interpretation, VoiceCommandListener

app = typer.Typer(add_completion=False, help="voxredact offline PII redactor")

TERMINAL = {PageStatus.DONE, PageStatus.FAILED}


def _parse_categories(values: Optional[List[str]]) -> List[Category]:
    try:
        return [Category.parse(v) for v in values or []]
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _report(result: Optional[RunResult], output: str) -> None:
    if result is None:
        print("[yellow]No run completed[/yellow]")
        return
    if result.status == RunStatus.FAILED:
        print(f"[red]{result.summary}[/red]")
        raise typer.Exit(code=1)
    colour = "yellow" if result.unredacted_pages else "green"
    print(f"[{colour}]{result.summary}[/{colour}]")
    if result.unredacted_pages:
        pages = ", ".join(str(i + 1) for i in result.unredacted_pages)
        print(f"[yellow]Left unredacted (flagged):[/yellow] page(s) {pages}")
    if result.output:
        print(f"[green]Redacted PDF:[/green] {output}")


@app.command()
def run(
    input: str = typer.Option(..., "--input", "-i", help="Input path (PDF/image/dir)"),
    output: str = typer.Option(..., "--output", "-o", help="Output redacted PDF path"),
    command: Optional[str] = typer.Option(
        None, "--command", "-c", help='Spoken-style command, e.g. "redact all emails"'
    ),
    category: Optional[List[str]] = typer.Option(
        None, "--category", help="Category to redact (repeatable): EMAIL, PHONE, SSN, IBAN, CREDIT_CARD, ALL"
    ),
    dpi: Optional[int] = typer.Option(None, help="Rasterization DPI for PDFs"),
    psm: int = typer.Option(3, help="Tesseract PSM"),
    lang: Optional[str] = typer.Option(None, help="Tesseract language"),
    window: Optional[int] = typer.Option(None, help="Pages decoded concurrently"),
    box_inflate: int = typer.Option(2, help="Inflate redaction boxes (px)"),
    exclude_failed: bool = typer.Option(
        False,
        "--exclude-failed/--include-failed",
        help="Drop pages whose detection failed instead of passing them through flagged",
    ),
    audit: bool = typer.Option(True, "--audit/--no-audit", help="Write an audit JSON"),
):
    """Redact PII from PDFs or images and write a redacted PDF.

    Parameters
    ----------
    input:
        Input path: PDF, image file, or directory of images.
    output:
        Output PDF path for the redacted document.
    command:
        Free-form command interpreted into categories.
    category:
        Explicit categories, merged with those matched by ``command``.
    """
    settings = get_settings()
    cfg = settings.run_config(
        dpi=dpi,
        psm=psm,
        lang=lang,
        window=window,
        box_inflation_px=box_inflate,
        on_detection_failure="exclude" if exclude_failed else None,
    )
    categories = _parse_categories(category)
    store = PolicyStore()
    matched = False
    if command:
        outcome = CommandInterpreter().interpret(command)
        matched = outcome.matched
        if not matched:
            print(f"[yellow]Command not understood ({outcome.kind.value}):[/yellow] {command}")
    if not matched and not categories:
        # An empty policy would copy the input through untouched
        print("[red]Nothing to redact:[/red] give a recognised --command or a --category")
        raise typer.Exit(code=1)
    bar = None

    def on_progress(event: ProgressEvent) -> None:
        nonlocal bar
        if bar is None:
            bar = tqdm(total=event.page_count, desc="Detect+Classify+Redact")
        if event.status in TERMINAL:
            bar.update(1)

    try:
        result = redact_path(
            input,
            output,
            cfg,
            command=command,
            categories=categories,
            store=store,
            progress=on_progress,
        )
    finally:
        if bar is not None:
            bar.close()
    meta_path = Path(output).with_suffix(".meta.json")
    meta_path.write_bytes(
        orjson.dumps(result.model_dump(mode="json"), option=orjson.OPT_INDENT_2)
    )
    if audit and result.status == RunStatus.COMPLETED:
        write_audit(input, output, result, asdict(cfg), policy=store.snapshot().to_dict())
    _report(result, output)
    print(f"[green]Details:[/green] {str(meta_path)}")


@app.command()
def listen(
    input: str = typer.Option(..., "--input", "-i", help="Input path (PDF/image/dir)"),
    output: str = typer.Option(..., "--output", "-o", help="Output redacted PDF path"),
    export: Optional[str] = typer.Option(
        None, help="Also export the final redacted pages to this path"
    ),
    window: Optional[int] = typer.Option(None, help="Pages decoded concurrently"),
):
    """Interactive session: type commands; each one re-runs redaction.

    Type ``cancel`` (or close input) to finish. The last completed run is the
    one left in ``output``.
    """
    from .redact import PdfWriter

    settings = get_settings()
    cfg = settings.run_config(window=window)
    store = PolicyStore()
    coordinator = build_coordinator(cfg, output, store=store)
    coordinator.load(open_pages(input, dpi=cfg.dpi))

    def on_progress(event: ProgressEvent) -> None:
        if event.status in TERMINAL:
            print(
                f"[dim]run {event.sequence}: page {event.page_index + 1} of "
                f"{event.page_count} {event.status.value}[/dim]"
            )

    def on_result(outcome: Interpretation) -> None:
        if outcome.matched:
            cats = ", ".join(sorted(c.value for c in outcome.categories))
            print(f"[green]Redacting:[/green] {cats}")
        else:
            print(f"[yellow]{outcome.kind.value}:[/yellow] policy unchanged")

    coordinator.subscribe_progress(on_progress)
    coordinator.attach()
    listener = VoiceCommandListener(
        ConsoleTranscriber(),
        store,
        timeout=settings.listen_timeout,
        on_result=on_result,
    )
    print('Say what to redact (e.g. "hide all emails"); "cancel" to finish.')
    listener.start()
    try:
        listener.join()
    except KeyboardInterrupt:
        listener.stop()
    result = coordinator.wait()
    coordinator.close()
    _report(result, output)
    if export and coordinator.committed is not None:
        path = coordinator.export(PdfWriter(export, quality=cfg.jpeg_quality))
        print(f"[green]Exported:[/green] {path}")


@app.command()
def interpret(utterance: str = typer.Argument(..., help="Command text")):
    """Show the categories an utterance would activate."""
    outcome = CommandInterpreter().interpret(utterance)
    cats = sorted(c.value for c in outcome.categories)
    print(orjson.dumps({"kind": outcome.kind.value, "categories": cats}).decode("utf-8"))


@app.command()
def api(
    host: Optional[str] = typer.Option(None, help="Host to bind the API server"),
    port: Optional[int] = typer.Option(None, help="Port for the API server"),
):
    """Launch the HTTP API."""
    from .api import run as run_api

    run_api(host=host, port=port)


if __name__ == "__main__":
    app()
