import orjson
import pytest
from typer.testing import CliRunner

import voxredact.core as core
from conftest import FakeDetector, blank_page
from voxredact.cli import app

runner = CliRunner()


@pytest.fixture
def page_dir(tmp_path):
    pages = tmp_path / "scan"
    pages.mkdir()
    for i in range(3):
        blank_page((80, 30)).save(pages / f"{i:03d}.png")
    return pages


@pytest.fixture
def fake_ocr(monkeypatch):
    detector = FakeDetector(
        tokens={0: [("555-123-4567", (2, 2, 30, 10)), ("hello", (40, 2, 20, 10))]},
        fail_on={2},
    )
    monkeypatch.setattr(core, "TesseractDetector", lambda **kwargs: detector)
    return detector


def test_interpret_prints_categories():
    result = runner.invoke(app, ["interpret", "black out the phone numbers"])
    assert result.exit_code == 0
    assert orjson.loads(result.stdout) == {"kind": "match", "categories": ["PHONE"]}


def test_interpret_unknown_command():
    result = runner.invoke(app, ["interpret", "make it pretty"])
    assert orjson.loads(result.stdout)["kind"] == "no_match"


def test_run_writes_pdf_meta_and_audit(page_dir, tmp_path, fake_ocr):
    out = tmp_path / "out.pdf"
    result = runner.invoke(
        app,
        ["run", "-i", str(page_dir), "-o", str(out), "-c", "hide phone numbers"],
    )
    assert result.exit_code == 0, result.stdout
    assert out.read_bytes().startswith(b"%PDF")
    assert "1 of 3 pages could not be analyzed" in result.stdout

    meta = orjson.loads((tmp_path / "out.meta.json").read_bytes())
    assert meta["status"] == "completed"
    assert meta["categories"] == ["PHONE"]
    assert meta["pages"][0]["boxes_applied"] == 1
    assert meta["pages"][2]["flagged"] is True

    audit = orjson.loads((tmp_path / "out.audit.json").read_bytes())
    assert audit["policy"] == {"categories": ["PHONE"], "sequence": 1}
    assert audit["result"]["summary"]["unredacted_pages"] == [2]
    assert audit["output"]["sha256"]


def test_run_merges_explicit_categories(page_dir, tmp_path, fake_ocr):
    out = tmp_path / "out.pdf"
    result = runner.invoke(
        app,
        [
            "run", "-i", str(page_dir), "-o", str(out),
            "-c", "redact all emails", "--category", "ssn", "--no-audit",
        ],
    )
    assert result.exit_code == 0, result.stdout
    meta = orjson.loads((tmp_path / "out.meta.json").read_bytes())
    assert meta["categories"] == ["EMAIL", "NATIONAL_ID"]
    assert not (tmp_path / "out.audit.json").exists()


def test_run_rejects_unknown_category(page_dir, tmp_path, fake_ocr):
    result = runner.invoke(
        app,
        ["run", "-i", str(page_dir), "-o", str(tmp_path / "o.pdf"), "--category", "shoe"],
    )
    assert result.exit_code != 0
    assert not (tmp_path / "o.pdf").exists()


@pytest.mark.parametrize("command", ["make it pretty", "never mind"])
def test_run_refuses_when_nothing_would_be_redacted(page_dir, tmp_path, fake_ocr, command):
    out = tmp_path / "out.pdf"
    result = runner.invoke(app, ["run", "-i", str(page_dir), "-o", str(out), "-c", command])
    assert result.exit_code == 1
    assert "Nothing to redact" in result.stdout
    assert not out.exists()
    assert not (tmp_path / "out.audit.json").exists()
    assert fake_ocr.calls == []
