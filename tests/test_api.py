import importlib
import time

import pytest
from fastapi.testclient import TestClient

import voxredact.settings as settings
from conftest import FakeDetector, blank_page
from voxredact.health import HealthCheckResult

AUTH = {"Authorization": "Bearer super-secret"}


@pytest.fixture
def api_client(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("VOXREDACT_API_TOKEN", "super-secret")
    monkeypatch.setenv("VOXREDACT_READY_CHECK_OCR", "false")
    monkeypatch.setenv("VOXREDACT_READY_CHECK_POPPLER", "false")
    settings.reset_settings_cache()
    import voxredact.api as api  # noqa: F401

    api = importlib.reload(api)
    yield TestClient(api.app), api
    if api.session.coordinator is not None:
        api.session.coordinator.close()
        api.session.coordinator.wait()
    settings.reset_settings_cache()


@pytest.fixture
def page_dir(tmp_path):
    pages = tmp_path / "pages"
    pages.mkdir()
    for i in range(2):
        blank_page((80, 30)).save(pages / f"page-{i}.png")
    return pages


def test_session_requires_bearer_token(api_client):
    client, _ = api_client
    resp = client.post("/session/commands", json={"utterance": "hide emails"})
    assert resp.status_code == 401
    resp = client.post(
        "/session/commands",
        headers={"Authorization": "Bearer wrong"},
        json={"utterance": "hide emails"},
    )
    assert resp.status_code == 401


def test_health_endpoints_are_open(api_client):
    client, _ = api_client
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/livez").status_code == 200
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"ready": True, "checks": []}


def test_readyz_reflects_health(api_client, monkeypatch: pytest.MonkeyPatch):
    client, api = api_client

    def fake_checks(_settings):
        return [HealthCheckResult(name="tesseract", status="fail", detail="missing", required=True)]

    monkeypatch.setattr(api, "run_readiness_checks", fake_checks)
    resp = client.get("/readyz")
    assert resp.status_code == 503
    payload = resp.json()
    assert payload["ready"] is False
    assert payload["checks"][0]["name"] == "tesseract"


def test_commands_without_document_update_policy(api_client):
    client, _ = api_client
    resp = client.post("/session/commands", headers=AUTH, json={"utterance": "banana"})
    assert resp.json() == {"kind": "no_match", "categories": [], "sequence": 0}
    resp = client.post(
        "/session/commands", headers=AUTH, json={"utterance": "Redact all emails"}
    )
    assert resp.json() == {"kind": "match", "categories": ["EMAIL"], "sequence": 1}
    assert client.post("/session/runs", headers=AUTH, json={}).status_code == 409


def test_missing_and_unsupported_documents(api_client, tmp_path):
    client, _ = api_client
    resp = client.post(
        "/session/document", headers=AUTH, json={"input_path": str(tmp_path / "nope.pdf")}
    )
    assert resp.status_code == 404
    notes = tmp_path / "notes.txt"
    notes.write_text("hello")
    resp = client.post("/session/document", headers=AUTH, json={"input_path": str(notes)})
    assert resp.status_code == 415


def test_command_triggers_run_and_export(api_client, page_dir, tmp_path):
    client, api = api_client
    api.session.detector = FakeDetector(
        tokens={0: [("alice@example.com", (5, 5, 20, 10))]}
    )
    output = tmp_path / "out.pdf"
    resp = client.post(
        "/session/document",
        headers=AUTH,
        json={"input_path": str(page_dir), "output_path": str(output)},
    )
    assert resp.status_code == 201
    assert resp.json()["page_count"] == 2
    assert client.get("/session/result", headers=AUTH).status_code == 404

    resp = client.post("/session/commands", headers=AUTH, json={"utterance": "hide emails"})
    assert resp.json()["kind"] == "match"

    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        resp = client.get("/session/result", headers=AUTH)
        if resp.status_code == 200:
            break
        time.sleep(0.05)
    assert resp.status_code == 200
    api.session.coordinator.wait()
    body = client.get("/session/result", headers=AUTH).json()
    assert body["status"] == "completed"
    assert body["categories"] == ["EMAIL"]
    assert body["pages"][0]["boxes_applied"] == 1
    assert output.read_bytes().startswith(b"%PDF")

    progress = client.get("/session/progress", headers=AUTH).json()
    assert progress["running"] is False
    assert progress["event"]["sequence"] == 1

    exported = tmp_path / "copy.pdf"
    resp = client.post("/session/export", headers=AUTH, json={"output_path": str(exported)})
    assert resp.status_code == 200
    assert resp.json() == {"output_path": str(exported), "sequence": 1}
    assert exported.read_bytes().startswith(b"%PDF")


def test_runs_endpoint_rejects_unknown_category(api_client, page_dir, tmp_path):
    client, api = api_client
    api.session.detector = FakeDetector()
    client.post(
        "/session/document",
        headers=AUTH,
        json={"input_path": str(page_dir), "output_path": str(tmp_path / "o.pdf")},
    )
    resp = client.post("/session/runs", headers=AUTH, json={"categories": ["shoe size"]})
    assert resp.status_code == 422
    resp = client.post("/session/runs", headers=AUTH, json={"categories": ["ssn"]})
    assert resp.status_code == 202
    assert resp.json() == {"sequence": 1, "categories": ["NATIONAL_ID"]}
