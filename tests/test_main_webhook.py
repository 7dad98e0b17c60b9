import hmac
import hashlib
import json
import time

import pytest
from fastapi.testclient import TestClient

from mergeconfig import main as mainmod
from mergeconfig.main import app

SECRET = "test-secret"


def sign(secret: str, body: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256)
    return "sha256=" + mac.hexdigest()


class FakeGH:
    files = {".bulldozer.yml": b"mode: body\nstrategy: squash\n"}
    seen = []

    def __init__(self, installation_id):
        self.installation_id = installation_id

    def fetch_file(self, ctx, owner, repo, ref, path):
        FakeGH.seen.append((self.installation_id, owner, repo, ref, path))
        return self.files.get(path)


@pytest.fixture(autouse=True)
def _fake_github(monkeypatch):
    monkeypatch.setenv("WEBHOOK_SECRET", SECRET)
    monkeypatch.setattr(mainmod, "GitHubClient", FakeGH)
    monkeypatch.setattr(mainmod.SETTINGS, "config_path", ".bulldozer.v1.yml")
    monkeypatch.setattr(mainmod.SETTINGS, "legacy_config_paths", [".bulldozer.yml"])
    FakeGH.seen = []


def test_metrics_endpoint_exposes_prometheus():
    client = TestClient(app)
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "service_info" in r.text


def test_healthz():
    r = TestClient(app).get("/healthz")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_webhook_invalid_signature_401():
    client = TestClient(app)
    body = json.dumps({"action": "opened"}).encode("utf-8")
    r = client.post(
        "/webhook",
        content=body,
        headers={
            "X-GitHub-Event": "pull_request",
            "X-Hub-Signature-256": "sha256=deadbeef",
            "X-GitHub-Delivery": "1",
        },
    )
    assert r.status_code == 401


def test_webhook_pull_request_resolves_base_config():
    client = TestClient(app)
    payload = {
        "action": "opened",
        "pull_request": {
            "number": 42,
            "base": {"ref": "main", "repo": {"name": "repo", "owner": {"login": "octo"}}},
        },
        "repository": {"name": "repo", "owner": {"login": "octo"}},
        "installation": {"id": 123},
    }
    body = json.dumps(payload).encode("utf-8")
    r = client.post(
        "/webhook",
        content=body,
        headers={
            "X-GitHub-Event": "pull_request",
            "X-Hub-Signature-256": sign(SECRET, body),
            "X-GitHub-Delivery": "2",
        },
    )
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "found"
    assert data["path"] == ".bulldozer.yml"
    assert data["config"]["merge"]["whitelist"]["comment_substrings"] == ["==MERGE_WHEN_READY=="]
    assert all(call[:4] == (123, "octo", "repo", "main") for call in FakeGH.seen)


def test_webhook_other_events_accepted():
    client = TestClient(app)
    body = json.dumps({"action": "completed", "installation": {"id": 1}}).encode("utf-8")
    r = client.post(
        "/webhook",
        content=body,
        headers={"X-GitHub-Event": "check_suite", "X-Hub-Signature-256": sign(SECRET, body)},
    )
    assert r.status_code == 202
    assert FakeGH.seen == []


def test_webhook_invalid_json_400():
    client = TestClient(app)
    body = b"{not json"
    r = client.post(
        "/webhook",
        content=body,
        headers={"X-GitHub-Event": "pull_request", "X-Hub-Signature-256": sign(SECRET, body)},
    )
    assert r.status_code == 400


def test_repo_config_endpoint_reports_failure(monkeypatch):
    monkeypatch.setattr(FakeGH, "files", {})
    r = TestClient(app).get("/repos/octo/repo/config", params={"ref": "main", "installation_id": 9})
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "failed"
    assert [call[-1] for call in FakeGH.seen][0] == mainmod.SETTINGS.config_path


def test_webhook_pull_request_without_base_400():
    client = TestClient(app)
    payload = {"action": "opened", "pull_request": {"number": 5}, "installation": {"id": 123}}
    body = json.dumps(payload).encode("utf-8")
    r = client.post(
        "/webhook",
        content=body,
        headers={"X-GitHub-Event": "pull_request", "X-Hub-Signature-256": sign(SECRET, body)},
    )
    assert r.status_code == 400
    assert FakeGH.seen == []


def test_resolution_deadline_comes_from_settings(monkeypatch):
    deadlines = []

    class RecordingGH(FakeGH):
        def fetch_file(self, ctx, owner, repo, ref, path):
            deadlines.append(ctx.deadline)
            return super().fetch_file(ctx, owner, repo, ref, path)

    monkeypatch.setattr(mainmod, "GitHubClient", RecordingGH)
    monkeypatch.setattr(mainmod.SETTINGS, "resolve_timeout_seconds", 2.0)
    start = time.time()
    r = TestClient(app).get("/repos/octo/repo/config", params={"ref": "main", "installation_id": 9})
    assert r.status_code == 200
    assert deadlines
    assert all(start < d <= time.time() + 2.0 for d in deadlines)
