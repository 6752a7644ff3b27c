from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from stack_agent import app_dirs, settings
from stack_agent.errors import RuntimeUnavailable
from stack_agent.main import create_app
from stack_agent.runtime import ContainerStatus, image_tag
from tests.fake_runtime import FakeBuilder, FakeRuntime

TOKEN = "test-token"
HEADERS = {"X-Agent-Token": TOKEN}


@pytest.fixture
def agent(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(settings, "STACK_AGENT_TOKEN", TOKEN)
    runtime = FakeRuntime()
    builder = FakeBuilder()
    api = create_app(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        runtime=runtime,
        builder=builder,
        apps_root=str(tmp_path / "apps"),
    )
    with TestClient(api) as client:
        yield client, runtime, builder, str(tmp_path / "apps")


def make_reusable(client, runtime, root, app_id):
    build = client.post(f"/agent/apps/{app_id}/builds", headers=HEADERS).json()
    directory = app_dirs.get_or_create_app_directory(app_id, root)
    runtime.configs[directory] = {"services": {"app": {"image": build["image"]}}}
    runtime.images.add(build["image"])
    return build


def test_health_is_open(agent):
    client, *_ = agent
    assert client.get("/internal/health").json() == {"ok": True}


def test_token_required(agent):
    client, *_ = agent
    assert client.get("/agent/apps").status_code == 401
    assert client.get("/agent/apps", headers={"X-Agent-Token": "wrong"}).status_code == 401


def test_create_and_list(agent):
    client, runtime, *_ = agent
    resp = client.post("/agent/apps", json={"name": "web", "ports": [{"external": 8080, "internal": 80}]}, headers=HEADERS)
    assert resp.status_code == 201
    app_id = resp.json()["id"]

    dup = client.post("/agent/apps", json={"name": "web"}, headers=HEADERS)
    assert dup.status_code == 400
    assert dup.json()["message"] == "An app with that name already exists"

    listed = client.get("/agent/apps", headers=HEADERS).json()
    assert [(a["id"], a["status"]) for a in listed] == [(app_id, "exited")]


def test_validation_error(agent):
    client, *_ = agent
    resp = client.post("/agent/apps", json={"name": "", "ports": [{"external": 0, "internal": 80}]}, headers=HEADERS)
    assert resp.status_code == 422


def test_start_without_build_requests_one(agent):
    client, runtime, builder, _ = agent
    app_id = client.post("/agent/apps", json={"name": "web"}, headers=HEADERS).json()["id"]
    resp = client.post(f"/agent/apps/{app_id}/start", headers=HEADERS)
    assert resp.status_code == 202
    assert resp.json()["reason"] == "directory"
    assert builder.requests == [(app_id, "directory")]


def test_start_stop_cycle(agent):
    client, runtime, builder, root = agent
    app_id = client.post("/agent/apps", json={"name": "web"}, headers=HEADERS).json()["id"]
    build = make_reusable(client, runtime, root, app_id)
    assert build["image"] == image_tag(build["id"])

    resp = client.post(f"/agent/apps/{app_id}/start", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() == {"message": "App is now running", "status": "running"}

    again = client.post(f"/agent/apps/{app_id}/start", headers=HEADERS)
    assert again.status_code == 400
    assert again.json()["message"] == "The app is already running"

    assert client.post(f"/agent/apps/{app_id}/stop", headers=HEADERS).status_code == 200
    stopped = client.post(f"/agent/apps/{app_id}/stop", headers=HEADERS)
    assert stopped.status_code == 400
    assert stopped.json()["message"] == "The app is not running"
    assert builder.requests == []


def test_start_failure_message(agent):
    client, runtime, _, root = agent
    app_id = client.post("/agent/apps", json={"name": "web"}, headers=HEADERS).json()["id"]
    make_reusable(client, runtime, root, app_id)
    runtime.start_error = RuntimeUnavailable("docker compose up failed", "boom")
    resp = client.post(f"/agent/apps/{app_id}/start", headers=HEADERS)
    assert resp.status_code == 500
    assert resp.json()["message"] == "Error when running project: boom"


def test_unknown_app_is_404(agent):
    client, *_ = agent
    for method, path in [
        ("post", "/agent/apps/nope/start"),
        ("post", "/agent/apps/nope/stop"),
        ("delete", "/agent/apps/nope"),
        ("get", "/agent/apps/nope/realtime"),
        ("get", "/agent/apps/nope/logs/realtime"),
        ("get", "/agent/apps/nope/builds"),
    ]:
        resp = getattr(client, method)(path, headers=HEADERS)
        assert resp.status_code == 404, path


def test_logs_rejected_when_not_running(agent):
    client, *_ = agent
    app_id = client.post("/agent/apps", json={"name": "web"}, headers=HEADERS).json()["id"]
    assert client.get(f"/agent/apps/{app_id}/logs/realtime", headers=HEADERS).status_code == 400


def test_update_and_force_delete(agent):
    client, runtime, _, root = agent
    web = client.post("/agent/apps", json={"name": "web"}, headers=HEADERS).json()["id"]
    client.post("/agent/apps", json={"name": "api"}, headers=HEADERS)

    assert client.put(f"/agent/apps/{web}", json={"name": "api"}, headers=HEADERS).status_code == 400
    resp = client.put(f"/agent/apps/{web}", json={"name": "site", "branch": "main"}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["name"] == "site"

    runtime.set_status(web, ContainerStatus.RUNNING)
    assert client.delete(f"/agent/apps/{web}?force=true", headers=HEADERS).status_code == 200
    assert ("stop_stack", str(Path(root) / web)) in runtime.calls
    assert app_dirs.get_app_directory(web, root) is None
    names = [a["name"] for a in client.get("/agent/apps", headers=HEADERS).json()]
    assert names == ["api"]


def test_single_build(agent):
    client, runtime, _, root = agent
    app_id = client.post("/agent/apps", json={"name": "web"}, headers=HEADERS).json()["id"]
    build = client.post(f"/agent/apps/{app_id}/builds", headers=HEADERS).json()
    resp = client.get(f"/agent/apps/{app_id}/builds/{build['id']}", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["image"] == image_tag(build["id"])
    missing = client.get(f"/agent/apps/{app_id}/builds/nope", headers=HEADERS)
    assert missing.status_code == 404
    assert missing.json()["message"] == "There is no build with that id"
