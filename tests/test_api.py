"""HTTP API tests using FastAPI's TestClient."""

from __future__ import annotations

import base64
import json
import threading
import time

import pytest
from fastapi.testclient import TestClient

from fakes import FakePredictionClient, png_bytes
from imageforge.config import Settings
from imageforge.main import create_app


@pytest.fixture
def fake_client() -> FakePredictionClient:
    return FakePredictionClient(render=lambda _: png_bytes((300, 200)))


@pytest.fixture
def client(tmp_path, fake_client):
    settings = Settings(
        project_dir=tmp_path,
        batch_throttle_seconds=0,
        replicate_api_token="r8_test",
        log_level="DEBUG",
    )
    with TestClient(create_app(settings, client=fake_client)) as test_client:
        yield test_client


def _wait_for(client: TestClient, job_id: str) -> dict:
    for _ in range(500):
        job = client.get(f"/api/v1/jobs/{job_id}").json()
        if job["status"] in ("completed", "failed", "cancelled"):
            return job
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} never finished")


def _submit(client: TestClient, **body) -> dict:
    body.setdefault("model_id", "gemini-2.5")
    body.setdefault("prompt", "a red fox")
    response = client.post("/api/v1/jobs", json=body)
    assert response.status_code == 202, response.text
    return response.json()


def test_health(client: TestClient) -> None:
    for path in ("/health", "/api/v1/health"):
        body = client.get(path).json()
        assert body["status"] == "healthy"
        assert body["running_jobs"] == 0


def test_list_models(client: TestClient) -> None:
    body = client.get("/api/v1/models").json()

    models = {m["model_id"]: m for m in body["models"]}
    assert body["count"] == len(models)
    assert models["gpt-image-1.5"]["supports_native_count"] is True
    assert models["gpt-image-1.5"]["aspect_ratios"] == ["2:3", "1:1", "3:2"]
    assert models["gemini-3.0"]["options_kind"] == "resolution"
    assert models["gemini-2.5"]["estimated_seconds"] is None


def test_submit_and_fetch_outputs(client: TestClient, fake_client: FakePredictionClient) -> None:
    reference = base64.b64encode(png_bytes()).decode()
    submitted = _submit(client, image_count=2, aspect_ratio="16:9", reference_images=[reference])

    assert submitted["status"] == "pending"
    assert submitted["settings_summary"] == "16:9 · 2 images"
    assert "error" not in submitted

    job = _wait_for(client, submitted["id"])
    assert job["status"] == "completed"
    assert len(job["output_paths"]) == 2
    assert len(job["reference_paths"]) == 1
    assert job["request_params"]["image_input"] == job["reference_paths"]
    assert len(fake_client.created) == 2

    name = job["output_paths"][0].split("/")[-1]
    image = client.get(f"/api/v1/outputs/{name}")
    assert image.status_code == 200
    assert image.headers["content-type"] == "image/png"
    assert client.get(f"/api/v1/outputs/{name}", params={"thumbnail": True}).status_code == 200

    provenance = client.get(f"/api/v1/outputs/{name}/provenance").json()
    assert provenance["prompt"] == "a red fox"
    assert provenance["aspect_ratio"] == "16:9"
    assert len(provenance["reference_hashes"]) == 1

    listing = client.get("/api/v1/jobs").json()
    assert listing["count"] == 1
    assert listing["running"] == 0


def test_submit_uses_model_default_options(client: TestClient, fake_client: FakePredictionClient) -> None:
    job = _wait_for(client, _submit(client, model_id="gpt-image-1.5", image_count=3)["id"])

    assert job["options"] == {
        "kind": "gpt_image",
        "quality": "medium",
        "background": "auto",
        "input_fidelity": "high",
    }
    assert len(fake_client.created) == 1
    assert fake_client.created[0][1]["number_of_images"] == 3


def test_submit_rejections(client: TestClient) -> None:
    cases = [
        ({"model_id": "dall-e", "prompt": "x"}, 404),
        ({"model_id": "gemini-2.5", "prompt": "   "}, 400),
        ({"model_id": "gemini-2.5", "prompt": "x", "reference_images": ["***"]}, 400),
        ({"model_id": "gemini-2.5", "prompt": "x", "options": {"kind": "gpt_image"}}, 400),
        ({"model_id": "gemini-2.5", "prompt": "x", "options": {"kind": "nope"}}, 422),
    ]
    for body, status in cases:
        assert client.post("/api/v1/jobs", json=body).status_code == status, body

    assert client.get("/api/v1/jobs").json()["count"] == 0


def test_failed_job_reports_error(tmp_path) -> None:
    settings = Settings(project_dir=tmp_path, batch_throttle_seconds=0)
    with TestClient(create_app(settings, client=FakePredictionClient(fail_ids=("p0",)))) as client:
        job = _wait_for(client, _submit(client)["id"])

    assert job["status"] == "failed"
    assert job["error"] == "Generation failed: p0 exploded"


def test_cancel_and_remove(client: TestClient) -> None:
    job = _wait_for(client, _submit(client)["id"])

    conflict = client.post(f"/api/v1/jobs/{job['id']}/cancel")
    assert conflict.status_code == 409

    assert client.delete(f"/api/v1/jobs/{job['id']}").status_code == 204
    assert client.get(f"/api/v1/jobs/{job['id']}").status_code == 404


def test_cancel_running_job(tmp_path) -> None:
    fake = FakePredictionClient(delays={"p0": 30})
    settings = Settings(project_dir=tmp_path, batch_throttle_seconds=0)
    with TestClient(create_app(settings, client=fake)) as client:
        job = _submit(client)
        cancelled = client.post(f"/api/v1/jobs/{job['id']}/cancel")

        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert client.post(f"/api/v1/jobs/{job['id']}/cancel").status_code == 409


def test_unknown_job_is_404(client: TestClient) -> None:
    assert client.get("/api/v1/jobs/missing").status_code == 404
    assert client.post("/api/v1/jobs/missing/cancel").status_code == 404
    assert client.delete("/api/v1/jobs/missing").status_code == 404


def test_missing_output_is_404(client: TestClient) -> None:
    assert client.get("/api/v1/outputs/nothing.png").status_code == 404
    assert client.get("/api/v1/outputs/nothing.png/provenance").status_code == 404


def test_delete_outputs_reclaims_sidecar(client: TestClient, tmp_path) -> None:
    job = _wait_for(client, _submit(client)["id"])
    name = job["output_paths"][0].split("/")[-1]

    body = client.post("/api/v1/outputs/delete", json={"file_names": [name]}).json()

    assert body["deleted"] == 1
    assert body["reclaimed_sidecars"] == [name[: -len(".png")]]
    assert not (tmp_path / "generations" / name).exists()


def test_project_size(client: TestClient) -> None:
    _wait_for(client, _submit(client)["id"])

    body = client.get("/api/v1/project").json()

    assert body["size_bytes"] > 0
    assert body["size_text"].endswith("MB")


def test_preferences_round_trip(client: TestClient) -> None:
    assert client.get("/api/v1/preferences").json()["selected_model"] == "gemini-2.5"

    updated = {
        "selected_model": "flux-2-pro",
        "image_count": 2,
        "aspect_ratio": "4:5",
        "activity_thumbnail_size": 96,
    }
    assert client.put("/api/v1/preferences", json=updated).json() == updated
    assert client.get("/api/v1/preferences").json() == updated


def test_job_events_stream(client: TestClient) -> None:
    ledger = client.app.state.ledger
    received = {}

    def follow():
        received["response"] = client.get("/api/v1/jobs/events", params={"limit": 3})

    reader = threading.Thread(target=follow)
    reader.start()
    for _ in range(500):
        if ledger.subscriber_count:
            break
        time.sleep(0.01)
    job = _submit(client)
    reader.join(timeout=10)

    assert not reader.is_alive()
    response = received["response"]
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]
    assert [event["status"] for event in events] == ["pending", "running", "completed"]
    assert {event["job_id"] for event in events} == {job["id"]}
    assert ledger.subscriber_count == 0


def test_job_events_rejects_non_positive_limit(client: TestClient) -> None:
    assert client.get("/api/v1/jobs/events", params={"limit": 0}).status_code == 422
