from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from botkb.app import create_app
from botkb.config import Settings
from botkb.models import CHATBOT_COLLECTION, JOB_COLLECTION


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(data_dir=str(tmp_path), reconcile_interval=0)


@pytest.fixture()
def client(settings: Settings, store, profile) -> TestClient:
    app = create_app(settings=settings, store=store)
    return TestClient(app)


def _create(client: TestClient, slug: str = "acme") -> dict:
    response = client.post("/chatbots", json={"owner": "user-1", "name": "Acme Support", "slug": slug})
    assert response.status_code == 201
    return response.json()


def _upload(client: TestClient, chatbot_id: str, name: str = "guide.pdf", data: bytes = b"%PDF-1.4") -> dict:
    response = client.post(
        f"/chatbots/{chatbot_id}/files",
        files={"file": (name, data, "application/octet-stream")},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_reports_backend(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "store_backend": "local"}


def test_create_chatbot_returns_provisioned_folder(client: TestClient) -> None:
    payload = _create(client)

    assert payload["slug"] == "acme"
    assert payload["folder"]["path"] == "llm/acme"
    assert payload["file_count"] == 0


def test_create_chatbot_rejects_invalid_slug(client: TestClient) -> None:
    response = client.post("/chatbots", json={"owner": "user-1", "name": "Acme", "slug": "Not A Slug"})

    assert response.status_code == 400
    assert "slug" in response.json()["detail"]


def test_file_lifecycle_through_api(client: TestClient, store) -> None:
    chatbot = _create(client)
    uploaded = _upload(client, chatbot["id"])
    file_id = uploaded["file"]["id"]
    assert uploaded["job"]["status"] == "ready"

    listing = client.get(f"/chatbots/{chatbot['id']}/files").json()
    assert [item["id"] for item in listing["files"]] == [file_id]
    assert listing["files"][0]["actions"] == ["build", "delete"]
    assert listing["files"][0]["tabular"] is False

    built = client.post(f"/chatbots/{chatbot['id']}/files/{file_id}/build")
    assert built.status_code == 200
    assert built.json()["job"]["status"] == "start"
    listing = client.get(f"/chatbots/{chatbot['id']}/files").json()
    assert listing["files"][0]["actions"] == ["pause"]

    paused = client.post(f"/chatbots/{chatbot['id']}/files/{file_id}/pause")
    assert paused.json()["job"]["status"] == "ready"

    summary = client.get(f"/chatbots/{chatbot['id']}/summary").json()
    assert summary["total"] == 1
    assert summary["ready"] == 1

    deleted = client.delete(f"/chatbots/{chatbot['id']}/files/{file_id}")
    assert deleted.json() == {"file_id": file_id, "deleted": True}
    assert store.read_items(JOB_COLLECTION) == []
    assert client.get(f"/chatbots/{chatbot['id']}/summary").json()["total"] == 0
    assert store.read_item(CHATBOT_COLLECTION, chatbot["id"])["chatbot_llm"] == 0


def test_building_tabular_file_conflicts(client: TestClient) -> None:
    chatbot = _create(client)
    uploaded = _upload(client, chatbot["id"], name="prices.csv", data=b"sku,price\n1,2\n")

    listing = client.get(f"/chatbots/{chatbot['id']}/files").json()
    assert listing["files"][0]["actions"] == ["import", "delete"]

    response = client.post(f"/chatbots/{chatbot['id']}/files/{uploaded['file']['id']}/build")
    assert response.status_code == 409


def test_unknown_chatbot_is_not_found(client: TestClient) -> None:
    response = client.get("/chatbots/missing/files")

    assert response.status_code == 404
    assert "missing" in response.json()["detail"]


def test_empty_upload_is_bad_request(client: TestClient) -> None:
    chatbot = _create(client)

    response = client.post(f"/chatbots/{chatbot['id']}/files", files={"file": ("empty.txt", b"", "text/plain")})

    assert response.status_code == 400


def test_upload_without_folder_is_conflict(client: TestClient, store) -> None:
    store.fail("create_folder", "beta")
    chatbot = _create(client, slug="beta")
    assert chatbot["folder"] is None

    response = client.post(f"/chatbots/{chatbot['id']}/files", files={"file": ("a.txt", b"abc", "text/plain")})

    assert response.status_code == 409


def test_store_outage_maps_to_bad_gateway(client: TestClient, store) -> None:
    chatbot = _create(client)
    store.fail("read_items", JOB_COLLECTION)

    response = client.get(f"/chatbots/{chatbot['id']}/files")

    assert response.status_code == 502


def test_purge_runs_in_background_and_reports_status(client: TestClient, store) -> None:
    chatbot = _create(client)
    _upload(client, chatbot["id"], name="a.pdf")
    _upload(client, chatbot["id"], name="b.pdf")

    response = client.post(f"/chatbots/{chatbot['id']}/purge")
    assert response.status_code == 202
    job = response.json()

    status = client.get(f"/chatbots/{chatbot['id']}/purge/{job['id']}").json()
    assert status["status"] == "completed"
    assert status["report"]["files_deleted"] == 2
    assert [step["name"] for step in status["steps"]] == ["delete_jobs", "delete_files", "reconcile_stats"]
    assert store.read_item(CHATBOT_COLLECTION, chatbot["id"])["chatbot_llm"] == 0

    missing = client.get(f"/chatbots/other/purge/{job['id']}")
    assert missing.status_code == 404


def test_reconcile_endpoints(client: TestClient, store) -> None:
    chatbot = _create(client)
    folder_id = chatbot["folder"]["id"]
    store.upload_file(folder_id, "direct.txt", b"x" * 10)

    reconciled = client.post(f"/chatbots/{chatbot['id']}/reconcile").json()
    assert reconciled["file_count"] == 1
    assert reconciled["storage_mb"] == 1

    account = client.post("/accounts/user-1/reconcile").json()
    assert account["profile"]["file_count"] == 1
    assert client.post("/accounts/nobody/reconcile").json()["profile"] is None


def test_watch_and_unwatch(settings: Settings, store, profile) -> None:
    app = create_app(settings=settings, store=store)

    with TestClient(app) as client:
        chatbot = _create(client)
        started = client.post(f"/chatbots/{chatbot['id']}/watch")
        assert started.json()["watching"] is True
        assert app.state.services.poller.is_watching(chatbot["id"])

        stopped = client.delete(f"/chatbots/{chatbot['id']}/watch")
        assert stopped.json() == {"chatbot_id": chatbot["id"], "watching": False, "stopped": True}
        assert app.state.services.knowledge_base.tracker.view(chatbot["id"]) is None


def test_metrics_endpoint_disabled_by_default(client: TestClient) -> None:
    assert client.get("/metrics").status_code == 404


def test_metrics_endpoint_exports_prometheus(tmp_path, store, profile) -> None:
    settings = Settings(data_dir=str(tmp_path), reconcile_interval=0, observability_prometheus_enabled=True)
    client = TestClient(create_app(settings=settings, store=store))
    chatbot = _create(client)
    _upload(client, chatbot["id"])

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "botkb_uploads_completed_total" in response.text
