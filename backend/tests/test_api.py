import logging

import pytest
from fastapi.testclient import TestClient

from archive_ingest.api.dependencies.db import get_session
from archive_ingest.core.policy import IngestPolicy, get_policy
from archive_ingest.db.models import ImportFile
from archive_ingest.main import create_app
from archive_ingest.services import progress_tracker

DIGEST = "0F" * 32


@pytest.fixture
def client(session_factory):
    app = create_app()

    def _session():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_policy] = lambda: IngestPolicy()
    with TestClient(app) as client:
        yield client


def _batch_with_import(client, expected=1):
    batch = client.post("/api/batches/", json={"file_count_expected": expected}).json()
    owner = client.post("/api/imports/", json={"batch_id": batch["id"]}).json()
    return batch, owner


def test_liveness(client):
    assert client.get("/health/live").json()["status"] == "ok"


def test_create_and_fetch_batch(client):
    response = client.post(
        "/api/batches/",
        json={
            "source_system": "scanner-3",
            "created_by": "archivist",
            "manifest_sha256": "AA" * 32,
            "file_count_expected": 4,
            "metadata": {"shelf": "B12"},
        },
    )
    assert response.status_code == 201
    created = response.json()
    assert created["status_name"] == "PENDING"
    assert created["manifest_sha256"] == "aa" * 32
    assert created["metadata"] == {"shelf": "B12"}
    assert created["completion_percentage"] == 0

    fetched = client.get(f"/api/batches/{created['id']}").json()
    assert fetched["id"] == created["id"]
    assert client.get("/api/batches/").json()["total"] == 1


def test_file_round_trip_through_the_queue(client):
    batch, owner = _batch_with_import(client)
    created = client.post(
        "/api/import-files/",
        json={"import_id": owner["id"], "path": "/reel/001.mov", "sha256": DIGEST, "size_bytes": 1536},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["sha256"] == DIGEST.lower()
    assert body["size_formatted"] == "1.5 KB"
    assert body["batch_id"] == batch["id"]
    assert body["is_in_queue"] is True

    claimed = client.post(f"/api/queue/{owner['id']}/claim", params={"limit": 5}).json()
    assert [f["id"] for f in claimed] == [body["id"]]
    assert claimed[0]["status_name"] == "PROCESSING"

    ingested = client.patch(f"/api/import-files/{body['id']}/ingest").json()
    assert ingested["is_terminal"] is True

    final = client.get(f"/api/batches/{batch['id']}").json()
    assert final["status_name"] == "COMPLETED"
    assert final["completion_percentage"] == 100

    stats = client.get(f"/api/queue/{owner['id']}/stats").json()
    assert stats["ingested"] == 1
    assert stats["active"] == 0


def test_validation_errors_map_to_422(client):
    _, owner = _batch_with_import(client)
    response = client.post(
        "/api/import-files/",
        json={"import_id": owner["id"], "path": "/x", "sha256": "not-hex"},
    )
    assert response.status_code == 422
    assert response.json()["detail"][0]["field"] == "sha256"

    assert client.get("/api/batches/not-a-uuid").status_code == 422


def test_missing_records_map_to_404(client):
    assert client.get("/api/import-files/999").status_code == 404
    assert client.get("/api/batches/00000000-0000-0000-0000-000000000000").status_code == 404


def test_illegal_transition_maps_to_409(client):
    _, owner = _batch_with_import(client)
    created = client.post(
        "/api/import-files/",
        json={"import_id": owner["id"], "path": "/x", "sha256": DIGEST},
    ).json()

    response = client.patch(f"/api/import-files/{created['id']}/ingest")
    assert response.status_code == 409
    assert response.json()["current"] == "PENDING"


def test_failure_payload_is_required(client):
    _, owner = _batch_with_import(client)
    created = client.post(
        "/api/import-files/",
        json={"import_id": owner["id"], "path": "/x", "sha256": DIGEST},
    ).json()
    client.post(f"/api/queue/{owner['id']}/claim")

    assert client.patch(f"/api/import-files/{created['id']}/fail", json={}).status_code == 422
    failed = client.patch(
        f"/api/import-files/{created['id']}/fail", json={"message": "bad checksum"}
    ).json()
    assert failed["attempt_count"] == 1
    assert failed["is_retryable"] is True
    retried = client.patch(f"/api/import-files/{created['id']}/retry").json()
    assert retried["status_name"] == "PROCESSING"


def test_attempt_endpoints(client):
    _, owner = _batch_with_import(client)
    started = client.post("/api/import-attempts/", json={"import_id": owner["id"]})
    assert started.status_code == 201
    attempt = started.json()
    assert attempt["is_in_progress"] is True

    second = client.post("/api/import-attempts/", json={"import_id": owner["id"]})
    assert second.status_code == 409

    assert client.delete(f"/api/import-attempts/{attempt['id']}").status_code == 409
    client.patch(f"/api/import-attempts/{attempt['id']}/run")
    finished = client.patch(f"/api/import-attempts/{attempt['id']}/finish").json()
    assert finished["status_name"] == "COMPLETED"
    assert finished["duration_formatted"] is not None
    assert client.delete(f"/api/import-attempts/{attempt['id']}").status_code == 204


def test_cancel_batch_stops_claims(client):
    batch, owner = _batch_with_import(client, expected=2)
    client.post(
        "/api/import-files/",
        json={"import_id": owner["id"], "path": "/x", "sha256": DIGEST},
    )
    cancelled = client.post(f"/api/batches/{batch['id']}/cancel").json()
    assert cancelled["status_name"] == "CANCELLED"
    assert client.post(f"/api/queue/{owner['id']}/claim").json() == []


def test_consistency_and_reconcile(client):
    batch, _ = _batch_with_import(client)
    report = client.get(f"/api/batches/{batch['id']}/consistency").json()
    assert report == {"batch_id": batch["id"], "consistent": True, "problems": []}

    reconciled = client.post(f"/api/batches/{batch['id']}/reconcile").json()
    assert reconciled["status_name"] == "PENDING"


def test_delete_import(client):
    _, owner = _batch_with_import(client)
    assert client.delete(f"/api/imports/{owner['id']}").status_code == 204
    assert client.get(f"/api/imports/{owner['id']}").status_code == 404


def test_progress_snapshot(client, monkeypatch):
    batch, _ = _batch_with_import(client)
    monkeypatch.setattr(
        "archive_ingest.api.routers.batches.fetch_batch_progress",
        lambda batch_id: {"batch_id": batch_id, "status": "PENDING"},
    )
    body = client.get(f"/api/batches/{batch['id']}/progress").json()
    assert body == {"batch_id": batch["id"], "status": "PENDING"}


def test_snapshot_shape(session, make_batch):
    batch = make_batch(file_count_expected=4)
    snapshot = progress_tracker.batch_snapshot(batch)
    assert snapshot["status"] == "PENDING"
    assert snapshot["completion_percentage"] == 0


def _register(client, owner, path="/reel/002.mov", sha256=DIGEST):
    response = client.post(
        "/api/import-files/",
        json={"import_id": owner["id"], "path": path, "sha256": sha256, "size_bytes": 10},
    )
    assert response.status_code == 201
    return response.json()


def test_storage_failures_map_to_500_without_driver_detail(client, engine, caplog):
    ImportFile.__table__.drop(engine)

    with caplog.at_level(logging.ERROR, logger="archive_ingest"):
        response = client.get("/api/import-files/")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal storage error"}
    assert "no such table" not in response.text
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert [r.name for r in errors] == ["archive_ingest.db.guard"]
    assert "no such table" in errors[0].getMessage()


def test_retryability_follows_the_injected_policy(client):
    client.app.dependency_overrides[get_policy] = lambda: IngestPolicy(retry_ceiling=0)
    _, owner = _batch_with_import(client)
    created = _register(client, owner)
    client.post(f"/api/queue/{owner['id']}/claim")

    failed = client.patch(
        f"/api/import-files/{created['id']}/fail", json={"message": "bad checksum"}
    ).json()
    assert failed["attempt_count"] == 1
    assert failed["is_retryable"] is False

    client.app.dependency_overrides[get_policy] = lambda: IngestPolicy(retry_ceiling=3)
    assert client.get(f"/api/import-files/{created['id']}").json()["is_retryable"] is True


def test_update_batch_endpoint(client):
    batch = client.post("/api/batches/", json={}).json()
    owner = client.post("/api/imports/", json={"batch_id": batch["id"]}).json()
    _register(client, owner, path="/reel/a.mov", sha256="01" * 32)
    _register(client, owner, path="/reel/b.mov", sha256="02" * 32)

    too_low = client.put(f"/api/batches/{batch['id']}", json={"file_count_expected": 1})
    assert too_low.status_code == 422
    assert too_low.json()["detail"][0]["field"] == "file_count_expected"

    response = client.put(
        f"/api/batches/{batch['id']}",
        json={"file_count_expected": 2, "manifest_sha256": "EE" * 32},
    )
    assert response.status_code == 200
    assert response.json()["file_count_expected"] == 2
    assert response.json()["manifest_sha256"] == "ee" * 32

    again = client.put(f"/api/batches/{batch['id']}", json={"file_count_expected": 3})
    assert again.status_code == 409


def test_delete_batch_endpoint(client):
    batch, owner = _batch_with_import(client)
    assert client.delete(f"/api/batches/{batch['id']}").status_code == 409

    client.post(f"/api/batches/{batch['id']}/cancel")
    assert client.delete(f"/api/batches/{batch['id']}").status_code == 204
    assert client.get(f"/api/batches/{batch['id']}").status_code == 404
    assert client.get(f"/api/imports/{owner['id']}").json()["batch_id"] is None


def test_update_file_endpoint(client):
    _, owner = _batch_with_import(client)
    created = _register(client, owner)

    response = client.put(
        f"/api/import-files/{created['id']}", json={"path": "/reel/renamed.mov", "size_bytes": 2048}
    )
    assert response.status_code == 200
    assert response.json()["path"] == "/reel/renamed.mov"
    assert response.json()["size_bytes"] == 2048

    client.post(f"/api/queue/{owner['id']}/claim")
    client.patch(f"/api/import-files/{created['id']}/ingest")
    refused = client.put(f"/api/import-files/{created['id']}", json={"size_bytes": 1})
    assert refused.status_code == 409
