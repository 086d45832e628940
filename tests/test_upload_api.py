from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace

import pytest
from conftest import FakeExtractor, FakeStorage
from fastapi.testclient import TestClient

from rxflow.api import upload as upload_api
from rxflow.core.config import settings
from rxflow.core.errors import ValidationError
from rxflow.db.session import SessionLocal
from rxflow.main import app
from rxflow.models.job_metric import JobMetric
from rxflow.services import intake
from rxflow.services.intake import ext_from_content_type
from rxflow.worker import processor as processor_mod
from rxflow.worker import tasks as worker_tasks
from rxflow.worker.processor import JobProcessor

client = TestClient(app)

PDF_BYTES = b"%PDF-1.4\n% test prescription\n"


def _auth(key: str) -> dict:
    return {"Authorization": f"Bearer {key}"}


@pytest.fixture
def queued(monkeypatch):
    """Capture enqueued tasks instead of running them."""
    sent = []
    monkeypatch.setattr(worker_tasks, "enqueue", lambda task: sent.append(task))
    return sent


def test_upload_multipart_pdf_is_queued(tenant, queued):
    r = client.post(
        "/upload",
        headers=_auth("tenant-key"),
        files={"file": ("receita.pdf", PDF_BYTES, "application/pdf")},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "processing"
    job_id = body["job_id"]

    assert len(queued) == 1
    task = queued[0]
    assert task.job_id == job_id
    assert task.client_id == tenant.id
    assert task.ext == "pdf"
    assert task.credential == "sk-tenant"
    assert task.to_message()["jobId"] == job_id

    path = Path(settings.upload_dir) / f"{job_id}.pdf"
    assert path.read_bytes() == PDF_BYTES
    assert task.filepath == str(path)

    db = SessionLocal()
    try:
        m = db.query(JobMetric).filter(JobMetric.job_id == job_id).one()
        assert m.status == "pending"
        assert m.client_id == tenant.id
        assert m.file_type == "pdf"
    finally:
        db.close()


def test_upload_by_url(tenant, queued, monkeypatch):
    seen = {}

    def fake_download(url, *, max_bytes, timeout):
        seen["url"] = url
        return b"\xff\xd8\xff fake jpeg", "jpg"

    monkeypatch.setattr(intake, "download_file", fake_download)

    r = client.post("/upload", headers=_auth("tenant-key"), json={"file_url": "https://cdn.example.com/rx/123"})
    assert r.status_code == 200
    assert seen["url"] == "https://cdn.example.com/rx/123"
    assert queued[0].ext == "jpg"


def test_upload_without_file_or_url_is_400(tenant, queued):
    r = client.post("/upload", headers=_auth("tenant-key"), json={})
    assert r.status_code == 400
    assert queued == []


def test_upload_invalid_extension_is_400(tenant, queued):
    r = client.post(
        "/upload",
        headers=_auth("tenant-key"),
        files={"file": ("receita.gif", b"GIF89a", "image/gif")},
    )
    assert r.status_code == 400
    assert "invalid file format" in r.json()["detail"]
    assert queued == []


def test_upload_with_global_key_is_403(global_client, queued):
    r = client.post(
        "/upload",
        headers=_auth("global-key"),
        files={"file": ("receita.pdf", PDF_BYTES, "application/pdf")},
    )
    assert r.status_code == 403
    assert queued == []


def test_upload_without_token_is_401():
    r = client.post("/upload", files={"file": ("receita.pdf", PDF_BYTES, "application/pdf")})
    assert r.status_code == 401


def test_upload_with_unknown_token_is_401(tenant):
    r = client.post("/upload", headers=_auth("nope"), files={"file": ("receita.pdf", PDF_BYTES, "application/pdf")})
    assert r.status_code == 401


def test_upload_with_inactive_client_is_403(inactive_client):
    r = client.post("/upload", headers=_auth("inactive-key"), files={"file": ("receita.pdf", PDF_BYTES, "application/pdf")})
    assert r.status_code == 403


def test_enqueue_failure_marks_job_failed_and_removes_file(tenant, monkeypatch):
    def broken_enqueue(task):
        raise ConnectionError("redis down")

    monkeypatch.setattr(worker_tasks, "enqueue", broken_enqueue)

    r = client.post(
        "/upload",
        headers=_auth("tenant-key"),
        files={"file": ("receita.pdf", PDF_BYTES, "application/pdf")},
    )
    assert r.status_code == 503

    db = SessionLocal()
    try:
        jobs = db.query(JobMetric).all()
        assert len(jobs) == 1
        assert jobs[0].status == "falha"
        assert jobs[0].error_type == "enqueue failed: redis down"
        assert not (Path(settings.upload_dir) / f"{jobs[0].job_id}.pdf").exists()
    finally:
        db.close()


def test_upload_runs_job_eagerly_in_test_env(tenant, monkeypatch):
    # ENV=test makes celery eager: the job is processed inside the request
    monkeypatch.setattr(processor_mod, "extract_pdf_text", lambda path: "Melatonina 0,21mg sublingual, 1 dose à noite por 30 dias")
    extractor = FakeExtractor()
    storage = FakeStorage()
    worker_tasks.set_processor(JobProcessor(SessionLocal, extractor, storage, upload_dir=settings.upload_dir))

    r = client.post(
        "/upload",
        headers=_auth("tenant-key"),
        files={"file": ("receita.pdf", PDF_BYTES, "application/pdf")},
    )
    assert r.status_code == 200
    job_id = r.json()["job_id"]

    assert extractor.text_calls == 1
    assert len(storage.uploads) == 1

    s = client.get(f"/status/{job_id}", headers=_auth("tenant-key"))
    assert s.status_code == 200
    assert s.json()["status"] == "success"


def test_ext_from_content_type():
    assert ext_from_content_type("application/pdf; charset=binary") == "pdf"
    assert ext_from_content_type("IMAGE/PNG") == "png"
    with pytest.raises(ValidationError):
        ext_from_content_type("text/html")
    with pytest.raises(ValidationError):
        ext_from_content_type(None)


def test_download_rejects_non_http_url():
    with pytest.raises(ValidationError):
        intake.download_file("file:///etc/passwd", max_bytes=10, timeout=1)


def test_upload_over_size_limit_is_400(tenant, queued, monkeypatch):
    monkeypatch.setattr(upload_api, "settings", replace(settings, max_upload_bytes=16))

    r = client.post(
        "/upload",
        headers=_auth("tenant-key"),
        files={"file": ("receita.pdf", b"%PDF-1.4" + b"0" * 200_000, "application/pdf")},
    )
    assert r.status_code == 400
    assert "exceeds 16 bytes" in r.json()["detail"]
    assert queued == []


def test_metric_write_failure_removes_stored_file(tmp_path, monkeypatch):
    def broken_upsert(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(intake, "upsert_job_metric", broken_upsert)
    caller = SimpleNamespace(id=1, is_global=False, openai_key="sk-tenant")
    sent = []

    with pytest.raises(RuntimeError):
        intake.submit_upload(
            None,
            caller,
            upload=intake.UploadedFile(filename="receita.pdf", content=PDF_BYTES),
            enqueue=sent.append,
            upload_dir=tmp_path,
        )

    assert list(tmp_path.iterdir()) == []
    assert sent == []
