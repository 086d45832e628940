import pytest
from conftest import FakeExtractor, FakeStorage

from rxflow.db.session import SessionLocal
from rxflow.worker import processor as processor_mod
from rxflow.worker import tasks as worker_tasks
from rxflow.worker.celery_app import celery_app
from rxflow.worker.messages import QueuedTask
from rxflow.worker.processor import JobProcessor


def test_celery_is_configured_for_at_least_once_delivery():
    conf = celery_app.conf
    assert conf.task_always_eager is True
    assert conf.task_acks_late is True
    assert conf.task_reject_on_worker_lost is True
    assert conf.worker_prefetch_multiplier == 1
    assert conf.beat_schedule["archive-sweep"]["task"] == "archive.sweep_pending"


def test_queued_task_message_shape():
    task = QueuedTask(job_id="abc", client_id=3, filepath="uploads/abc.png", ext="png", filename="abc.png", credential="sk-secret")
    msg = task.to_message()
    assert msg == {
        "filepath": "uploads/abc.png",
        "ext": "png",
        "filename": "abc.png",
        "jobId": "abc",
        "clientId": 3,
        "credential": "sk-secret",
    }
    assert QueuedTask.from_message(msg) == task
    assert "sk-secret" not in repr(task)


def test_queued_task_rejects_incomplete_message():
    with pytest.raises(ValueError):
        QueuedTask.from_message({"jobId": "abc", "ext": "pdf"})


def test_process_job_task_runs_processor(tmp_path, make_task, monkeypatch):
    monkeypatch.setattr(processor_mod, "extract_pdf_text", lambda path: "x" * 100)
    worker_tasks.set_processor(JobProcessor(SessionLocal, FakeExtractor(), FakeStorage(), upload_dir=tmp_path))
    task = make_task("pdf")

    result = worker_tasks.process_job.apply(kwargs={"message": task.to_message()}).get()

    assert result == {"ok": True, "job_id": task.job_id, "status": "sucesso"}


def test_sweep_task_delegates_to_processor(tmp_path):
    worker_tasks.set_processor(JobProcessor(SessionLocal, FakeExtractor(), FakeStorage(), upload_dir=tmp_path))

    result = worker_tasks.sweep_pending_archives.apply().get()

    assert result == {"ok": True, "candidates": 0, "archived": 0, "failed": 0, "missing": 0}
