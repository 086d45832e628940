import os
import tempfile

# Settings are read at import time: configure the test env before rxflow loads.
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="rxflow-uploads-")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from pathlib import Path

import pytest

from rxflow.core.errors import TransientExternalError
from rxflow.db.base import Base
from rxflow.db.session import SessionLocal, engine
from rxflow.models.client import Client
from rxflow.services.llm.results import ExtractionResult, HumanReview
from rxflow.worker import tasks as worker_tasks
from rxflow.worker.messages import QueuedTask

Base.metadata.create_all(bind=engine)


SAMPLE_EXTRACTION = {
    "patient": "MARIA DA SILVA",
    "doctor": "Dra. Juliana A. Lima – CRN 5678",
    "medications": {
        "Fórmula 1": {
            "raw_materials": [
                {"active": "DILTIAZEM", "dose": 60, "unity": "MG"},
                {"active": "creatina", "dose": "3", "unity": "g"},
            ],
            "form": "cápsula",
            "type": "oral",
            "posology": "Tomar 1 cápsula 2x ao dia por 30 dias",
            "quantity": None,
        },
        "Fórmula 2": {
            "raw_materials": [{"active": "melatonina", "dose": "0,21", "unity": "mg"}],
            "form": "sublingual",
            "type": "oral",
            "posology": "1 dose à noite",
            "quantity": 30,
        },
    },
}


def sample_result(**overrides) -> ExtractionResult:
    payload = dict(SAMPLE_EXTRACTION)
    payload.update(overrides)
    return ExtractionResult.model_validate(payload)


class FakeExtractor:
    """Stands in for OpenAIExtractor; outcomes may be exceptions to raise."""

    def __init__(self, image_outcome=None, text_outcome=None):
        self.image_outcome = image_outcome if image_outcome is not None else sample_result()
        self.text_outcome = text_outcome if text_outcome is not None else sample_result()
        self.image_calls = 0
        self.text_calls = 0
        self.credentials = []

    def _answer(self, outcome):
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def classify_and_extract_image(self, path, credential):
        self.image_calls += 1
        self.credentials.append(credential)
        return self._answer(self.image_outcome)

    def extract_from_text(self, text, credential):
        self.text_calls += 1
        self.credentials.append(credential)
        return self._answer(self.text_outcome)


class FakeStorage:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads = []

    def upload(self, local_path, key, ext=None):
        if self.fail:
            raise TransientExternalError(f"archive upload failed for {key}: bucket unreachable")
        self.uploads.append((str(local_path), key, ext))
        return f"s3://test-bucket/{key}"


def handwritten() -> HumanReview:
    return HumanReview(reason="handwritten detected")


@pytest.fixture(autouse=True)
def _reset_state():
    yield
    worker_tasks.set_processor(None)
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()


def _make_client(name: str, api_key: str, openai_key: str | None, is_global: bool = False, active: bool = True) -> Client:
    db = SessionLocal()
    try:
        c = Client(name=name, api_key=api_key, openai_key=openai_key, is_global=is_global, active=active)
        db.add(c)
        db.commit()
        db.refresh(c)
        return c
    finally:
        db.close()


@pytest.fixture
def tenant():
    return _make_client("Farmácia Central", "tenant-key", "sk-tenant")


@pytest.fixture
def other_tenant():
    return _make_client("Farmácia Norte", "other-key", "sk-other")


@pytest.fixture
def global_client():
    return _make_client("Backoffice", "global-key", None, is_global=True)


@pytest.fixture
def inactive_client():
    return _make_client("Farmácia Fechada", "inactive-key", "sk-x", active=False)


@pytest.fixture
def make_task(tmp_path):
    """Write a source file into tmp_path the way intake does and describe it."""
    counter = {"n": 0}

    def build(ext: str = "pdf", content: bytes = b"%PDF-1.4 test", client_id: int = 1, credential: str | None = "sk-tenant") -> QueuedTask:
        counter["n"] += 1
        job_id = f"job{counter['n']:04d}"
        filename = f"{job_id}.{ext}"
        path = Path(tmp_path) / filename
        path.write_bytes(content)
        return QueuedTask(
            job_id=job_id,
            client_id=client_id,
            filepath=str(path),
            ext=ext,
            filename=filename,
            credential=credential,
        )

    return build
