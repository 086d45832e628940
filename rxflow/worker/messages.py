from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class QueuedTask:
    """
    Unit of work on the queue.

    Wire shape: {filepath, ext, filename, jobId, clientId, credential}.
    The credential is the tenant's OpenAI key; keep it out of reprs/logs.
    """

    job_id: str
    client_id: int
    filepath: str
    ext: str
    filename: str
    credential: str | None = field(default=None, repr=False)

    def to_message(self) -> dict[str, Any]:
        return {
            "filepath": self.filepath,
            "ext": self.ext,
            "filename": self.filename,
            "jobId": self.job_id,
            "clientId": self.client_id,
            "credential": self.credential,
        }

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "QueuedTask":
        missing = [k for k in ("filepath", "ext", "filename", "jobId", "clientId") if not message.get(k)]
        if missing:
            raise ValueError(f"queued task missing fields: {', '.join(missing)}")
        return cls(
            job_id=str(message["jobId"]),
            client_id=int(message["clientId"]),
            filepath=str(message["filepath"]),
            ext=str(message["ext"]).lower().lstrip("."),
            filename=str(message["filename"]),
            credential=message.get("credential") or None,
        )
