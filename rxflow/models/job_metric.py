from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from rxflow.db.base_class import Base

# job lifecycle: pending -> processing -> sucesso | falha | human
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_SUCCESS = "sucesso"
STATUS_FAILURE = "falha"
STATUS_HUMAN = "human"

TERMINAL_STATUSES = (STATUS_SUCCESS, STATUS_FAILURE, STATUS_HUMAN)

ERROR_TYPE_MAX_LEN = 200


class JobMetric(Base):
    __tablename__ = "job_metrics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    client_id: Mapped[int] = mapped_column(nullable=False, index=True)

    file_type: Mapped[str | None] = mapped_column(String(16), nullable=True)  # pdf|jpg|jpeg|png
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    error_type: Mapped[str | None] = mapped_column(String(ERROR_TYPE_MAX_LEN), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # flips only after the source file reached the archive bucket
    uploaded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
