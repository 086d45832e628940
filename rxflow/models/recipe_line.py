from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from rxflow.db.base_class import Base


class RecipeLine(Base):
    """
    One row per (job, formula, raw material).

    Sibling rows of the same job+formula carry the same patient, doctor,
    form, type, posology and quantity. Rows are append-only; the single
    permitted update is processed False -> True when the job finalizes.
    """
    __tablename__ = "recipe_lines"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(nullable=False, index=True)
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)

    formula: Mapped[str] = mapped_column(String(255), nullable=False)
    text_block: Mapped[str] = mapped_column(Text, nullable=False)
    classification: Mapped[str] = mapped_column(String(32), nullable=False, default="formula")

    form: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    posology: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    active: Mapped[str] = mapped_column(String(255), nullable=False)
    dose: Mapped[float | None] = mapped_column(Float, nullable=True)
    unity: Mapped[str | None] = mapped_column(String(32), nullable=True)

    patient: Mapped[str | None] = mapped_column(String(255), nullable=True)
    doctor: Mapped[str | None] = mapped_column(String(255), nullable=True)

    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_recipe_lines_job_client", "job_id", "client_id"),
        Index("idx_recipe_lines_dedup", "job_id", "formula", "active", "dose", "unity"),
    )
