from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from rxflow.db.base_class import Base


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # bearer token presented on every request
    api_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    # per-tenant OpenAI key forwarded to the worker as the task credential
    openai_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
