from fastapi import FastAPI
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from rxflow.api.status import router as status_router
from rxflow.api.upload import router as upload_router
from rxflow.core.logging_config import configure_logging
from rxflow.db.session import SessionLocal

configure_logging()

app = FastAPI(title="rxflow prescription API", version="0.1.0")
app.include_router(upload_router)
app.include_router(status_router)


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    db_ok: bool


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    # lightweight DB check
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        db_ok = False
    finally:
        db.close()

    return HealthResponse(ok=True, service="api", version=app.version, db_ok=db_ok)
