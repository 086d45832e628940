from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from rxflow.db.session import get_db
from rxflow.models.client import Client


def get_current_client(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> Client:
    """Resolve `Authorization: Bearer <api_key>` to an active client."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Bearer token not provided")

    token = authorization.split(" ", 1)[1].strip()
    client = db.query(Client).filter(Client.api_key == token).first()
    if not client:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not client.active:
        raise HTTPException(status_code=403, detail="Client inactive")
    return client
