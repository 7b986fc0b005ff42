from fastapi import HTTPException, Request

from fingerspell.config import Settings
from fingerspell.db import get_session
from fingerspell.ml.errors import StoreUnavailableError
from fingerspell.ml.store import ReferenceStore


def get_db():
    db = get_session()
    try:
        yield db
    finally:
        db.close()


def get_store(request: Request) -> ReferenceStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_loaded(store: ReferenceStore):
    try:
        store.ensure_loaded()
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
