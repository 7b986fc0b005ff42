import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from fingerspell.api.routes import references, sessions
from fingerspell.api.ws import router as ws_router
from fingerspell.config import Settings, load_settings
from fingerspell.db import Base, engine, get_session
from fingerspell.db.requests import load_reference_records
from fingerspell.ml.store import ReferenceStore

logger = logging.getLogger("fingerspell.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store: ReferenceStore = app.state.store
    if not store.is_loaded:
        db = get_session()
        try:
            Base.metadata.create_all(engine)
            store.load(load_reference_records(db))
        except SQLAlchemyError as e:
            # the WebSocket reports STORE_UNAVAILABLE until a reload succeeds
            logger.error("Could not load reference vectors: %s", e)
        finally:
            db.close()
    yield


def create_app(settings: Optional[Settings] = None, store: Optional[ReferenceStore] = None) -> FastAPI:
    app = FastAPI(title="Fingerspell API", lifespan=lifespan)

    app.state.settings = settings or load_settings()
    app.state.store = store if store is not None else ReferenceStore()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(references.router)
    app.include_router(sessions.router)
    app.include_router(ws_router)
    return app


app = create_app()
