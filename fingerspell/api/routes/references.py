from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from fingerspell.api.deps import get_db, get_settings, get_store, require_loaded
from fingerspell.api.schemas.match import MatchIn, MatchOut
from fingerspell.api.schemas.reference import ReferenceIn, ReferenceOut, SignKeyIn
from fingerspell.config import Settings
from fingerspell.db import requests as rq
from fingerspell.ml.errors import AverageExistsError, VectorShapeError
from fingerspell.ml.landmarks import Hand
from fingerspell.ml.store import ReferenceStore

router = APIRouter(prefix="/api/v1", tags=["references"])


def _hand(value: str) -> Hand:
    try:
        return Hand.parse(value)
    except ValueError:
        raise HTTPException(422, f"Unknown hand: {value}")


def _reload(db: Session, store: ReferenceStore):
    store.reload(rq.load_reference_records(db))


@router.get("/references", response_model=list[ReferenceOut])
def list_references(
    hand: str | None = Query(default=None),
    symbol: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    if hand:
        _hand(hand)
    return rq.list_references(db, hand=hand, symbol=symbol)


@router.post("/references", response_model=ReferenceOut, status_code=201)
def create_reference(
    payload: ReferenceIn,
    db: Session = Depends(get_db),
    store: ReferenceStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    if len(payload.keypoints) != settings.dimensions:
        raise HTTPException(422, f"Expected {settings.dimensions} values, got {len(payload.keypoints)}")
    try:
        row = rq.save_reference(db, _hand(payload.hand), payload.symbol, payload.keypoints, payload.variant,
                               precision=settings.precision)
    except AverageExistsError as e:
        raise HTTPException(409, str(e))
    except VectorShapeError as e:
        raise HTTPException(422, str(e))
    _reload(db, store)
    return row


@router.delete("/references/{vector_id}")
def delete_reference(vector_id: int, db: Session = Depends(get_db), store: ReferenceStore = Depends(get_store)):
    if not rq.delete_reference(db, vector_id):
        raise HTTPException(404, "Reference not found")
    _reload(db, store)
    return {"ok": True, "loaded": len(store)}


@router.post("/references/average", response_model=ReferenceOut, status_code=201)
def create_average(
    payload: SignKeyIn,
    db: Session = Depends(get_db),
    store: ReferenceStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    if not payload.symbol:
        raise HTTPException(422, "symbol is required")
    try:
        row = rq.save_average(db, store, _hand(payload.hand), payload.symbol, precision=settings.precision)
    except VectorShapeError as e:
        raise HTTPException(404, str(e))
    _reload(db, store)
    return row


@router.post("/references/mirror", response_model=list[ReferenceOut], status_code=201)
def create_mirrored(
    payload: SignKeyIn,
    db: Session = Depends(get_db),
    store: ReferenceStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    try:
        rows = rq.mirror_references(
            db, settings.dimensions, _hand(payload.hand), payload.symbol, precision=settings.precision,
        )
    except VectorShapeError as e:
        db.rollback()
        raise HTTPException(422, str(e))
    if not rows:
        raise HTTPException(404, "Nothing to mirror")
    _reload(db, store)
    return rows


@router.post("/match", response_model=MatchOut)
def match_vector(payload: MatchIn, store: ReferenceStore = Depends(get_store)):
    require_loaded(store)
    if len(payload.vector) != store.dimensions:
        raise HTTPException(422, f"Expected {store.dimensions} values, got {len(payload.vector)}")

    find = store.find_best_match_averaged if payload.averaged else store.find_best_match
    match = find(payload.vector)
    if match is None:
        raise HTTPException(404, "No match")
    return MatchOut(
        label=match.label,
        hand=match.hand.value,
        symbol=match.symbol,
        similarity=match.similarity,
        score_percent=match.score_percent,
    )
