from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from fingerspell.api.deps import get_db
from fingerspell.api.schemas.session import (
    AttemptIn, AttemptOut, SessionFinishIn, SessionOut, SessionStartIn, SessionStartOut,
)
from fingerspell.db import requests as rq
from fingerspell.db.models import PracticeSession
from fingerspell.ml.spelling import SpellingSession

router = APIRouter(prefix="/api/v1", tags=["sessions"])


def _get_or_404(db: Session, session_id: int) -> PracticeSession:
    s = db.query(PracticeSession).filter_by(session_id=session_id).first()
    if not s:
        raise HTTPException(404, "Session not found")
    return s


@router.post("/sessions", response_model=SessionStartOut)
def start_session(payload: SessionStartIn, db: Session = Depends(get_db)):
    try:
        spelling = SpellingSession(payload.name)
    except ValueError as e:
        raise HTTPException(422, str(e))
    s = rq.add_session(db, payload.name)
    return {"session_id": s.session_id, "session_start": s.session_start, "letters": spelling.letters}


@router.post("/sessions/{session_id}/attempts", response_model=AttemptOut, status_code=201)
def record_attempt(session_id: int, payload: AttemptIn, db: Session = Depends(get_db)):
    s = _get_or_404(db, session_id)
    if s.session_end is not None:
        raise HTTPException(409, "Session already finished")
    try:
        return rq.add_attempt(
            db, session_id,
            symbol=payload.symbol,
            hand=payload.hand,
            status=payload.status,
            score_percent=payload.score_percent,
            reason=payload.reason,
            matched_symbol=payload.matched_symbol,
        )
    except ValueError as e:
        raise HTTPException(422, str(e))


@router.patch("/sessions/{session_id}", response_model=SessionOut)
def finish_session(session_id: int, payload: SessionFinishIn, db: Session = Depends(get_db)):
    s = _get_or_404(db, session_id)
    return rq.finish_session(db, s, payload.result, payload.session_end)


@router.get("/sessions/{session_id}", response_model=SessionOut)
def get_session(session_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, session_id)
