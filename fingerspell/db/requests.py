import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from fingerspell.ml.codec import PRECISION, mirror, round_vector
from fingerspell.ml.errors import AverageExistsError, VectorShapeError
from fingerspell.ml.landmarks import Hand
from fingerspell.ml.store import ReferenceLabel, ReferenceStore
from .models import PracticeSession, ReferenceVector, SignAttempt

logger = logging.getLogger("fingerspell.db")


def load_reference_records(db: Session) -> List[dict]:
    rows = db.query(ReferenceVector).order_by(ReferenceVector.vector_id).all()
    return [{"label": r.label, "keypoints": r.keypoints} for r in rows]


def list_references(db: Session, hand: Optional[str] = None, symbol: Optional[str] = None):
    q = db.query(ReferenceVector)
    if hand:
        q = q.filter(ReferenceVector.hand == Hand.parse(hand).value)
    if symbol:
        q = q.filter(ReferenceVector.symbol == symbol.upper())
    return q.order_by(ReferenceVector.label).all()


def _stored_length(db: Session) -> Optional[int]:
    row = db.query(ReferenceVector.vector_length).first()
    return row[0] if row else None


def _upsert(db: Session, label: ReferenceLabel, keypoints, precision: int = PRECISION) -> ReferenceVector:
    text = str(label)
    values = [float(v) for v in round_vector(keypoints, precision)]

    row = db.query(ReferenceVector).filter_by(label=text).first()
    if row is None:
        row = ReferenceVector(label=text, hand=label.hand.value, symbol=label.symbol, variant=label.variant)
        db.add(row)
    row.keypoints = values
    row.vector_length = len(values)
    row.created_at = datetime.now(timezone.utc)
    return row


def has_average(db: Session, hand: Hand, symbol: str) -> bool:
    return db.query(ReferenceVector).filter_by(
        hand=hand.value, symbol=symbol, variant=None
    ).first() is not None


def next_variant(db: Session, hand: Hand, symbol: str) -> int:
    top = db.query(func.max(ReferenceVector.variant)).filter_by(hand=hand.value, symbol=symbol).scalar()
    return (top or 0) + 1


def save_reference(db: Session, hand, symbol: str, keypoints, variant: Optional[int] = None,
                   precision: int = PRECISION) -> ReferenceVector:
    """
    Store one captured sample as "<HAND> <SYMBOL> <n>". A record with the same
    label is replaced. Refused once the pair has an AVERAGE entry.
    """
    hand = Hand.parse(hand)
    symbol = symbol.strip().upper()

    expected = _stored_length(db)
    if expected is not None and len(keypoints) != expected:
        raise VectorShapeError(f"Vector has {len(keypoints)} values, stored vectors have {expected}")

    if has_average(db, hand, symbol):
        raise AverageExistsError(f"{hand.value} {symbol} already has an AVERAGE entry")

    if variant is None:
        variant = next_variant(db, hand, symbol)
    if variant < 1:
        raise ValueError("variant must be a positive integer")

    row = _upsert(db, ReferenceLabel(hand=hand, symbol=symbol, variant=variant), keypoints, precision)
    db.commit()
    db.refresh(row)
    logger.info("Saved reference %s", row.label)
    return row


def save_average(db: Session, store: ReferenceStore, hand, symbol: str,
                 precision: int = PRECISION) -> ReferenceVector:
    hand = Hand.parse(hand)
    symbol = symbol.strip().upper()
    average = store.compute_average(hand, symbol)

    row = _upsert(db, ReferenceLabel.average(hand, symbol), average, precision)
    db.commit()
    db.refresh(row)
    logger.info("Saved %s from %d samples", row.label, len(store.entries(hand, symbol)))
    return row


def mirror_references(db: Session, dimensions: int, hand, symbol: Optional[str] = None,
                      precision: int = PRECISION) -> List[ReferenceVector]:
    """Copy every `hand` reference (optionally one symbol) to the opposite hand, mirrored."""
    hand = Hand.parse(hand)
    rows = list_references(db, hand=hand.value, symbol=symbol)

    created = []
    for r in rows:
        source = ReferenceLabel.parse(r.label)
        target = ReferenceLabel(hand=hand.opposite, symbol=source.symbol, variant=source.variant)
        created.append(_upsert(db, target, mirror(r.keypoints, dimensions, precision), precision))
    db.commit()
    for row in created:
        db.refresh(row)
    logger.info("Mirrored %d %s references to %s", len(created), hand.value, hand.opposite.value)
    return created


def delete_reference(db: Session, vector_id: int) -> bool:
    row = db.query(ReferenceVector).filter_by(vector_id=vector_id).first()
    if not row:
        return False
    db.delete(row)
    db.commit()
    logger.info("Deleted reference %s", row.label)
    return True


def add_session(db: Session, name: str) -> PracticeSession:
    s = PracticeSession(name=name)
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


def add_attempt(db: Session, session_id: int, symbol: str, hand: str, status: str,
                score_percent: int, reason: Optional[str] = None,
                matched_symbol: Optional[str] = None) -> SignAttempt:
    a = SignAttempt(
        session_id=session_id,
        symbol=symbol.upper(),
        hand=Hand.parse(hand).value,
        status=status,
        reason=reason,
        matched_symbol=matched_symbol,
        score_percent=score_percent,
    )
    db.add(a)
    db.commit()
    db.refresh(a)
    return a


def finish_session(db: Session, session: PracticeSession, result: str,
                   session_end: Optional[datetime] = None) -> PracticeSession:
    session.result = result
    session.session_end = session_end or datetime.now(timezone.utc)
    db.commit()
    db.refresh(session)
    return session
