from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from . import Base


class ReferenceVector(Base):
    __tablename__ = 'reference_vectors'

    vector_id = Column(Integer, primary_key=True, autoincrement=True)
    label = Column(String(64), unique=True, index=True, nullable=False)
    hand = Column(String(8), index=True, nullable=False)
    symbol = Column(String(16), index=True, nullable=False)
    variant = Column(Integer, nullable=True)  # NULL = AVERAGE
    keypoints = Column(JSON, nullable=False)
    vector_length = Column(Integer, nullable=False)
    created_at = Column(DateTime(), server_default=func.now())


class PracticeSession(Base):
    __tablename__ = 'practice_sessions'

    session_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    session_start = Column(DateTime(), server_default=func.now())
    session_end = Column(DateTime, nullable=True)
    result = Column(String(100), nullable=True)

    attempts = relationship('SignAttempt', order_by='SignAttempt.attempt_id', back_populates='session')


class SignAttempt(Base):
    __tablename__ = 'sign_attempts'

    attempt_id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey('practice_sessions.session_id'), index=True, nullable=False)
    symbol = Column(String(16), nullable=False)
    hand = Column(String(8), nullable=False)
    status = Column(String(16), nullable=False)
    reason = Column(String(16), nullable=True)
    matched_symbol = Column(String(16), nullable=True)
    score_percent = Column(Integer, nullable=False, default=0)
    attempted_at = Column(DateTime(), server_default=func.now())

    session = relationship('PracticeSession', back_populates='attempts')
