from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionStartIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class SessionStartOut(BaseModel):
    session_id: int
    session_start: datetime
    letters: List[str]


class SessionFinishIn(BaseModel):
    result: str
    session_end: Optional[datetime] = None


class AttemptIn(BaseModel):
    symbol: str
    hand: str = "RIGHT"
    status: str = Field(pattern="^(success|failure)$")
    reason: Optional[str] = Field(default=None, pattern="^(NO_MATCH|WRONG_SIGN)$")
    matched_symbol: Optional[str] = None
    score_percent: int = Field(ge=0, le=100)


class AttemptOut(BaseModel):
    attempt_id: int
    symbol: str
    hand: str
    status: str
    reason: Optional[str] = None
    matched_symbol: Optional[str] = None
    score_percent: int
    attempted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SessionOut(BaseModel):
    session_id: int
    name: str
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    result: Optional[str] = None
    attempts: List[AttemptOut] = []

    model_config = ConfigDict(from_attributes=True)
