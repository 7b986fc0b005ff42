from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MatchIn(BaseModel):
    vector: List[float] = Field(min_length=1)
    averaged: bool = True


class MatchOut(BaseModel):
    label: str
    hand: str
    symbol: str
    similarity: float
    score_percent: int


class DecisionOut(BaseModel):
    status: str
    reason: Optional[str] = None
    matched_symbol: Optional[str] = Field(default=None, alias="matchedSymbol")
    score_percent: int = Field(alias="scorePercent")

    model_config = ConfigDict(populate_by_name=True)
