from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReferenceOut(BaseModel):
    vector_id: int
    label: str
    hand: str
    symbol: str
    variant: Optional[int] = None
    vector_length: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReferenceIn(BaseModel):
    hand: str
    symbol: str = Field(min_length=1, max_length=16)
    variant: Optional[int] = Field(default=None, ge=1)
    keypoints: List[float] = Field(min_length=1)


class SignKeyIn(BaseModel):
    hand: str
    symbol: Optional[str] = None
