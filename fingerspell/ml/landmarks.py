from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence, Union

import numpy as np

from fingerspell.config import COORDS, LANDMARK_COUNT
from fingerspell.ml.errors import LandmarkCountError

WRIST = 0


class Hand(str, Enum):
    RIGHT = "RIGHT"
    LEFT = "LEFT"

    @classmethod
    def from_handedness(cls, raw: str) -> "Hand":
        """
        The landmarker classifies the un-mirrored image, the user sees a mirror.
        Raw "Left" is the user's right hand and vice versa.
        """
        value = (raw or "").strip().lower()
        if value == "left":
            return cls.RIGHT
        if value == "right":
            return cls.LEFT
        raise ValueError(f"Unknown handedness: {raw!r}")

    @classmethod
    def parse(cls, value: Union[str, "Hand"]) -> "Hand":
        if isinstance(value, Hand):
            return value
        return cls(str(value).strip().upper())

    @property
    def opposite(self) -> "Hand":
        return Hand.LEFT if self is Hand.RIGHT else Hand.RIGHT


def lms_to_xyz(points: Sequence[Any]) -> np.ndarray:
    """
    points: 21 landmarks as objects with .x/.y/.z, dicts {"x","y","z"} or [x, y, z].
    Returns an array of shape (n, 3).
    """
    rows = []
    for p in points:
        if hasattr(p, "x"):
            rows.append((p.x, p.y, p.z))
        elif isinstance(p, dict):
            rows.append((p["x"], p["y"], p.get("z", 0.0)))
        else:
            x, y, z = p
            rows.append((x, y, z))
    return np.asarray(rows, dtype=np.float64).reshape(-1, COORDS)


def is_zero_frame(frame: np.ndarray) -> bool:
    return not np.any(frame)


def normalize_frame(frame: Sequence[Any]) -> Optional[np.ndarray]:
    """Translate a hand so the wrist sits at the origin. None unless 21 points."""
    xyz = frame if isinstance(frame, np.ndarray) else lms_to_xyz(frame)
    if xyz.shape != (LANDMARK_COUNT, COORDS):
        return None
    if is_zero_frame(xyz):
        return xyz.copy()
    return xyz - xyz[WRIST]


@dataclass(frozen=True, eq=False)
class Detected:
    landmarks: np.ndarray

    def __post_init__(self):
        xyz = self.landmarks if isinstance(self.landmarks, np.ndarray) else lms_to_xyz(self.landmarks)
        if xyz.shape != (LANDMARK_COUNT, COORDS):
            raise LandmarkCountError(f"Expected {LANDMARK_COUNT} landmarks, got {len(xyz)}")
        object.__setattr__(self, "landmarks", xyz)


class Missed:
    """No hand at this sample point."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "MISSED"


MISSED = Missed()

SequenceFrame = Union[Detected, Missed]


def zero_frame() -> np.ndarray:
    return np.zeros((LANDMARK_COUNT, COORDS), dtype=np.float64)


@dataclass(frozen=True, eq=False)
class HandObservation:
    """One frame's worth of output from the pose capability."""
    landmarks: np.ndarray
    hand: Optional[Hand] = None

    @classmethod
    def from_raw(cls, points: Sequence[Any], handedness: Optional[str] = None) -> "HandObservation":
        hand = Hand.from_handedness(handedness) if handedness else None
        return cls(landmarks=lms_to_xyz(points), hand=hand)

    @property
    def wrist(self) -> np.ndarray:
        return self.landmarks[WRIST]
