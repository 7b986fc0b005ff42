from typing import Sequence

import numpy as np

from fingerspell.config import COORDS, LANDMARK_COUNT
from fingerspell.ml.errors import LandmarkCountError, VectorShapeError
from fingerspell.ml.landmarks import Detected, Missed, SequenceFrame, normalize_frame, zero_frame

PRECISION = 6
FRAME_SIZE = LANDMARK_COUNT * COORDS  # 63


def dimensions_for(sequence_length: int) -> int:
    return sequence_length * FRAME_SIZE


def round_vector(vector, precision: int = PRECISION) -> np.ndarray:
    # + 0.0 folds -0.0 into 0.0 so stored payloads stay stable
    return np.round(np.asarray(vector, dtype=np.float64), precision) + 0.0


def _frame_xyz(frame: SequenceFrame) -> np.ndarray:
    if isinstance(frame, Missed):
        return zero_frame()
    if isinstance(frame, Detected):
        xyz = normalize_frame(frame.landmarks)
    else:
        xyz = normalize_frame(frame)
    if xyz is None:
        raise LandmarkCountError(f"Frame does not have {LANDMARK_COUNT} landmarks")
    return xyz


def encode(sequence: Sequence[SequenceFrame], sequence_length: int, precision: int = PRECISION) -> np.ndarray:
    """
    Normalize every frame and flatten to
    [f0.l0.x, f0.l0.y, f0.l0.z, f0.l1.x, ..., f(N-1).l20.z]
    """
    if len(sequence) != sequence_length:
        raise VectorShapeError(f"Sequence has {len(sequence)} frames, expected {sequence_length}")

    flat = np.concatenate([_frame_xyz(f).reshape(-1) for f in sequence])

    expected = dimensions_for(sequence_length)
    if flat.size != expected:
        raise VectorShapeError(f"Encoded vector has {flat.size} values, expected {expected}")
    return round_vector(flat, precision)


def decode(vector, sequence_length: int) -> np.ndarray:
    """Inverse shape contract of encode: (N*21*3,) -> (N, 21, 3)."""
    v = np.asarray(vector, dtype=np.float64)
    expected = dimensions_for(sequence_length)
    if v.ndim != 1 or v.size != expected:
        raise VectorShapeError(f"Vector has {v.size} values, expected {expected}")
    return v.reshape(sequence_length, LANDMARK_COUNT, COORDS)


def mirror(vector, dimensions: int, precision: int = PRECISION) -> np.ndarray:
    """The opposite hand: negate x and z of every wrist-relative point, keep y."""
    v = np.asarray(vector, dtype=np.float64)
    if v.ndim != 1 or v.size != dimensions:
        raise VectorShapeError(f"Cannot mirror vector of {v.size} values, expected {dimensions}")
    if dimensions % COORDS:
        raise VectorShapeError(f"Dimensions {dimensions} is not a multiple of {COORDS}")

    pts = v.reshape(-1, COORDS).copy()
    pts[:, 0] *= -1.0
    pts[:, 2] *= -1.0
    return round_vector(pts.reshape(-1), precision)
