from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Optional

import mediapipe as mp
import numpy as np

from fingerspell.ml.errors import PoseUnavailableError
from fingerspell.ml.landmarks import HandObservation

TASK_FILE = "hand_landmarker.task"


def observation_from_result(result) -> Optional[HandObservation]:
    """
    HandLandmarkerResult -> HandObservation of the first hand, or None.
    The handedness label is flipped to match the mirrored display.
    """
    if not getattr(result, "hand_landmarks", None):
        return None

    handedness = None
    groups = getattr(result, "handedness", None) or []
    if groups and groups[0]:
        handedness = groups[0][0].category_name

    return HandObservation.from_raw(result.hand_landmarks[0], handedness)


def resolve_model_path(model_path: Optional[str] = None) -> Path:
    """
    Looks for hand_landmarker.task, in order:
      1) explicit model_path
      2) env FINGERSPELL_HAND_TASK_PATH
      3) repo root / package dir / current directory
    """
    if model_path:
        p = Path(model_path).expanduser().resolve()
        if not p.exists():
            raise PoseUnavailableError(f"hand_landmarker.task not found: {p}")
        return p

    envp = os.getenv("FINGERSPELL_HAND_TASK_PATH", "").strip()
    if envp:
        p = Path(envp).expanduser().resolve()
        if not p.exists():
            raise PoseUnavailableError(f"FINGERSPELL_HAND_TASK_PATH points to a missing file: {p}")
        return p

    here = Path(__file__).resolve()
    candidates = [
        here.parents[2] / TASK_FILE,
        here.parents[1] / TASK_FILE,
        Path.cwd() / TASK_FILE,
    ]
    for c in candidates:
        if c.exists():
            return c.resolve()

    raise PoseUnavailableError(
        "hand_landmarker.task not found. "
        "Put it in the repository root or set FINGERSPELL_HAND_TASK_PATH."
    )


class HandPoseSession:
    """
    MediaPipe Tasks hand landmarker in VIDEO mode, one hand.
    Not thread-safe: create and call it from a single thread.
    """

    def __init__(
        self,
        model_path: Optional[str] = None,
        min_hand_detection_confidence: float = 0.7,
        min_hand_presence_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        self.model_path = resolve_model_path(model_path)
        try:
            options = mp.tasks.vision.HandLandmarkerOptions(
                base_options=mp.tasks.BaseOptions(model_asset_path=str(self.model_path)),
                running_mode=mp.tasks.vision.RunningMode.VIDEO,
                num_hands=1,
                min_hand_detection_confidence=min_hand_detection_confidence,
                min_hand_presence_confidence=min_hand_presence_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )
            self._landmarker = mp.tasks.vision.HandLandmarker.create_from_options(options)
        except (RuntimeError, ValueError) as e:
            raise PoseUnavailableError(f"Could not create hand landmarker: {e}") from e
        self._last_ts_ms = 0

    def close(self) -> None:
        self._landmarker.close()

    def _ensure_ts(self, ts_ms: int) -> int:
        # MediaPipe requires strictly increasing timestamps
        if ts_ms <= self._last_ts_ms:
            ts_ms = self._last_ts_ms + 1
        self._last_ts_ms = ts_ms
        return ts_ms

    def process_frame_bgr(self, frame_bgr: np.ndarray, ts_ms: Optional[int] = None) -> Optional[HandObservation]:
        if frame_bgr is None or frame_bgr.ndim != 3 or frame_bgr.shape[2] != 3:
            return None
        if ts_ms is None:
            ts_ms = int(time.monotonic() * 1000)
        ts_ms = self._ensure_ts(int(ts_ms))

        frame_rgb = frame_bgr[:, :, ::-1].copy()
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=frame_rgb)
        result = self._landmarker.detect_for_video(mp_image, ts_ms)
        return observation_from_result(result)
