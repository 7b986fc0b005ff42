from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from fingerspell.ml.landmarks import MISSED, Detected, SequenceFrame


def finalize(buffer: Sequence[SequenceFrame], length: int) -> List[SequenceFrame]:
    """Truncate to `length` frames, right-pad with MISSED when short."""
    frames = list(buffer[:length])
    frames.extend([MISSED] * (length - len(frames)))
    return frames


class SequenceSampler:
    """
    Samples a variable-rate camera stream down to a fixed number of frames
    that span roughly `target_duration_s`, whatever the device frame rate.

    The sampling gap is re-derived from a running FPS estimate:
        gap = max(1, round(fps * target_duration_s / length))
    A frame is a sample point when frames_seen % gap == 0.
    """

    def __init__(
        self,
        length: int = 7,
        target_duration_s: float = 3.0,
        initial_fps: float = 30.0,
        fps_smoothing: float = 0.9,
        max_adapt_frames: int = 600,
    ):
        self.length = length
        self.target_duration_s = target_duration_s
        self.initial_fps = initial_fps
        self.fps_smoothing = fps_smoothing
        self.max_adapt_frames = max_adapt_frames

        self._frames: List[SequenceFrame] = []
        self.reset()

    @classmethod
    def from_settings(cls, settings) -> "SequenceSampler":
        return cls(
            length=settings.sequence_length,
            target_duration_s=settings.duration_s,
            initial_fps=settings.initial_fps,
            fps_smoothing=settings.fps_smoothing,
            max_adapt_frames=settings.max_adapt_frames,
        )

    def reset(self):
        self._frames.clear()
        self.frames_seen = 0
        self.fps = float(self.initial_fps)
        self.gap = self._derive_gap(self.fps)
        self._last_ts: Optional[float] = None

    def _derive_gap(self, fps: float) -> int:
        return max(1, int(round(fps * self.target_duration_s / self.length)))

    def _update_fps(self, timestamp: float):
        if self._last_ts is not None:
            dt = timestamp - self._last_ts
            if dt > 0:
                instant = 1.0 / dt
                self.fps = self.fps_smoothing * self.fps + (1.0 - self.fps_smoothing) * instant
        self._last_ts = timestamp

    def push(self, landmarks: Optional[np.ndarray], timestamp: float) -> bool:
        """
        Feed one camera frame. `landmarks` is the (21, 3) hand or None when no
        hand was detected. Returns True once `length` samples are buffered.
        """
        if self.is_complete:
            return True

        self._update_fps(timestamp)
        if self.frames_seen < self.max_adapt_frames:
            self.gap = self._derive_gap(self.fps)

        self.frames_seen += 1

        if self.frames_seen % self.gap == 0 and len(self._frames) < self.length:
            self._frames.append(Detected(landmarks) if landmarks is not None else MISSED)

        return self.is_complete

    @property
    def sample_count(self) -> int:
        return len(self._frames)

    @property
    def is_complete(self) -> bool:
        return len(self._frames) >= self.length

    @property
    def frames(self) -> List[SequenceFrame]:
        return list(self._frames)

    def finalize(self) -> List[SequenceFrame]:
        return finalize(self._frames, self.length)
