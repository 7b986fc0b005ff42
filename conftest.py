import numpy as np
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fingerspell.config import Settings
from fingerspell.db import Base
from fingerspell.db import models  # noqa: F401  registers tables
from fingerspell.ml.codec import encode
from fingerspell.ml.landmarks import Detected, HandObservation

FPS = 30.0


def _hand(rng, wrist=(0.5, 0.7, 0.0)):
    # wide in x, flat in y/z so a mirrored copy points the other way
    pts = np.empty((21, 3))
    pts[:, 0] = wrist[0] + rng.uniform(-0.3, 0.3, 21)
    pts[:, 1] = wrist[1] + rng.uniform(-0.06, 0.06, 21)
    pts[:, 2] = wrist[2] + rng.uniform(-0.05, 0.05, 21)
    pts[0] = wrist
    return pts


@pytest.fixture
def make_frames():
    def _make(seed: int, n: int = 7):
        rng = np.random.default_rng(seed)
        base = _hand(rng)
        frames = []
        for _ in range(n):
            f = base + rng.normal(0.0, 0.003, base.shape)
            f[0] = base[0]
            frames.append(f)
        return frames
    return _make


@pytest.fixture
def mirror_frames():
    def _mirror(frames):
        out = []
        for f in frames:
            m = f.copy()
            m[:, 0] = 2 * f[0, 0] - f[:, 0]
            m[:, 2] = 2 * f[0, 2] - f[:, 2]
            out.append(m)
        return out
    return _mirror


@pytest.fixture
def vector_of():
    def _vector(frames):
        return encode([Detected(f) for f in frames], len(frames))
    return _vector


@pytest.fixture
def fast_settings():
    """Sampling gap of exactly 1 at 30 fps: every frame is a sample point."""
    return Settings(duration_s=7 / FPS, initial_fps=FPS, countdown_ticks=3, cooldown_ticks=5)


@pytest.fixture
def feed():
    def _feed(engine, frames, hand=None, start_ts=0.0):
        decision = None
        for i, f in enumerate(frames):
            obs = HandObservation(landmarks=f, hand=hand) if f is not None else None
            decision = engine.on_frame(obs, start_ts + i / FPS)
            if decision is not None:
                break
        return decision
    return _feed


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine)
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()
