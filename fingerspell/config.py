import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional

import yaml

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = BASE_DIR / "config.yml"

LANDMARK_COUNT = 21
COORDS = 3


@dataclass(frozen=True)
class Settings:
    sequence_length: int = 7
    duration_s: float = 3.0
    initial_fps: float = 30.0
    fps_smoothing: float = 0.9
    max_adapt_frames: int = 600

    threshold: float = 0.70
    thresholds: Dict[str, float] = field(default_factory=dict)
    use_averaged: bool = True

    countdown_ticks: int = 3
    cooldown_ticks: int = 5
    tick_seconds: float = 1.0

    precision: int = 6
    database_url: str = "sqlite:///fingerspell.db"

    @property
    def dimensions(self) -> int:
        return self.sequence_length * LANDMARK_COUNT * COORDS

    def threshold_for(self, symbol: str) -> float:
        return float(self.thresholds.get(symbol.upper(), self.threshold))

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)


def _read_yaml(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Defaults come from config.yml next to this file (or FINGERSPELL_CONFIG),
    a few keys can then be overridden from the environment.
    """
    config_path = Path(path or os.getenv("FINGERSPELL_CONFIG", "") or DEFAULT_CONFIG_PATH)
    cfg = _read_yaml(config_path)

    sequence = cfg.get("sequence", {})
    match = cfg.get("match", {})
    attempt = cfg.get("attempt", {})
    database = cfg.get("database", {})

    thresholds = {str(k).upper(): float(v) for k, v in (match.get("thresholds") or {}).items()}

    settings = Settings(
        sequence_length=int(sequence.get("length", 7)),
        duration_s=float(sequence.get("duration_s", 3.0)),
        initial_fps=float(sequence.get("initial_fps", 30.0)),
        fps_smoothing=float(sequence.get("fps_smoothing", 0.9)),
        max_adapt_frames=int(sequence.get("max_adapt_frames", 600)),
        threshold=float(match.get("threshold", 0.70)),
        thresholds=thresholds,
        use_averaged=bool(match.get("use_averaged", True)),
        countdown_ticks=int(attempt.get("countdown_ticks", 3)),
        cooldown_ticks=int(attempt.get("cooldown_ticks", 5)),
        tick_seconds=float(attempt.get("tick_seconds", 1.0)),
        precision=int(cfg.get("precision", 6)),
        database_url=str(database.get("url", "sqlite:///fingerspell.db")),
    )

    env_url = os.getenv("FINGERSPELL_DATABASE_URL", "").strip()
    if env_url:
        settings = settings.with_overrides(database_url=env_url)

    env_threshold = os.getenv("FINGERSPELL_THRESHOLD", "").strip()
    if env_threshold:
        settings = settings.with_overrides(threshold=float(env_threshold))

    return settings
