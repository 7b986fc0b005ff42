from dataclasses import dataclass, field
from typing import List, Optional

from fingerspell.ml.engine import Decision


@dataclass
class LetterResult:
    letter: str
    hand: str
    score: int
    attempts: int


@dataclass
class SpellingSession:
    """Walks through the letters of a name, one successful sign at a time."""
    name: str
    letters: List[str] = field(init=False)
    index: int = field(default=0, init=False)
    attempts: int = field(default=0, init=False)
    results: List[LetterResult] = field(default_factory=list, init=False)

    def __post_init__(self):
        self.letters = [c for c in self.name.upper() if c.isalnum()]
        if not self.letters:
            raise ValueError(f"Nothing to spell in {self.name!r}")

    @property
    def current(self) -> Optional[str]:
        return self.letters[self.index] if self.index < len(self.letters) else None

    @property
    def is_complete(self) -> bool:
        return self.index >= len(self.letters)

    @property
    def progress_percent(self) -> int:
        return round(self.index / len(self.letters) * 100)

    def record(self, decision: Decision) -> bool:
        """Count an attempt at the current letter. Returns True when it advanced."""
        if self.is_complete:
            return False
        self.attempts += 1
        if not decision.success or decision.target_symbol != self.current:
            return False

        self.results.append(LetterResult(
            letter=self.current,
            hand=decision.target_hand.value,
            score=decision.score_percent,
            attempts=self.attempts,
        ))
        self.index += 1
        self.attempts = 0
        return True

    def skip(self):
        if not self.is_complete:
            self.index += 1
            self.attempts = 0
