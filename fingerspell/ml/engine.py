from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from fingerspell.config import Settings
from fingerspell.ml.codec import encode
from fingerspell.ml.errors import AttemptInProgressError, NoReferenceDataError
from fingerspell.ml.landmarks import Hand, HandObservation
from fingerspell.ml.sampler import SequenceSampler
from fingerspell.ml.store import Match, ReferenceStore, score_percent

logger = logging.getLogger("fingerspell.engine")


class AttemptState(str, Enum):
    IDLE = "IDLE"
    COUNTDOWN = "COUNTDOWN"
    SAMPLING = "SAMPLING"
    DECIDED = "DECIDED"  # failed attempt, cooling down


class Status(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class Reason(str, Enum):
    NO_MATCH = "NO_MATCH"
    WRONG_SIGN = "WRONG_SIGN"


@dataclass(frozen=True)
class Decision:
    status: Status
    target_symbol: str
    target_hand: Hand
    reason: Optional[Reason] = None
    matched_symbol: Optional[str] = None
    matched_hand: Optional[Hand] = None
    similarity: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is Status.SUCCESS

    @property
    def score_percent(self) -> int:
        return score_percent(self.similarity)

    def to_dict(self) -> dict:
        out = {"status": self.status.value, "scorePercent": self.score_percent}
        if self.reason is not None:
            out["reason"] = self.reason.value
        if self.reason is Reason.WRONG_SIGN:
            out["matchedSymbol"] = self.matched_symbol
        return out


def evaluate(match: Optional[Match], target_hand: Hand, target_symbol: str, threshold: float) -> Decision:
    """Accept/reject policy, checked in order: no match, below threshold, wrong sign, success."""
    if match is None:
        return Decision(Status.FAILURE, target_symbol, target_hand, reason=Reason.NO_MATCH)

    common = dict(
        target_symbol=target_symbol,
        target_hand=target_hand,
        matched_symbol=match.symbol,
        matched_hand=match.hand,
        similarity=match.similarity,
    )
    if match.similarity < threshold:
        return Decision(Status.FAILURE, reason=Reason.NO_MATCH, **common)
    if match.hand != target_hand or match.symbol != target_symbol:
        return Decision(Status.FAILURE, reason=Reason.WRONG_SIGN, **common)
    return Decision(Status.SUCCESS, **common)


class MatchEngine:
    """
    One attempt at a time:
        IDLE -> COUNTDOWN -> SAMPLING -> (success) IDLE
                                      -> (failure) DECIDED -> IDLE after cool-down

    Driven by two inputs: tick() from a timer and on_frame() per camera frame.
    """

    def __init__(self, store: ReferenceStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()
        self.sampler = SequenceSampler.from_settings(self.settings)

        self.state = AttemptState.IDLE
        self.countdown = 0
        self.cooldown = 0
        self.target_symbol: Optional[str] = None
        self.target_hand: Optional[Hand] = None
        self.detected_hand: Optional[Hand] = None
        self.last_decision: Optional[Decision] = None
        self.last_vector: Optional[np.ndarray] = None

    @property
    def sample_count(self) -> int:
        return self.sampler.sample_count

    @property
    def effective_hand(self) -> Hand:
        return self.target_hand or self.detected_hand or Hand.RIGHT

    def start(self, symbol: str, hand=None):
        if self.state is not AttemptState.IDLE:
            raise AttemptInProgressError(f"Cannot start an attempt while {self.state.value}")

        symbol = symbol.strip().upper()
        hand = Hand.parse(hand) if hand else None
        if not self.store.has_references(hand, symbol):
            where = f"{hand.value} {symbol}" if hand else symbol
            raise NoReferenceDataError(f"No reference signs stored for {where}")

        self.sampler.reset()
        self.target_symbol = symbol
        self.target_hand = hand
        self.detected_hand = None
        self.last_decision = None
        self.last_vector = None

        if self.settings.countdown_ticks > 0:
            self.state = AttemptState.COUNTDOWN
            self.countdown = self.settings.countdown_ticks
        else:
            self.state = AttemptState.SAMPLING
        logger.debug("Attempt started for %s (%s)", symbol, self.state.value)

    def tick(self) -> bool:
        """Advance countdown / cool-down by one tick. Returns True if the state changed."""
        if self.state is AttemptState.COUNTDOWN:
            self.countdown -= 1
            if self.countdown <= 0:
                self.countdown = 0
                self.sampler.reset()
                self.state = AttemptState.SAMPLING
                return True
        elif self.state is AttemptState.DECIDED:
            self.cooldown -= 1
            if self.cooldown <= 0:
                self.cooldown = 0
                self.state = AttemptState.IDLE
                return True
        return False

    def on_frame(self, observation: Optional[HandObservation], timestamp: Optional[float] = None) -> Optional[Decision]:
        if self.state is not AttemptState.SAMPLING:
            return None
        if timestamp is None:
            timestamp = time.monotonic()

        landmarks = None
        if observation is not None:
            landmarks = observation.landmarks
            if observation.hand is not None:
                self.detected_hand = observation.hand

        if self.sampler.push(landmarks, timestamp):
            return self._decide()
        return None

    def _decide(self) -> Decision:
        try:
            sequence = self.sampler.finalize()
            vector = encode(sequence, self.settings.sequence_length, self.settings.precision)
            if self.settings.use_averaged:
                match = self.store.find_best_match_averaged(vector)
            else:
                match = self.store.find_best_match(vector)
        except Exception:
            self.reset()
            raise

        decision = evaluate(
            match,
            target_hand=self.effective_hand,
            target_symbol=self.target_symbol,
            threshold=self.settings.threshold_for(self.target_symbol),
        )
        self.last_vector = vector
        self.last_decision = decision
        self.sampler.reset()

        if decision.success or self.settings.cooldown_ticks <= 0:
            self.state = AttemptState.IDLE
        else:
            self.state = AttemptState.DECIDED
            self.cooldown = self.settings.cooldown_ticks

        logger.info(
            "Attempt %s %s: %s %s (%d%%)",
            decision.target_hand.value, decision.target_symbol, decision.status.value,
            decision.reason.value if decision.reason else "", decision.score_percent,
        )
        return decision

    def reset(self):
        """Abort whatever is running and drop the buffer and timers."""
        self.sampler.reset()
        self.state = AttemptState.IDLE
        self.countdown = 0
        self.cooldown = 0
        self.target_symbol = None
        self.target_hand = None
        self.detected_hand = None

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "countdown": self.countdown,
            "cooldown": self.cooldown,
            "samples": self.sample_count,
            "total": self.settings.sequence_length,
            "symbol": self.target_symbol,
        }
