import numpy as np
import pytest

from fingerspell.ml.codec import mirror
from fingerspell.ml.engine import AttemptState, Decision, MatchEngine, Reason, Status, evaluate
from fingerspell.ml.errors import AttemptInProgressError, NoReferenceDataError
from fingerspell.ml.landmarks import Hand
from fingerspell.ml.store import Match, ReferenceStore


def make_store(*records):
    store = ReferenceStore()
    store.load([{"label": label, "keypoints": list(v)} for label, v in records])
    return store


def start_sampling(engine, symbol, hand=None):
    engine.start(symbol, hand)
    while engine.state is AttemptState.COUNTDOWN:
        engine.tick()
    assert engine.state is AttemptState.SAMPLING


def test_correct_sign_succeeds(make_frames, vector_of, feed, fast_settings):
    frames = make_frames(1)
    engine = MatchEngine(make_store(("RIGHT A 1", vector_of(frames))), fast_settings)

    start_sampling(engine, "A", Hand.RIGHT)
    decision = feed(engine, frames, hand=Hand.RIGHT)

    assert decision.success
    assert decision.score_percent == 100
    assert decision.to_dict() == {"status": "success", "scorePercent": 100}
    assert engine.state is AttemptState.IDLE


def test_mirrored_hand_needs_its_own_references(make_frames, mirror_frames, vector_of, feed, fast_settings):
    frames = make_frames(2)
    v = vector_of(frames)
    store = make_store(("RIGHT A 1", v))
    engine = MatchEngine(store, fast_settings)

    start_sampling(engine, "A")
    decision = feed(engine, mirror_frames(frames), hand=Hand.LEFT)
    assert decision.reason is Reason.NO_MATCH
    assert decision.target_hand is Hand.LEFT

    store.reload([
        {"label": "RIGHT A 1", "keypoints": list(v)},
        {"label": "LEFT A 1", "keypoints": list(mirror(v, 441))},
    ])
    engine.reset()
    start_sampling(engine, "A")
    decision = feed(engine, mirror_frames(frames), hand=Hand.LEFT)
    assert decision.success
    assert decision.target_hand is Hand.LEFT


def test_wrong_sign_reports_matched_symbol(make_frames, vector_of, feed, fast_settings):
    frames = make_frames(3)
    store = make_store(("RIGHT B 1", vector_of(frames)), ("RIGHT A 1", vector_of(make_frames(4))))
    engine = MatchEngine(store, fast_settings)

    start_sampling(engine, "A", "RIGHT")
    decision = feed(engine, frames, hand=Hand.RIGHT)

    assert decision.status is Status.FAILURE
    assert decision.reason is Reason.WRONG_SIGN
    assert decision.to_dict() == {
        "status": "failure", "scorePercent": 100, "reason": "WRONG_SIGN", "matchedSymbol": "B",
    }
    assert engine.state is AttemptState.DECIDED


def test_below_threshold_is_no_match():
    match = Match(label="RIGHT A 1", hand=Hand.RIGHT, symbol="A", similarity=0.55)
    decision = evaluate(match, Hand.RIGHT, "A", 0.70)
    assert decision.reason is Reason.NO_MATCH
    assert decision.score_percent == 55
    assert "matchedSymbol" not in decision.to_dict()


def test_below_threshold_wins_over_wrong_sign():
    match = Match(label="RIGHT B 1", hand=Hand.RIGHT, symbol="B", similarity=0.5)
    assert evaluate(match, Hand.RIGHT, "A", 0.7).reason is Reason.NO_MATCH


def test_wrong_hand_is_wrong_sign():
    match = Match(label="LEFT A", hand=Hand.LEFT, symbol="A", similarity=0.95)
    decision = evaluate(match, Hand.RIGHT, "A", 0.7)
    assert decision.reason is Reason.WRONG_SIGN
    assert decision.to_dict()["matchedSymbol"] == "A"


def test_no_match_without_candidate():
    decision = evaluate(None, Hand.RIGHT, "A", 0.7)
    assert decision == Decision(Status.FAILURE, "A", Hand.RIGHT, reason=Reason.NO_MATCH)
    assert decision.to_dict() == {"status": "failure", "scorePercent": 0, "reason": "NO_MATCH"}


def test_countdown_ignores_frames(make_frames, vector_of, feed, fast_settings):
    frames = make_frames(5)
    engine = MatchEngine(make_store(("RIGHT A 1", vector_of(frames))), fast_settings)

    engine.start("a", "RIGHT")
    assert engine.state is AttemptState.COUNTDOWN
    assert engine.target_symbol == "A"

    assert feed(engine, frames, hand=Hand.RIGHT) is None
    assert engine.sample_count == 0

    assert engine.tick() is False
    assert engine.tick() is False
    assert engine.tick() is True
    assert engine.state is AttemptState.SAMPLING


def test_zero_countdown_starts_sampling(make_frames, vector_of, fast_settings):
    engine = MatchEngine(
        make_store(("RIGHT A 1", vector_of(make_frames(6)))),
        fast_settings.with_overrides(countdown_ticks=0),
    )
    engine.start("A")
    assert engine.state is AttemptState.SAMPLING


def test_start_without_references(make_frames, vector_of, fast_settings):
    engine = MatchEngine(make_store(("RIGHT A 1", vector_of(make_frames(7)))), fast_settings)
    with pytest.raises(NoReferenceDataError):
        engine.start("B")
    with pytest.raises(NoReferenceDataError):
        engine.start("A", Hand.LEFT)
    assert engine.state is AttemptState.IDLE


def test_cooldown_blocks_new_attempt(make_frames, vector_of, feed, fast_settings):
    store = make_store(("RIGHT A 1", vector_of(make_frames(8))))
    engine = MatchEngine(store, fast_settings)

    start_sampling(engine, "A", "RIGHT")
    decision = feed(engine, [None] * 7)
    assert decision.reason is Reason.NO_MATCH
    assert engine.state is AttemptState.DECIDED

    with pytest.raises(AttemptInProgressError):
        engine.start("A")

    for _ in range(4):
        assert engine.tick() is False
    assert engine.tick() is True
    assert engine.state is AttemptState.IDLE
    engine.start("A")


def test_start_while_counting_down(make_frames, vector_of, fast_settings):
    engine = MatchEngine(make_store(("RIGHT A 1", vector_of(make_frames(9)))), fast_settings)
    engine.start("A")
    with pytest.raises(AttemptInProgressError):
        engine.start("A")


def test_reset_cancels_attempt(make_frames, vector_of, feed, fast_settings):
    frames = make_frames(10)
    engine = MatchEngine(make_store(("RIGHT A 1", vector_of(frames))), fast_settings)

    start_sampling(engine, "A", "RIGHT")
    assert feed(engine, frames[:3], hand=Hand.RIGHT) is None
    assert engine.sample_count == 3

    engine.reset()
    assert engine.state is AttemptState.IDLE
    assert engine.sample_count == 0
    assert engine.target_symbol is None
    assert engine.snapshot()["state"] == "IDLE"


def test_detected_hand_is_target_when_none_given(make_frames, vector_of, feed, fast_settings):
    frames = make_frames(11)
    engine = MatchEngine(make_store(("RIGHT A 1", vector_of(frames))), fast_settings)

    start_sampling(engine, "A")
    assert engine.effective_hand is Hand.RIGHT
    decision = feed(engine, frames, hand=Hand.RIGHT)
    assert decision.success


def test_per_symbol_threshold(make_frames, vector_of, feed, fast_settings):
    frames = make_frames(12)
    settings = fast_settings.with_overrides(thresholds={"A": 1.01})
    engine = MatchEngine(make_store(("RIGHT A 1", vector_of(frames))), settings)

    start_sampling(engine, "A", "RIGHT")
    decision = feed(engine, frames, hand=Hand.RIGHT)
    assert decision.reason is Reason.NO_MATCH
    assert decision.score_percent == 100


def test_best_single_entry_mode(make_frames, vector_of, feed, fast_settings):
    frames = make_frames(13)
    store = make_store(("RIGHT A 1", vector_of(frames)), ("RIGHT A 2", vector_of(make_frames(14))))
    engine = MatchEngine(store, fast_settings.with_overrides(use_averaged=False))

    start_sampling(engine, "A", "RIGHT")
    decision = feed(engine, frames, hand=Hand.RIGHT)
    assert decision.success
    assert decision.score_percent == 100
    assert np.array_equal(engine.last_vector, vector_of(frames))


def test_reset_during_countdown_cancels_it(make_frames, vector_of, fast_settings):
    engine = MatchEngine(make_store(("RIGHT A 1", vector_of(make_frames(15)))), fast_settings)

    engine.start("A")
    assert engine.tick() is False
    assert engine.countdown == 2

    engine.reset()
    assert engine.state is AttemptState.IDLE
    assert engine.countdown == 0
    assert engine.tick() is False
    assert engine.state is AttemptState.IDLE

    engine.start("A")
    assert engine.countdown == fast_settings.countdown_ticks
    for _ in range(fast_settings.countdown_ticks - 1):
        assert engine.tick() is False
        assert engine.state is AttemptState.COUNTDOWN
    assert engine.tick() is True
    assert engine.state is AttemptState.SAMPLING
