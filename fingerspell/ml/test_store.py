import threading

import numpy as np
import pytest

from fingerspell.ml.codec import mirror
from fingerspell.ml.errors import LabelFormatError, StoreUnavailableError, VectorShapeError
from fingerspell.ml.landmarks import Hand
from fingerspell.ml.store import ReferenceLabel, ReferenceStore, cosine_similarity


def rec(label, vector):
    return {"label": label, "keypoints": list(np.asarray(vector, dtype=float))}


@pytest.fixture
def vectors(vector_of, make_frames):
    return {name: vector_of(make_frames(seed)) for name, seed in (("A", 11), ("B", 12), ("C", 13))}


@pytest.mark.parametrize("text,hand,symbol,variant", [
    ("RIGHT A 1", Hand.RIGHT, "A", 1),
    ("LEFT B 12", Hand.LEFT, "B", 12),
    ("RIGHT A AVERAGE", Hand.RIGHT, "A", None),
    ("RIGHT A avg", Hand.RIGHT, "A", None),
    ("LEFT Z", Hand.LEFT, "Z", None),
])
def test_parse_label(text, hand, symbol, variant):
    label = ReferenceLabel.parse(text)
    assert (label.hand, label.symbol, label.variant) == (hand, symbol, variant)
    assert label.is_average == (variant is None)


@pytest.mark.parametrize("text", ["", "RIGHT", "UP A 1", "right A 1", "RIGHT  1"])
def test_parse_bad_label(text):
    with pytest.raises(LabelFormatError):
        ReferenceLabel.parse(text)


def test_label_round_trip():
    assert str(ReferenceLabel.parse("LEFT Q 3")) == "LEFT Q 3"
    assert str(ReferenceLabel.average(Hand.RIGHT, "q")) == "RIGHT Q AVERAGE"


def test_cosine_similarity(vectors):
    v = vectors["A"]
    assert cosine_similarity(v, v) == pytest.approx(1.0)
    assert cosine_similarity(v, 3 * v) == pytest.approx(1.0)
    assert cosine_similarity(v, np.zeros_like(v)) == 0
    assert cosine_similarity(v, -v) == pytest.approx(-1.0)


def test_empty_store_has_no_match(vectors):
    store = ReferenceStore()
    assert store.load([]) == 0
    assert not store.is_loaded
    assert store.find_best_match(vectors["A"]) is None
    assert store.find_best_match_averaged(vectors["A"]) is None
    with pytest.raises(StoreUnavailableError):
        store.ensure_loaded()


def test_wrong_query_length_has_no_match(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT A 1", vectors["A"])])
    assert store.find_best_match(vectors["A"][:-3]) is None
    assert store.find_best_match_averaged(vectors["A"][:-3]) is None


def test_best_match(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT B 1", vectors["B"]), rec("RIGHT A 1", vectors["A"]), rec("RIGHT C 1", vectors["C"])])
    m = store.find_best_match(vectors["A"] * 2.5)
    assert m.label == "RIGHT A 1"
    assert m.symbol == "A" and m.hand is Hand.RIGHT
    assert m.similarity == pytest.approx(1.0)
    assert m.score_percent == 100


def test_ties_keep_first_loaded(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT A 2", vectors["A"]), rec("RIGHT A 1", vectors["A"])])
    assert store.find_best_match(vectors["A"]).label == "RIGHT A 2"


def test_non_positive_similarity_is_no_match(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT A 1", vectors["A"])])
    assert store.find_best_match(-vectors["A"]) is None
    assert store.find_best_match(np.zeros(441)) is None


def test_mirrored_query_does_not_match_source_hand(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT A 1", vectors["A"])])
    m = store.find_best_match(mirror(vectors["A"], 441))
    assert m is None or m.similarity < 0.7


def test_load_is_idempotent(vectors):
    store = ReferenceStore()
    assert store.load([rec("RIGHT A 1", vectors["A"])]) == 1
    assert store.load([rec("RIGHT B 1", vectors["B"]), rec("RIGHT C 1", vectors["C"])]) == 1
    assert store.labels() == ["RIGHT A 1"]

    assert store.reload([rec("RIGHT B 1", vectors["B"]), rec("RIGHT C 1", vectors["C"])]) == 2
    assert store.labels() == ["RIGHT B 1", "RIGHT C 1"]


def test_load_skips_malformed_records(vectors):
    store = ReferenceStore()
    n = store.load([
        {"label": "RIGHT A 1", "keypoints": []},
        {"label": "RIGHT A 2"},
        rec("NOPE", vectors["A"]),
        rec("RIGHT A 3", vectors["A"]),
        rec("RIGHT B 1", vectors["B"][:63]),
        {"label": "RIGHT B 2", "keypoints": ["x"] * 441},
        {"label": "RIGHT B 3", "keypoints": [[0.1, 0.2], [0.3]]},
        {"label": "RIGHT B 4", "keypoints": [None] + [0.1] * 440},
    ])
    assert n == 1
    assert store.dimensions == 441
    assert store.labels() == ["RIGHT A 3"]


def test_labels_are_kept_verbatim(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT A 01", vectors["A"])])
    assert store.labels() == ["RIGHT A 01"]


def test_averaged_match_uses_group_means(vectors):
    a1, a2 = vectors["A"], vectors["A"] * 0.5 + vectors["C"] * 0.1
    store = ReferenceStore()
    store.load([rec("RIGHT A 1", a1), rec("RIGHT A 2", a2), rec("RIGHT B 1", vectors["B"])])

    m = store.find_best_match_averaged(vectors["A"])
    assert m.label == "RIGHT A"
    assert m.symbol == "A"
    expected = (a1 + a2) / 2
    assert m.similarity == pytest.approx(cosine_similarity(vectors["A"], expected))


def test_averaged_groups_hands_separately(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT A 1", vectors["A"]), rec("LEFT A 1", mirror(vectors["A"], 441))])
    m = store.find_best_match_averaged(mirror(vectors["A"], 441))
    assert (m.hand, m.symbol) == (Hand.LEFT, "A")


def test_compute_average_excludes_average_entry(vectors):
    store = ReferenceStore()
    store.load([
        rec("RIGHT A 1", vectors["A"]),
        rec("RIGHT A 2", vectors["B"]),
        rec("RIGHT A AVERAGE", vectors["C"]),
    ])
    avg = store.compute_average("RIGHT", "A")
    assert np.allclose(avg, (vectors["A"] + vectors["B"]) / 2)
    with pytest.raises(VectorShapeError):
        store.compute_average(Hand.LEFT, "A")


def test_has_references(vectors):
    store = ReferenceStore()
    store.load([rec("LEFT A 1", vectors["A"])])
    assert store.has_references(Hand.LEFT, "A")
    assert not store.has_references(Hand.RIGHT, "A")
    assert store.has_references(None, "A")
    assert not store.has_references(None, "B")


def test_queries_do_not_mutate(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT A 1", vectors["A"]), rec("RIGHT B 1", vectors["B"])])
    before = store.labels(), store.dimensions
    for _ in range(3):
        store.find_best_match(vectors["B"])
        store.find_best_match_averaged(vectors["A"])
    assert (store.labels(), store.dimensions) == before


def test_bad_keypoints_do_not_abort_load(vectors):
    store = ReferenceStore()
    n = store.load([
        {"label": "RIGHT B 1", "keypoints": ["x"] * 441},
        rec("RIGHT A 1", vectors["A"]),
        {"label": "RIGHT C 1", "keypoints": [float("nan")] * 441},
    ])
    assert n == 1
    assert store.find_best_match_averaged(vectors["A"]).symbol == "A"


def test_empty_reload_unloads(vectors):
    store = ReferenceStore()
    store.load([rec("RIGHT A 1", vectors["A"])])
    assert store.reload([]) == 0
    assert not store.is_loaded
    assert not store.has_references(None, "A")


def test_queries_during_reload_see_a_full_corpus(vectors):
    records = [rec(f"RIGHT {s} {i}", vectors[s] * (1 + 0.01 * i)) for s in "ABC" for i in (1, 2, 3)]
    store = ReferenceStore()
    store.load(records)

    stop = threading.Event()

    def writer():
        while not stop.is_set():
            store.reload(records)

    t = threading.Thread(target=writer)
    t.start()
    try:
        results = [store.find_best_match_averaged(vectors["A"]) for _ in range(2000)]
        plain = [store.find_best_match(vectors["B"]) for _ in range(2000)]
    finally:
        stop.set()
        t.join()

    assert all(m is not None and m.symbol == "A" for m in results)
    assert all(m is not None and m.symbol == "B" for m in plain)
