from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from fingerspell.ml.errors import LabelFormatError, StoreUnavailableError, VectorShapeError
from fingerspell.ml.landmarks import Hand

logger = logging.getLogger("fingerspell.store")

AVERAGE = "AVERAGE"


@dataclass(frozen=True)
class ReferenceLabel:
    """
    Wire format: "<HAND> <SYMBOL> <VARIANT>", e.g. "RIGHT A 3" or "LEFT B AVERAGE".
    variant is the sample number, or None for the averaged entry (and for
    anything that does not parse as an integer).
    """
    hand: Hand
    symbol: str
    variant: Optional[int] = None

    @classmethod
    def parse(cls, text: str) -> "ReferenceLabel":
        parts = (text or "").split(" ")
        if len(parts) < 2 or not parts[1]:
            raise LabelFormatError(f"Malformed label: {text!r}")
        try:
            hand = Hand(parts[0])
        except ValueError:
            raise LabelFormatError(f"Unknown hand in label: {text!r}") from None

        variant = None
        if len(parts) > 2:
            try:
                variant = int(parts[2])
            except ValueError:
                variant = None
            if variant is not None and variant < 1:
                variant = None
        return cls(hand=hand, symbol=parts[1], variant=variant)

    @classmethod
    def average(cls, hand: Hand, symbol: str) -> "ReferenceLabel":
        return cls(hand=Hand.parse(hand), symbol=symbol.upper(), variant=None)

    @property
    def is_average(self) -> bool:
        return self.variant is None

    @property
    def key(self) -> Tuple[Hand, str]:
        return self.hand, self.symbol

    @property
    def group(self) -> str:
        return f"{self.hand.value} {self.symbol}"

    def __str__(self) -> str:
        variant = AVERAGE if self.variant is None else str(self.variant)
        return f"{self.hand.value} {self.symbol} {variant}"


@dataclass(frozen=True, eq=False)
class ReferenceEntry:
    label: ReferenceLabel
    vector: np.ndarray
    text: str = ""

    def __post_init__(self):
        if not self.text:
            object.__setattr__(self, "text", str(self.label))

    @property
    def dimensions(self) -> int:
        return int(self.vector.size)


@dataclass(frozen=True)
class Match:
    label: str
    hand: Hand
    symbol: str
    similarity: float

    @property
    def score_percent(self) -> int:
        return score_percent(self.similarity)


def score_percent(similarity: float) -> int:
    return int(max(0, min(100, round(similarity * 100))))


def cosine_similarity(a, b) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))


def _similarities(matrix: np.ndarray, norms: np.ndarray, query: np.ndarray) -> np.ndarray:
    qn = float(np.linalg.norm(query))
    if qn == 0.0:
        return np.zeros(len(matrix))
    denom = norms * qn
    dots = matrix @ query
    out = np.zeros(len(matrix))
    nz = denom > 0
    out[nz] = dots[nz] / denom[nz]
    return out


@dataclass(frozen=True, eq=False)
class _Index:
    """Everything a query reads, built together and never mutated."""
    entries: Tuple[ReferenceEntry, ...]
    groups: Dict[Tuple[Hand, str], Tuple[int, ...]]
    dimensions: int
    matrix: np.ndarray
    norms: np.ndarray
    group_keys: Tuple[Tuple[Hand, str], ...]
    group_matrix: np.ndarray
    group_norms: np.ndarray

    @classmethod
    def build(cls, entries: List[ReferenceEntry], dims: int) -> "_Index":
        matrix = np.stack([e.vector for e in entries])
        matrix.setflags(write=False)

        groups: Dict[Tuple[Hand, str], List[int]] = {}
        for i, e in enumerate(entries):
            groups.setdefault(e.label.key, []).append(i)

        group_matrix = np.stack([matrix[idx].mean(axis=0) for idx in groups.values()])
        group_matrix.setflags(write=False)

        return cls(
            entries=tuple(entries),
            groups={k: tuple(v) for k, v in groups.items()},
            dimensions=dims,
            matrix=matrix,
            norms=np.linalg.norm(matrix, axis=1),
            group_keys=tuple(groups),
            group_matrix=group_matrix,
            group_norms=np.linalg.norm(group_matrix, axis=1),
        )


class ReferenceStore:
    """
    Labelled reference vectors with cosine-similarity lookups.

    Loaded once; later queries are pure reads over arrays built at load time,
    so they can be shared between attempts. Use reload() after the backing
    records change: the new index is built aside and swapped in with one
    assignment, so a query running on another thread sees either the old
    corpus or the new one.
    """

    def __init__(self):
        self._index: Optional[_Index] = None
        self._write_lock = threading.Lock()

    def clear(self):
        with self._write_lock:
            self._index = None

    @property
    def is_loaded(self) -> bool:
        return self._index is not None

    @property
    def dimensions(self) -> int:
        index = self._index
        return index.dimensions if index is not None else 0

    def __len__(self):
        index = self._index
        return len(index.entries) if index is not None else 0

    @staticmethod
    def _record_fields(record: Any) -> Tuple[Optional[str], Any]:
        if isinstance(record, Mapping):
            return record.get("label"), record.get("keypoints")
        return getattr(record, "label", None), getattr(record, "keypoints", None)

    def _build(self, records: Iterable[Any]) -> Optional[_Index]:
        entries: List[ReferenceEntry] = []
        dims = 0
        skipped = 0
        for record in records:
            label_text, keypoints = self._record_fields(record)
            if keypoints is None or len(keypoints) == 0:
                skipped += 1
                continue
            try:
                label = ReferenceLabel.parse(label_text)
            except LabelFormatError as e:
                logger.warning("Skipping reference: %s", e)
                skipped += 1
                continue

            try:
                vector = np.asarray(keypoints, dtype=np.float64).reshape(-1)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping %s: keypoints are not numeric (%s)", label_text, e)
                skipped += 1
                continue
            if not np.all(np.isfinite(vector)):
                logger.warning("Skipping %s: keypoints contain NaN or infinite values", label_text)
                skipped += 1
                continue

            if dims == 0:
                dims = vector.size
            elif vector.size != dims:
                logger.warning("Skipping %s: %d values, store has %d", label_text, vector.size, dims)
                skipped += 1
                continue
            entries.append(ReferenceEntry(label=label, vector=vector, text=label_text))

        if not entries:
            logger.warning("No reference vectors found (%d skipped)", skipped)
            return None

        logger.info(
            "ReferenceStore loaded %d vectors of %d dimensions (%d skipped)",
            len(entries), dims, skipped,
        )
        return _Index.build(entries, dims)

    def load(self, records: Iterable[Any]) -> int:
        """
        records: {"label": str, "keypoints": [float, ...]} mappings or objects
        with the same attributes. Malformed records are skipped.
        Does nothing if the store is already loaded.
        """
        with self._write_lock:
            if self._index is not None:
                logger.debug("ReferenceStore already loaded (%d vectors)", len(self._index.entries))
                return len(self._index.entries)
            self._index = self._build(records)
            return len(self)

    def reload(self, records: Iterable[Any]) -> int:
        with self._write_lock:
            self._index = self._build(records)
            return len(self)

    def ensure_loaded(self):
        if not self.is_loaded:
            raise StoreUnavailableError("No reference vectors loaded")

    def _query(self, query) -> Tuple[Optional[_Index], Optional[np.ndarray]]:
        index = self._index
        if index is None:
            logger.error("ReferenceStore is not loaded or is empty")
            return None, None
        q = np.asarray(query, dtype=np.float64).reshape(-1)
        if q.size != index.dimensions:
            logger.error("Query vector size (%d) does not match stored size (%d)", q.size, index.dimensions)
            return None, None
        return index, q

    def find_best_match(self, query) -> Optional[Match]:
        index, q = self._query(query)
        if index is None:
            return None
        sims = _similarities(index.matrix, index.norms, q)
        best = int(np.argmax(sims))
        if sims[best] <= 0:
            return None
        entry = index.entries[best]
        label = entry.label
        return Match(label=entry.text, hand=label.hand, symbol=label.symbol, similarity=float(sims[best]))

    def find_best_match_averaged(self, query) -> Optional[Match]:
        """Best (hand, symbol) group by similarity to the group's mean vector."""
        index, q = self._query(query)
        if index is None:
            return None
        sims = _similarities(index.group_matrix, index.group_norms, q)
        best = int(np.argmax(sims))
        if sims[best] <= 0:
            return None
        hand, symbol = index.group_keys[best]
        return Match(label=f"{hand.value} {symbol}", hand=hand, symbol=symbol, similarity=float(sims[best]))

    def compute_average(self, hand, symbol: str) -> np.ndarray:
        """Mean of the numbered variants for (hand, symbol), excluding AVERAGE."""
        key = (Hand.parse(hand), symbol)
        index = self._index
        idx = []
        if index is not None:
            idx = [i for i in index.groups.get(key, ()) if not index.entries[i].label.is_average]
        if not idx:
            raise VectorShapeError(f"No numbered references for {key[0].value} {symbol}")
        return index.matrix[idx].mean(axis=0)

    def has_references(self, hand, symbol: str) -> bool:
        index = self._index
        if index is None:
            return False
        if hand is None:
            return any(s == symbol for _, s in index.groups)
        return (Hand.parse(hand), symbol) in index.groups

    def labels(self) -> List[str]:
        index = self._index
        return [e.text for e in index.entries] if index is not None else []

    def entries(self, hand=None, symbol: Optional[str] = None) -> List[ReferenceEntry]:
        index = self._index
        if index is None:
            return []
        out = []
        for e in index.entries:
            if hand is not None and e.label.hand != Hand.parse(hand):
                continue
            if symbol is not None and e.label.symbol != symbol:
                continue
            out.append(e)
        return out
