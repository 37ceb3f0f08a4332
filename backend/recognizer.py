import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np  # type: ignore

from backend.config import MATCH_THRESHOLD
from backend.errors import InputError
from backend.models import Student

UNKNOWN_LABEL = "unknown"


@dataclass(frozen=True)
class MatchResult:
    label: str
    distance: float

    @property
    def is_unknown(self) -> bool:
        return self.label == UNKNOWN_LABEL

    @property
    def confidence(self) -> float | None:
        if math.isinf(self.distance):
            return None
        return round(max(0.0, 1.0 - self.distance), 4)


class FaceGallery:
    """
    Read-only snapshot of labeled reference embeddings.

    A label may own several entries; matching compares against the best of
    them. Label order is first-seen order and breaks distance ties.
    """

    def __init__(self, entries: Iterable[tuple[str, Sequence[float]]] = ()):
        labels: list[str] = []
        vectors: list[np.ndarray] = []
        for label, vector in entries:
            arr = np.asarray(vector, dtype=np.float64).ravel()
            if arr.size == 0:
                raise InputError(f"Empty reference embedding for {label!r}.")
            labels.append(str(label))
            vectors.append(arr)

        if len({v.size for v in vectors}) > 1:
            raise InputError("Reference embeddings must all have the same length.")

        self._order: tuple[str, ...] = tuple(dict.fromkeys(labels))
        position = {label: i for i, label in enumerate(self._order)}
        self._label_ids = np.array([position[label] for label in labels], dtype=np.intp)
        self._matrix = np.vstack(vectors) if vectors else np.empty((0, 0), dtype=np.float64)
        self._matrix.setflags(write=False)

    @classmethod
    def from_students(cls, students: Iterable[Student]) -> "FaceGallery":
        return cls((s.id, s.face_descriptor) for s in students if s.has_face)

    def __len__(self) -> int:
        return int(self._matrix.shape[0])

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @property
    def labels(self) -> tuple[str, ...]:
        return self._order

    @property
    def dimension(self) -> int:
        return int(self._matrix.shape[1]) if len(self) else 0

    def distances(self, observed: Sequence[float]) -> np.ndarray:
        """Best (minimum) distance per label, aligned with `labels`."""
        vec = np.asarray(observed, dtype=np.float64).ravel()
        if vec.size != self.dimension:
            raise InputError(
                f"Embedding length {vec.size} does not match gallery length {self.dimension}."
            )
        per_entry = np.linalg.norm(self._matrix - vec, axis=1)
        best = np.full(len(self._order), np.inf)
        np.minimum.at(best, self._label_ids, per_entry)
        return best


def match(
    observed: Sequence[float],
    gallery: FaceGallery | Iterable[tuple[str, Sequence[float]]],
    threshold: float | None = None,
) -> MatchResult:
    """
    Nearest labeled embedding by Euclidean distance, accepted only when that
    distance is <= threshold. An empty gallery always yields `unknown`.
    """
    if not isinstance(gallery, FaceGallery):
        gallery = FaceGallery(gallery)
    limit = MATCH_THRESHOLD if threshold is None else float(threshold)

    if gallery.is_empty:
        return MatchResult(UNKNOWN_LABEL, math.inf)

    best = gallery.distances(observed)
    # argmin returns the first minimum, i.e. the first-seen label on ties
    idx = int(np.argmin(best))
    distance = float(best[idx])
    if distance <= limit:
        return MatchResult(gallery.labels[idx], distance)
    return MatchResult(UNKNOWN_LABEL, distance)
