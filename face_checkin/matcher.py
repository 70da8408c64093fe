"""Nearest-neighbour identity matching over a branch gallery.

Linear scan: O(n * d) per query for n reference descriptors of length d. That
holds up for a few thousand identities at camera frame rates; larger galleries
would need an index.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np

from .config import MATCH_DISTANCE_THRESHOLD
from .exceptions import DescriptorMismatchError
from .labels import encode_label
from .types import UNKNOWN_LABEL, Identity, LabeledDescriptor, MatchResult


class Gallery:
    """Read-only matrix of reference descriptors and the identity owning each row."""

    def __init__(self, matrix: np.ndarray, owners: List[Identity]):
        self.matrix = matrix
        self.owners = owners

    def __len__(self) -> int:
        return len(self.owners)

    @property
    def dimension(self) -> Optional[int]:
        if self.matrix.size == 0:
            return None
        return int(self.matrix.shape[1])

    @property
    def identities(self) -> List[Identity]:
        seen: dict[str, Identity] = {}
        for owner in self.owners:
            seen.setdefault(owner.identity_id, owner)
        return list(seen.values())

    def distances(self, query: np.ndarray) -> np.ndarray:
        vector = np.asarray(query, dtype=np.float32).reshape(-1)
        if self.matrix.size == 0:
            return np.empty((0,), dtype=np.float32)
        if vector.shape[0] != self.matrix.shape[1]:
            raise DescriptorMismatchError(
                f"Query descriptor has length {vector.shape[0]}, gallery uses {self.matrix.shape[1]}."
            )
        return np.linalg.norm(self.matrix - vector, axis=1)

    def without(self, identity_id: str) -> "Gallery":
        keep = [idx for idx, owner in enumerate(self.owners) if owner.identity_id != identity_id]
        if not keep:
            return Gallery(np.empty((0, 0), dtype=np.float32), [])
        return Gallery(self.matrix[keep], [self.owners[idx] for idx in keep])


def build_gallery(labeled: Iterable[LabeledDescriptor]) -> Gallery:
    rows: List[np.ndarray] = []
    owners: List[Identity] = []
    dimension: Optional[int] = None

    for entry in labeled:
        for descriptor in entry.descriptors:
            vector = np.asarray(descriptor, dtype=np.float32).reshape(-1)
            if dimension is None:
                dimension = vector.shape[0]
            elif vector.shape[0] != dimension:
                raise DescriptorMismatchError(
                    f"Descriptor for {entry.identity.identity_id} has length {vector.shape[0]}, "
                    f"expected {dimension}."
                )
            rows.append(vector)
            owners.append(entry.identity)

    if not rows:
        return Gallery(np.empty((0, 0), dtype=np.float32), [])
    return Gallery(np.vstack(rows).astype(np.float32), owners)


def match(gallery: Gallery, query: np.ndarray, threshold: float = MATCH_DISTANCE_THRESHOLD) -> MatchResult:
    distances = gallery.distances(query)
    if distances.size == 0:
        return MatchResult(label=UNKNOWN_LABEL, distance=float("inf"))

    # argmin returns the first minimum, so ties go to the earliest gallery row.
    idx = int(np.argmin(distances))
    best = float(distances[idx])
    if best > threshold:
        return MatchResult(label=UNKNOWN_LABEL, distance=best)

    owner = gallery.owners[idx]
    return MatchResult(label=encode_label(owner), distance=best, identity=owner)
