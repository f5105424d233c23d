"""Stack of row-index subsets.

A subset is an index array that virtualises access to a collection: logical
row i refers to physical row sigma[i]. Subsets stack, so with layers
sigma1, sigma2, ..., sigman logical row i is sigma1[sigma2[...sigman[i]...]].

Each layer is stored already composed with the layers below it, so mapping an
index is a single lookup whatever the depth.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from .errors import IndexOutOfRange, InvalidArgument


def _as_index_array(indices: Sequence[int]) -> np.ndarray:
    idx = np.asarray(indices)
    if idx.ndim != 1:
        raise InvalidArgument(f"subset indices must be one-dimensional, got shape {idx.shape}")
    if idx.size and idx.dtype.kind not in "iu":
        raise InvalidArgument(f"subset indices must be integers, got dtype {idx.dtype}")
    return idx.astype(np.int64)


class SubsetStack:
    """Stack of composed index arrays."""

    def __init__(self) -> None:
        self._layers: List[np.ndarray] = []

    def __repr__(self) -> str:
        return f"SubsetStack(depth={self.depth}, size={len(self._layers[-1]) if self._layers else None})"

    @property
    def depth(self) -> int:
        return len(self._layers)

    @property
    def non_empty(self) -> bool:
        return bool(self._layers)

    def size(self, num_underlying: int) -> int:
        """Logical size: length of the top layer, or the underlying count when empty."""
        return len(self._layers[-1]) if self._layers else int(num_underlying)

    def _compose(self, indices: Sequence[int], bound: Optional[int]) -> np.ndarray:
        idx = _as_index_array(indices)
        limit = len(self._layers[-1]) if self._layers else bound
        if idx.size:
            lo, hi = int(idx.min()), int(idx.max())
            if lo < 0 or (limit is not None and hi >= limit):
                raise IndexOutOfRange(f"subset index out of range [0, {limit}): "
                                      f"min={lo}, max={hi}")
        if self._layers:
            return self._layers[-1][idx]
        return idx.copy()

    def push(self, indices: Sequence[int], bound: Optional[int] = None) -> None:
        """Add a layer. Indices refer to the current logical view.

        `bound` is the underlying count, used to validate the first layer.
        """
        self._layers.append(self._compose(indices, bound))

    def push_in_place(self, indices: Sequence[int], bound: Optional[int] = None) -> None:
        """Compose with the top layer and replace it (push when empty)."""
        composed = self._compose(indices, bound)
        if self._layers:
            self._layers[-1] = composed
        else:
            self._layers.append(composed)

    def pop(self) -> None:
        if not self._layers:
            raise IndexOutOfRange("no subset to remove")
        self._layers.pop()

    def pop_all(self) -> None:
        self._layers.clear()

    def map(self, i: int, num_underlying: Optional[int] = None) -> int:
        """Translate a logical index to a physical one.

        `num_underlying` bounds the index when no subset is set.
        """
        limit = len(self._layers[-1]) if self._layers else num_underlying
        if i < 0 or (limit is not None and i >= limit):
            raise IndexOutOfRange(f"index {i} out of range [0, {limit})")
        if not self._layers:
            return int(i)
        return int(self._layers[-1][i])

    def map_indices(self, indices: Sequence[int]) -> np.ndarray:
        """Vectorised `map`."""
        idx = _as_index_array(indices)
        if not self._layers:
            return idx
        top = self._layers[-1]
        if idx.size and (idx.min() < 0 or idx.max() >= len(top)):
            raise IndexOutOfRange(f"indices out of range for subset of size {len(top)}")
        return top[idx]

    @property
    def top(self) -> Optional[np.ndarray]:
        """Current logical -> physical map (read-only copy), or None."""
        return self._layers[-1].copy() if self._layers else None
