"""String preprocessors and the ordered chain that applies them.

A string preprocessor maps one string (a 1-D numpy array) to a new string.
Preprocessors hold no per-call state, so the same chain can serve any number
of fetches. A SymbolSequence applies its chain either lazily on every fetch
(on-the-fly preprocessing) or once to all rows (apply_preprocessors).

Usage:
  chain = PreprocessorChain([DecompressString("gzip"), SortWordString()])
  out = chain.apply(vector)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Union

import numpy as np

from .compression import ROW_PREFIX, CompressionType, Compressor, prefix_elements
from .errors import MalformedFormat

logger = logging.getLogger(__name__)


class StringPreprocessor(ABC):
    """Base class: fit() may inspect a collection, apply_to_string() transforms one row."""

    def fit(self, features) -> "StringPreprocessor":
        """Default preprocessors have nothing to learn."""
        return self

    @abstractmethod
    def apply_to_string(self, vector: np.ndarray) -> np.ndarray:
        """Return a new array; the input is never modified."""

    def apply_to_strings(self, strings: Iterable[np.ndarray]) -> List[np.ndarray]:
        return [self.apply_to_string(s) for s in strings]


@dataclass
class SortWordString(StringPreprocessor):
    """Sort the symbols of each string (bag-of-words view of embedded k-mers)."""
    descending: bool = False

    def apply_to_string(self, vector: np.ndarray) -> np.ndarray:
        out = np.sort(vector, kind="stable")
        return out[::-1].copy() if self.descending else out


@dataclass
class DecompressString(StringPreprocessor):
    """Expand rows that were loaded from an SGV0 file with decompress=False.

    Each such row starts with an int32 pair (compressed bytes, uncompressed
    elements) followed by the compressed payload.
    """
    compression: Union[CompressionType, int, str] = CompressionType.GZIP
    _compressor: Optional[Compressor] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._compressor = Compressor(self.compression)

    def apply_to_string(self, vector: np.ndarray) -> np.ndarray:
        vec = np.ascontiguousarray(vector)
        raw = vec.view(np.uint8)
        if raw.size < ROW_PREFIX.size:
            raise MalformedFormat(f"compressed row too short ({raw.size} bytes)")
        len_compressed, len_uncompressed = ROW_PREFIX.unpack(raw[:ROW_PREFIX.size].tobytes())
        start = prefix_elements(vec.dtype) * vec.dtype.itemsize
        if len_compressed < 0 or len_uncompressed < 0 or start + len_compressed > raw.size:
            raise MalformedFormat(f"compressed row header is inconsistent "
                                  f"({len_compressed} bytes, {len_uncompressed} elements)")
        payload = raw[start:start + len_compressed].tobytes()
        out = self._compressor.decompress(payload, len_uncompressed * vec.dtype.itemsize)
        return np.frombuffer(out, dtype=vec.dtype).copy()


class PreprocessorChain:
    """Ordered pipeline of string preprocessors.

    apply() hands the output of each preprocessor to the next and returns the
    last one; intermediate arrays are dropped on the way.
    """

    def __init__(self, preprocessors: Optional[Iterable[StringPreprocessor]] = None) -> None:
        self._items: List[StringPreprocessor] = []
        for p in preprocessors or ():
            self.add(p)

    def __repr__(self) -> str:
        return f"PreprocessorChain({self._items!r})"

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[StringPreprocessor]:
        return iter(self._items)

    def __getitem__(self, i: int) -> StringPreprocessor:
        return self._items[i]

    def add(self, preprocessor: StringPreprocessor) -> None:
        if not isinstance(preprocessor, StringPreprocessor):
            raise TypeError(f"expected a StringPreprocessor, got {type(preprocessor).__name__}")
        self._items.append(preprocessor)

    def remove(self, i: int) -> StringPreprocessor:
        return self._items.pop(i)

    def clear(self) -> None:
        self._items.clear()

    def apply(self, vector: np.ndarray) -> np.ndarray:
        out = vector
        for p in self._items:
            out = p.apply_to_string(out)
        return out
