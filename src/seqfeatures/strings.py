"""Symbol strings: a collection of variable-length symbol sequences.

SymbolSequence holds an ordered list of 1-D numpy arrays of one element type
(the dtype), an Alphabet describing the symbols, a stack of row subsets and,
after higher-order embedding, the packing metadata (order, num_symbols,
symbol mask table).

Higher-order embedding packs k consecutive remapped symbols into one word.
Example (DNA, num_bits=2, k=2):
  "ACGT" -> bins [0, 1, 2, 3]
         -> windows AC, CG, GT
         -> words [0b0001, 0b0110, 0b1011] = [1, 6, 11]

Only integer dtypes pack symbols; for bool and float dtypes the packing
operations are accepted and do nothing.
"""

from __future__ import annotations

import copy
import logging
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Sequence, Union

import numpy as np

from .alphabet import Alphabet, AlphabetType
from .errors import (
    CapacityExceeded,
    IndexOutOfRange,
    InvalidArgument,
    InvalidSymbol,
    RaggedInput,
    SubsetActive,
)
from .preprocess import PreprocessorChain, StringPreprocessor
from .subset import SubsetStack

logger = logging.getLogger(__name__)


class FeatureClass(Enum):
    STRING = "string"


class FeatureType(Enum):
    BOOL = "bool"
    CHAR = "char"
    BYTE = "byte"
    SHORT = "short"
    WORD = "word"
    INT = "int"
    UINT = "uint"
    LONG = "long"
    ULONG = "ulong"
    SHORTREAL = "shortreal"
    DREAL = "dreal"
    LONGREAL = "longreal"


_FEATURE_TYPES = {
    np.dtype(np.bool_): FeatureType.BOOL,
    np.dtype(np.int8): FeatureType.CHAR,
    np.dtype(np.uint8): FeatureType.BYTE,
    np.dtype(np.int16): FeatureType.SHORT,
    np.dtype(np.uint16): FeatureType.WORD,
    np.dtype(np.int32): FeatureType.INT,
    np.dtype(np.uint32): FeatureType.UINT,
    np.dtype(np.int64): FeatureType.LONG,
    np.dtype(np.uint64): FeatureType.ULONG,
    np.dtype(np.float32): FeatureType.SHORTREAL,
    np.dtype(np.float64): FeatureType.DREAL,
    np.dtype(np.longdouble): FeatureType.LONGREAL,
}

SUPPORTED_DTYPES = tuple(_FEATURE_TYPES)


class FeatureVector(NamedTuple):
    """A fetched string: `vector` aliases storage unless `must_free` is True."""
    vector: np.ndarray
    length: int
    must_free: bool


AlphabetLike = Union[Alphabet, AlphabetType, int, str]


class SymbolSequence:
    """Collection of symbol strings of one numpy dtype.

    Rows are addressed through an optional subset stack; every indexed read
    honours it, while every mutation refuses to run under it.
    """

    def __init__(self, alphabet: AlphabetLike = AlphabetType.DNA,
                 strings: Optional[Iterable] = None, dtype=np.uint8) -> None:
        self.dtype = np.dtype(dtype)
        if self.dtype not in _FEATURE_TYPES:
            raise InvalidArgument(f"unsupported element type {self.dtype}. "
                                  f"Supported: {', '.join(str(d) for d in SUPPORTED_DTYPES)}")
        self.alphabet = alphabet if isinstance(alphabet, Alphabet) else Alphabet(alphabet)
        self.subset_stack = SubsetStack()
        self.preprocessors = PreprocessorChain()
        self.preprocess_on_get = False
        self._strings: List[np.ndarray] = []
        self.single_string: Optional[np.ndarray] = None
        self.symbol_mask_table: Optional[np.ndarray] = None
        self.order = 0
        self.original_num_symbols = self.alphabet.num_symbols
        self.num_symbols = self.alphabet.num_symbols

        if strings is not None:
            strings = list(strings)
            if not self.set_all(strings):
                raise InvalidSymbol(f"strings do not fit alphabet {self.alphabet.name}")

    def __repr__(self) -> str:
        return (f"SymbolSequence(num_vectors={self.size()}, dtype={self.dtype}, "
                f"alphabet={self.alphabet.name}, order={self.order})")

    def __len__(self) -> int:
        return self.size()

    # type information

    @property
    def feature_class(self) -> FeatureClass:
        return FeatureClass.STRING

    @property
    def feature_type(self) -> FeatureType:
        return _FEATURE_TYPES[self.dtype]

    @property
    def packs_symbols(self) -> bool:
        """True for integer dtypes, the only ones that support bit packing."""
        return self.dtype.kind in "iu"

    @property
    def word_bits(self) -> int:
        return 8 * self.dtype.itemsize

    def get_max_num_symbols(self) -> int:
        return 1 << self.word_bits

    # conversion helpers

    def _as_vector(self, value) -> np.ndarray:
        if isinstance(value, str):
            value = value.encode("latin-1")
        if isinstance(value, (bytes, bytearray, memoryview)):
            arr = np.frombuffer(value, dtype=np.uint8)
        else:
            arr = np.asarray(value)
        if arr.ndim != 1:
            raise InvalidArgument(f"a string must be one-dimensional, got shape {arr.shape}")
        return np.array(arr, dtype=self.dtype, copy=True)

    def _wrap(self, value: int):
        """Cast a Python int to the element type with C-style wrap-around."""
        value &= (1 << self.word_bits) - 1
        return np.array(value, dtype=np.uint64).astype(self.dtype)[()]

    # subsets

    @property
    def has_subsets(self) -> bool:
        return self.subset_stack.non_empty

    def add_subset(self, indices: Sequence[int]) -> None:
        self.subset_stack.push(indices, bound=len(self._strings))

    def add_subset_in_place(self, indices: Sequence[int]) -> None:
        self.subset_stack.push_in_place(indices, bound=len(self._strings))

    def remove_subset(self) -> None:
        self.subset_stack.pop()

    def remove_all_subsets(self) -> None:
        self.subset_stack.pop_all()

    def _require_no_subset(self, what: str) -> None:
        if self.subset_stack.non_empty:
            raise SubsetActive(f"a subset is set, cannot {what}")

    def _physical(self, i: int) -> int:
        n = self.size()
        if i < 0 or i >= n:
            raise IndexOutOfRange(f"index out of bounds (number of strings {n}, "
                                  f"you requested {i})")
        return self.subset_stack.map(i, len(self._strings))

    # element access

    def size(self) -> int:
        """Number of logical strings (honours subsets)."""
        return self.subset_stack.size(len(self._strings))

    def get(self, i: int) -> FeatureVector:
        """Fetch string i.

        Without on-the-fly preprocessing the returned array is a read-only
        view of storage. With it, the string runs through the preprocessor
        chain and a fresh array is returned with must_free=True.
        """
        real = self._physical(i)
        stored = self._strings[real]
        if not self.preprocess_on_get:
            view = stored.view()
            view.setflags(write=False)
            return FeatureVector(view, len(view), False)

        logger.debug("computing feature vector %d", real)
        feat = self.preprocessors.apply(stored.copy())
        return FeatureVector(feat, len(feat), True)

    def release(self, vector: np.ndarray, i: int, must_free: bool = False) -> None:
        """Give back a vector obtained from get(). No per-row state is kept."""
        self._physical(i)

    def get_copy(self, i: int) -> np.ndarray:
        vector, _, must_free = self.get(i)
        out = vector if must_free else vector.copy()
        self.release(vector, i, must_free)
        return out

    def get_element(self, i: int, j: int):
        vector, length, must_free = self.get(i)
        if j < 0 or j >= length:
            raise IndexOutOfRange(f"symbol index {j} out of range for string {i} of length {length}")
        value = vector[j]
        self.release(vector, i, must_free)
        return value

    def length(self, i: int) -> int:
        vector, length, must_free = self.get(i)
        self.release(vector, i, must_free)
        return length

    def max_length(self) -> int:
        """Longest stored string among the logical rows."""
        n = self.size()
        if n == 0:
            return 0
        rows = self.subset_stack.map_indices(np.arange(n))
        return max(len(self._strings[r]) for r in rows)

    def has_same_length(self, length: Optional[int] = None) -> bool:
        """True if every fetched string has the same length (`length`, when given)."""
        lengths = {self.length(i) for i in range(self.size())}
        if length is not None:
            return lengths <= {length}
        return len(lengths) <= 1

    @property
    def string_list(self) -> List[np.ndarray]:
        """The physical list of strings; not available under a subset."""
        self._require_no_subset("get the string list")
        return self._strings

    def copy_features(self) -> List[np.ndarray]:
        """Owned copies of every logical string."""
        return [self.get_copy(i) for i in range(self.size())]

    def __iter__(self):
        for i in range(self.size()):
            yield self.get_copy(i)

    # mutation

    def set(self, i: int, value) -> None:
        """Replace string i with a copy of `value`."""
        self._require_no_subset("set feature vector")
        if i < 0 or i >= len(self._strings):
            raise IndexOutOfRange(f"index out of bounds (number of strings {len(self._strings)}, "
                                  f"you requested {i})")
        vec = self._as_vector(value)
        if len(vec) == 0:
            raise InvalidArgument("string has zero length")
        self._strings[i] = vec

    def _validated_alphabet(self, strings: Sequence[np.ndarray],
                            base: Optional[Alphabet] = None) -> Optional[Alphabet]:
        alpha = base.copy() if base is not None else self.alphabet.fresh()
        for s in strings:
            alpha.add_string_to_histogram(s)
        if alpha.check_alphabet_size() and alpha.check_alphabet():
            return alpha
        return None

    def set_all(self, strings: Iterable) -> bool:
        """Replace all strings. Returns False, changing nothing, if they do not fit the alphabet."""
        self._require_no_subset("set features")
        vectors = [self._as_vector(s) for s in strings]
        alpha = self._validated_alphabet(vectors)
        if alpha is None:
            return False
        self.cleanup()
        self.alphabet = alpha
        self._strings = vectors
        return True

    def append(self, strings: Union["SymbolSequence", Iterable]) -> bool:
        """Append strings (or the logical rows of another sequence) after alphabet validation."""
        self._require_no_subset("append features")
        if isinstance(strings, SymbolSequence):
            vectors = [self._as_vector(v) for v in strings.copy_features()]
        else:
            vectors = [self._as_vector(s) for s in strings]

        if not self._strings:
            return self.set_all(vectors)

        alpha = self._validated_alphabet(vectors, base=self.alphabet)
        if alpha is None:
            return False
        self.alphabet = alpha
        for v in vectors:
            self._strings.append(v)
        return True

    def cleanup(self) -> None:
        """Drop all strings and derived state; start over with a blank alphabet of the same identity."""
        self.remove_all_subsets()
        self._strings = []
        self.single_string = None
        self.symbol_mask_table = None
        self.alphabet = self.alphabet.fresh()
        self.order = 0
        self.original_num_symbols = self.alphabet.num_symbols
        self.num_symbols = self.alphabet.num_symbols

    def _install(self, strings: List[np.ndarray], alphabet: Alphabet) -> None:
        """Commit freshly loaded state in one step (used by loaders)."""
        self.cleanup()
        self.alphabet = alphabet
        self.original_num_symbols = alphabet.num_symbols
        self.num_symbols = alphabet.num_symbols
        self._strings = strings

    # sliding window / position list

    def _backing_string(self, window: int) -> np.ndarray:
        if self.single_string is not None:
            base = self.single_string
        elif len(self._strings) == 1:
            base = self._strings[0]
        else:
            raise InvalidArgument(f"need exactly one string or a single backing string, "
                                  f"have {len(self._strings)} strings")
        if len(base) < window:
            raise InvalidArgument(f"window size {window} exceeds string length {len(base)}")
        return base

    def slide(self, window: int, step: int, skip: int = 0) -> int:
        """Cut the single backing string into overlapping windows (views).

        Produces floor((L - window) / step) + 1 strings; string k covers
        [k*step + skip, min(k*step + window, L)). Returns the new count.
        """
        self._require_no_subset("extract sliding windows")
        if window <= 0 or step <= 0:
            raise InvalidArgument(f"window ({window}) and step ({step}) must be positive")
        if skip < 0:
            raise InvalidArgument(f"skip must be non-negative, got {skip}")
        base = self._backing_string(window)
        length = len(base)
        num = (length - window) // step + 1

        views = []
        for k in range(num):
            offs = k * step
            views.append(base[offs + skip:min(offs + window, length)])
        self.single_string = base
        self._strings = views
        logger.debug("sliding window: %d strings of size %d (step %d, skip %d)",
                     num, window, step, skip)
        return num

    def positions(self, window: int, positions: Sequence[int], skip: int = 0) -> int:
        """Cut windows of size `window` starting at each position of the backing string.

        Every position must satisfy 0 <= p <= L - window; otherwise nothing
        changes and InvalidArgument is raised. Each string has length
        window - skip.
        """
        self._require_no_subset("extract windows by position")
        if window <= 0:
            raise InvalidArgument(f"window size must be positive, got {window}")
        if skip < 0 or skip > window:
            raise InvalidArgument(f"skip must lie in [0, {window}], got {skip}")
        pos = [int(p) for p in positions]
        if not pos:
            raise InvalidArgument("position list is empty")
        base = self._backing_string(window)
        length = len(base)
        for i, p in enumerate(pos):
            if p < 0 or p > length - window:
                raise InvalidArgument(f"window (size:{window}) starting at position[{i}]={p} "
                                      f"does not fit in sequence (len:{length})")

        self.single_string = base
        self._strings = [base[p + skip:p + window] for p in pos]
        return len(pos)

    # higher-order embedding

    def _packed_windows(self, bins: np.ndarray, order: int, num_bits: int) -> np.ndarray:
        """Pack every window of `order` bins into one word (first bin most significant)."""
        windows = np.lib.stride_tricks.sliding_window_view(bins.astype(np.uint64), order)
        shifts = np.array([num_bits * (order - 1 - j) for j in range(order)], dtype=np.uint64)
        words = np.bitwise_or.reduce(np.left_shift(windows, shifts), axis=1)
        mask = (1 << (num_bits * order)) - 1
        return np.bitwise_and(words, np.uint64(mask)).astype(self.dtype)

    def embed(self, order: int) -> None:
        """Replace every string by its order-k packed words (length L - k + 1).

        word[0] = sum_j bin[j] << num_bits*(k-1-j)
        word[i] = ((word[i-1] << num_bits) | bin[i+k-1]) & (2^(num_bits*k) - 1)
        """
        self._require_no_subset("embed features")
        if not self.packs_symbols:
            logger.debug("embed(%d) is a no-op for dtype %s", order, self.dtype)
            return
        if order < 1:
            raise InvalidArgument(f"embedding order must be >= 1, got {order}")
        if self.order > 0:
            raise InvalidArgument(f"strings are already embedded (order {self.order})")
        if self.alphabet.num_symbols_in_histogram() == 0:
            raise InvalidArgument("alphabet histogram is empty; load strings before embedding")
        num_bits = self.alphabet.num_bits
        if num_bits * order > self.word_bits:
            raise CapacityExceeded(f"order {order} needs {num_bits * order} bits, "
                                   f"dtype {self.dtype} has {self.word_bits}")

        embedded = []
        for i, s in enumerate(self._strings):
            if len(s) < order:
                raise InvalidArgument(f"sequence {i} must be longer than order ({len(s)} vs. {order})")
            bins = self.alphabet.remap_to_bin(s)
            embedded.append(self._packed_windows(bins, order, num_bits))

        self._strings = embedded
        self.single_string = None
        self.order = order
        self.original_num_symbols = self.alphabet.num_symbols
        self.num_symbols = self.original_num_symbols ** order
        logger.info("max_val (bit): %d order: %d -> results in num_symbols: %d",
                    num_bits, order, self.num_symbols)
        self.compute_symbol_mask_table(num_bits)

    def compute_symbol_mask_table(self, num_bits: Optional[int] = None) -> None:
        """Build the 256-entry table expanding each bit of a byte to a num_bits-wide group."""
        if not self.packs_symbols:
            return
        if num_bits is None:
            num_bits = self.alphabet.num_bits
        group = (1 << num_bits) - 1
        full = (1 << self.word_bits) - 1
        table = []
        for b in range(256):
            value = 0
            for j in range(8):
                if b & (1 << j):
                    value |= group << (num_bits * j)
            table.append(value & full)
        self.symbol_mask_table = np.array(table, dtype=np.uint64).astype(self.dtype)

    def masked_symbols(self, symbol, mask: int):
        """Keep only the symbol groups of a packed word selected by the bits of `mask`."""
        if not self.packs_symbols:
            return symbol
        if self.symbol_mask_table is None:
            raise InvalidArgument("symbol mask table is not computed")
        return self.symbol_mask_table[mask] & self.dtype.type(symbol)

    def shift_offset(self, offset, amount: int):
        if not self.packs_symbols:
            return offset
        return self._wrap(int(offset) << (amount * self.alphabet.num_bits))

    def shift_symbol(self, symbol, amount: int):
        if not self.packs_symbols:
            return symbol
        return self._wrap((int(symbol) & ((1 << self.word_bits) - 1)) >> (amount * self.alphabet.num_bits))

    def embed_word(self, bins: Sequence[int]):
        """Pack already remapped bins into one word (first bin most significant)."""
        if not self.packs_symbols:
            return self.dtype.type(0)
        value = 0
        for b in bins:
            value = (value << self.alphabet.num_bits) | int(b)
        return self._wrap(value)

    def unembed_word(self, word, length: int) -> Optional[bytes]:
        """Recover the `length` raw symbols packed into `word`."""
        if not self.packs_symbols:
            return None
        nbits = self.alphabet.num_bits
        mask = (1 << nbits) - 1
        w = int(word) & ((1 << self.word_bits) - 1)
        bins = []
        for _ in range(length):
            bins.append(w & mask)
            w >>= nbits
        chars = self.alphabet.remap_to_char(bins[::-1])
        return bytes(int(c) & 0xFF for c in np.atleast_1d(chars))

    def from_char_sequence(self, other: "SymbolSequence", start: int, order: int,
                           gap: int = 0, reverse: bool = False) -> bool:
        """Fill this collection with order-k words computed from a character collection.

        Word i packs the `order` symbols ending at position i + start + gap of
        the source string, skipping `gap` positions in the middle of the
        window. Positions before the start of a string count as zeros.
        """
        if not self.packs_symbols:
            return False
        if order < 1 or gap < 0 or start < 0:
            raise InvalidArgument(f"invalid order/gap/start ({order}, {gap}, {start})")
        alpha = other.alphabet
        if alpha.num_symbols_in_histogram() == 0:
            raise InvalidArgument("source alphabet histogram is empty")
        num_bits = alpha.num_bits
        if num_bits * order > self.word_bits:
            raise CapacityExceeded(f"symbol does not fit into datatype {self.dtype} "
                                   f"({num_bits} bits x order {order})")
        sources = other.copy_features()
        if not sources:
            raise InvalidArgument("source collection is empty")

        span = order + gap
        start_gap = order // 2
        end_gap = start_gap + gap
        kept = [d for d in range(span) if d < start_gap or d >= end_gap]
        cut = start + gap

        strings = []
        for s in sources:
            bins = alpha.remap_to_bin(s).astype(np.uint64)
            padded = np.concatenate([np.zeros(span - 1, dtype=np.uint64), bins])
            words = np.zeros(len(bins), dtype=np.uint64)
            for m, d in enumerate(kept):
                shift = num_bits * ((order - 1 - m) if reverse else m)
                words |= np.left_shift(padded[span - 1 - d:span - 1 - d + len(bins)], np.uint64(shift))
            strings.append(words[cut:].astype(self.dtype))

        self._install(strings, alpha)
        self.order = order
        self.original_num_symbols = alpha.num_symbols
        self.num_symbols = alpha.num_symbols ** order
        logger.debug("translate: start=%d order=%d gap=%d (size:%d)",
                     start, order, gap, self.dtype.itemsize)
        self.compute_symbol_mask_table(num_bits)
        return True

    # whole-collection transforms

    def transpose(self) -> "SymbolSequence":
        """New collection whose string j holds symbol j of every string."""
        if not self.has_same_length():
            raise RaggedInput("transpose requires strings of equal length")
        n = self.size()
        out = SymbolSequence(self.alphabet, dtype=self.dtype)
        if n:
            matrix = np.stack([self.get_copy(i) for i in range(n)])
            out._strings = [np.ascontiguousarray(col) for col in matrix.T]
        return out

    def get_histogram(self, normalize: bool = True) -> np.ndarray:
        """Positional symbol histogram of shape (alphabet.num_symbols, longest fetched string).

        Column j counts the bins of symbol j over all strings; normalised
        columns sum to one and can be fed to create_random().
        """
        rows = self.copy_features()
        width = max((len(r) for r in rows), default=0)
        hist = np.zeros((self.alphabet.num_symbols, width), dtype=np.float64)
        for row in rows:
            bins = self.alphabet.remap_to_bin(row)
            np.add.at(hist, (bins, np.arange(len(bins))), 1.0)
        if normalize:
            totals = hist.sum(axis=0)
            nonzero = totals > 0
            hist[:, nonzero] /= totals[nonzero]
        return hist

    def create_random(self, hist: np.ndarray, num_vectors: int, seed: int) -> None:
        """Replace all strings by `num_vectors` random strings drawn from a positional histogram.

        hist has shape (num_symbols, L) and is column-stochastic; symbol c of
        every string is the smallest row whose cumulative probability reaches
        a uniform draw.
        """
        hist = np.asarray(hist, dtype=np.float64)
        if hist.ndim != 2 or hist.shape[0] != self.num_symbols:
            raise InvalidArgument(f"histogram must have {self.num_symbols} rows, got shape {hist.shape}")
        rows, cols = hist.shape
        rng = np.random.default_rng(seed)
        cumulative = np.cumsum(hist, axis=0)
        draws = rng.random((num_vectors, cols))

        picks = np.empty((num_vectors, cols), dtype=np.int64)
        for c in range(cols):
            picks[:, c] = np.searchsorted(cumulative[:, c], draws[:, c], side="left")
        np.clip(picks, 0, rows - 1, out=picks)

        chars = self.alphabet.remap_to_char(picks)
        self.cleanup()
        if not self.set_all(list(chars)):
            raise InvalidSymbol(f"random strings do not fit alphabet {self.alphabet.name}")

    def copy_subset(self, indices: Sequence[int]) -> "SymbolSequence":
        """Materialised copy of the selected logical rows, keeping embedding metadata."""
        rows = self.subset_stack.map_indices(indices) if self.has_subsets \
            else np.asarray(indices, dtype=np.int64)
        if rows.size and (rows.min() < 0 or rows.max() >= len(self._strings)):
            raise IndexOutOfRange(f"indices out of range for {len(self._strings)} strings")
        out = SymbolSequence(self.alphabet, dtype=self.dtype)
        out._strings = [self._strings[r].copy() for r in rows]
        out.order = self.order
        out.original_num_symbols = self.original_num_symbols
        out.num_symbols = self.num_symbols
        if self.order > 0:
            out.compute_symbol_mask_table()
        return out

    def duplicate(self) -> "SymbolSequence":
        return copy.deepcopy(self)

    # preprocessors

    def add_preprocessor(self, preprocessor: StringPreprocessor) -> None:
        self.preprocessors.add(preprocessor)

    def del_preprocessor(self, i: int) -> StringPreprocessor:
        return self.preprocessors.remove(i)

    @property
    def num_preprocessors(self) -> int:
        return len(self.preprocessors)

    def enable_on_the_fly_preprocessing(self) -> None:
        self.preprocess_on_get = True

    def disable_on_the_fly_preprocessing(self) -> None:
        self.preprocess_on_get = False

    def apply_preprocessors(self) -> None:
        """Run the chain once over every stored string, in place of lazy application."""
        self._require_no_subset("apply preprocessors")
        strings = [s.copy() for s in self._strings]
        for p in self.preprocessors:
            p.fit(self)
            strings = p.apply_to_strings(strings)
        self._strings = strings
        self.single_string = None
        self.preprocessors.clear()
        self.preprocess_on_get = False
