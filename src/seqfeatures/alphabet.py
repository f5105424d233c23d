"""Alphabets for symbol strings.

An alphabet names a finite symbol set (DNA, protein, raw bytes, ...), maps raw
symbols to a compact bin index in [0, num_symbols) and back, and keeps a
histogram of the symbols it has seen so a loaded string collection can be
validated against it.

Example (DNA):
  remap_to_bin(b"ACGT") -> [0, 1, 2, 3]
  remap_to_char([3, 2]) -> [ord("T"), ord("G")]
  num_bits = ceil(log2(4)) = 2

Symbols are handled as 16-bit codes. Integer strings wider than 16 bits are
folded to their low 16 bits for histogram and remapping purposes.
"""

from __future__ import annotations

import logging
import string
from enum import IntEnum
from functools import lru_cache
from typing import Dict, Optional, Tuple, Union

import numpy as np

from .errors import InvalidSymbol

logger = logging.getLogger(__name__)

NUM_CODES = 1 << 16
INVALID = -1


class AlphabetType(IntEnum):
    """Alphabet identities. The value is the byte written to SGV0 headers."""
    DNA = 0
    RAWDNA = 1
    RNA = 2
    PROTEIN = 3
    BINARY = 4
    ALPHANUM = 5
    CUBE = 6
    RAWBYTE = 7
    IUPAC_NUCLEIC_ACID = 8
    IUPAC_AMINO_ACID = 9
    NONE = 10
    DIGIT = 11
    DIGIT2 = 12
    RAWDIGIT = 13
    RAWDIGIT2 = 14
    UNKNOWN = 15
    SNP = 16
    RAWSNP = 17
    ASCII = 18
    RAWWORD = 19

    @classmethod
    def from_name(cls, name: Union["AlphabetType", int, str]) -> "AlphabetType":
        """Accept an AlphabetType, its integer value, or a name like 'dna' / 'RAW-BYTE'."""
        if isinstance(name, cls):
            return name
        if isinstance(name, int):
            return cls(name)
        key = str(name).strip().upper().replace("-", "").replace("_", "")
        for member in cls:
            if member.name.replace("_", "") == key:
                return member
        raise ValueError(f"unknown alphabet '{name}'. "
                         f"Known alphabets: {', '.join(a.name for a in cls)}")


# Symbol alphabets: bin i <-> i-th character, letters accepted in either case.
_SYMBOLS: Dict[AlphabetType, str] = {
    AlphabetType.DNA: "ACGT",
    AlphabetType.RNA: "ACGU",
    AlphabetType.PROTEIN: string.ascii_uppercase,
    AlphabetType.BINARY: "01",
    AlphabetType.ALPHANUM: string.digits + string.ascii_uppercase,
    AlphabetType.CUBE: "123456",
    AlphabetType.IUPAC_NUCLEIC_ACID: "ACGTURYKMSWBDHVN",
    AlphabetType.IUPAC_AMINO_ACID: "ARNDCQEGHILKMFPSTWYVBZX",
    AlphabetType.DIGIT: string.digits,
    AlphabetType.DIGIT2: "012",
    AlphabetType.SNP: "0ACGT",
}

# Raw alphabets: values 0..n-1 are their own bins.
_RAW_SIZES: Dict[AlphabetType, int] = {
    AlphabetType.RAWDNA: 4,
    AlphabetType.RAWBYTE: 256,
    AlphabetType.NONE: 256,
    AlphabetType.RAWDIGIT: 10,
    AlphabetType.RAWDIGIT2: 3,
    AlphabetType.RAWSNP: 5,
    AlphabetType.ASCII: 128,
    AlphabetType.RAWWORD: NUM_CODES,
    AlphabetType.UNKNOWN: 0,
}


@lru_cache(maxsize=None)
def _tables(alphabet: AlphabetType) -> Tuple[np.ndarray, np.ndarray]:
    """Build (to_bin, to_char) lookup tables for one alphabet; shared and read-only."""
    to_bin = np.full(NUM_CODES, INVALID, dtype=np.int64)
    if alphabet in _SYMBOLS:
        symbols = _SYMBOLS[alphabet]
        for i, ch in enumerate(symbols):
            to_bin[ord(ch)] = i
            to_bin[ord(ch.lower())] = i
        to_char = np.array([ord(ch) for ch in symbols], dtype=np.int64)
    else:
        n = _RAW_SIZES[alphabet]
        to_bin[:n] = np.arange(n)
        to_char = np.arange(n, dtype=np.int64)
    to_bin.setflags(write=False)
    to_char.setflags(write=False)
    return to_bin, to_char


def symbol_codes(values) -> np.ndarray:
    """Return the 16-bit symbol codes of a string (bytes, str, scalar or integer array)."""
    if isinstance(values, str):
        values = values.encode("latin-1")
    if isinstance(values, (bytes, bytearray, memoryview)):
        return np.frombuffer(values, dtype=np.uint8).astype(np.int64)
    arr = np.asarray(values)
    if arr.dtype == np.bool_:
        return arr.astype(np.int64)
    if arr.dtype.kind == "i":
        # two's complement view, like a C cast to unsigned
        arr = arr.astype(np.dtype(f"u{arr.dtype.itemsize}"))
    if arr.dtype.kind != "u":
        raise TypeError(f"symbols must be integers, got dtype {arr.dtype}")
    return arr.astype(np.int64) & 0xFFFF


class Alphabet:
    """A symbol set with remapping tables and an observed-symbol histogram.

    Alphabets are shared between string collections by reference. Only the
    loaders of the owning collection add to the histogram; cleanup and
    append install a new object instead of touching a shared one.
    """

    def __init__(self, alphabet: Union[AlphabetType, int, str] = AlphabetType.DNA) -> None:
        self.alphabet = AlphabetType.from_name(alphabet)
        self._to_bin, self._to_char = _tables(self.alphabet)
        self.num_symbols = int(len(self._to_char))
        self.num_bits = max(self.num_symbols - 1, 0).bit_length()
        self.histogram = np.zeros(NUM_CODES, dtype=np.int64)

    @property
    def name(self) -> str:
        return self.alphabet.name

    def __repr__(self) -> str:
        return (f"Alphabet({self.name}, num_symbols={self.num_symbols}, "
                f"num_bits={self.num_bits}, seen={self.num_symbols_in_histogram()})")

    def fresh(self) -> "Alphabet":
        """Same identity, empty histogram."""
        return Alphabet(self.alphabet)

    def copy(self) -> "Alphabet":
        other = Alphabet(self.alphabet)
        other.histogram = self.histogram.copy()
        return other

    # remapping

    def is_valid(self, values):
        """True where a raw symbol belongs to the alphabet."""
        ok = self._to_bin[symbol_codes(values)] != INVALID
        return bool(ok) if ok.ndim == 0 else ok

    def remap_to_bin(self, values, replacement: Optional[int] = None):
        """Map raw symbols to bin indices.

        Unknown symbols take `replacement` when given, otherwise InvalidSymbol
        is raised. Scalars in, int out; arrays in, int64 array out.
        """
        codes = symbol_codes(values)
        bins = self._to_bin[codes]
        bad = bins == INVALID
        if np.any(bad):
            if replacement is None:
                first = int(np.atleast_1d(codes)[np.atleast_1d(bad)][0])
                raise InvalidSymbol(f"symbol {first!r} ({_printable(first)}) "
                                    f"is not in alphabet {self.name}")
            bins = np.where(bad, replacement, bins)
        return int(bins) if bins.ndim == 0 else bins

    def remap_to_char(self, bins):
        """Map bin indices back to raw symbols (upper case for letter alphabets)."""
        arr = np.asarray(bins, dtype=np.int64)
        if np.any((arr < 0) | (arr >= self.num_symbols)):
            raise InvalidSymbol(f"bin index out of range for alphabet {self.name} "
                                f"(num_symbols={self.num_symbols})")
        chars = self._to_char[arr]
        return int(chars) if chars.ndim == 0 else chars

    # histogram

    def add_string_to_histogram(self, values) -> None:
        arr = values if isinstance(values, (bytes, bytearray, str)) else np.asarray(values)
        if isinstance(arr, np.ndarray) and arr.dtype.kind == "f":
            return
        codes = symbol_codes(arr)
        if codes.size:
            self.histogram += np.bincount(codes.ravel(), minlength=NUM_CODES)

    def clear_histogram(self) -> None:
        self.histogram[:] = 0

    def num_symbols_in_histogram(self) -> int:
        return int(np.count_nonzero(self.histogram))

    def histogram_counts(self) -> Dict[int, int]:
        """Non-zero histogram entries as {symbol code: count}."""
        used = np.flatnonzero(self.histogram)
        return {int(c): int(self.histogram[c]) for c in used}

    def check_alphabet(self) -> bool:
        """Every symbol seen so far must belong to the alphabet."""
        used = np.flatnonzero(self.histogram)
        bad = used[self._to_bin[used] == INVALID]
        if bad.size:
            shown = ", ".join(_printable(int(c)) for c in bad[:10])
            logger.warning("alphabet %s does not contain all symbols in histogram: %s%s",
                           self.name, shown, " ..." if bad.size > 10 else "")
            return False
        return True

    def check_alphabet_size(self) -> bool:
        """The histogram may not use more distinct symbols than the alphabet has.

        Codes sharing a bin (e.g. 'a' and 'A') count once; codes outside the
        alphabet count one each.
        """
        bins = self._to_bin[np.flatnonzero(self.histogram)]
        seen = int(np.unique(bins[bins != INVALID]).size + np.count_nonzero(bins == INVALID))
        if seen > self.num_symbols:
            logger.warning("alphabet %s has %d symbols but histogram contains %d",
                           self.name, self.num_symbols, seen)
            return False
        return True


def _printable(code: int) -> str:
    if 32 <= code < 127:
        return repr(chr(code))
    return f"0x{code:02x}"
