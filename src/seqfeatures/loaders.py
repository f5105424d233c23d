"""Loaders that fill a SymbolSequence from files.

Formats:

1. ASCII lines: one string per LF-terminated line (last LF optional).
2. FASTA: '>' header lines, body lines concatenated up to the next header.
3. FASTQ: four-line records (header, read, '+', quality); quality ignored.
4. Directory: every regular file is one raw string of the target dtype.
5. SGV0: compressed binary format written by save_compressed().

Every loader parses into local state first and installs it in one step at
the end (dropping subsets and cleaning the target), so a failing load leaves
the target exactly as it was.

SGV0 layout (all integers little-endian):
  offset 0   magic 'SGV0'
  offset 4   u8  compression type
  offset 5   u8  alphabet identity
  offset 6   i32 number of vectors
  offset 10  i32 maximum string length
  then per vector: i32 compressed bytes, i32 uncompressed elements, payload
"""

from __future__ import annotations

import io
import logging
import struct
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from .alphabet import Alphabet, AlphabetType
from .compression import ROW_PREFIX, CompressionType, Compressor, prefix_elements
from .errors import (
    CapacityExceeded,
    InvalidArgument,
    InvalidSymbol,
    LengthMismatch,
    MalformedFastq,
    MalformedFormat,
    SubsetActive,
)
from .strings import SymbolSequence

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

BLOCKSIZE = 1024 * 1024
MAGIC = b"SGV0"
HEADER = struct.Struct("<4sBBii")
VECTOR_HEADER = struct.Struct("<ii")


def _check_alphabet(alpha: Alphabet, source: PathLike) -> None:
    if not (alpha.check_alphabet_size() and alpha.check_alphabet()):
        raise InvalidSymbol(f"{source}: symbols do not fit alphabet {alpha.name}")


def _replace_invalid(residues: np.ndarray, alpha: Alphabet, ignore_invalid: bool,
                     source: str) -> np.ndarray:
    """Map out-of-alphabet residues to 'A' when ignoring, otherwise fail."""
    valid = alpha.is_valid(residues)
    if np.all(valid):
        return residues
    if not ignore_invalid:
        bad = int(residues[~valid][0])
        raise InvalidSymbol(f"{source}: invalid symbol {chr(bad)!r} for alphabet {alpha.name}")
    out = residues.copy()
    out[~valid] = ord("A")
    return out



# ASCII lines
# -----------

def iter_lines(fh: BinaryIO, blocksize: int = BLOCKSIZE) -> Iterator[bytes]:
    """Yield the lines of a binary stream read block by block.

    Bytes after the last LF of a block are carried over to the next block.
    A final line without LF is yielded only if it holds at least one byte.
    """
    overflow = b""
    while True:
        block = fh.read(blocksize)
        if not block:
            break
        start = 0
        while True:
            nl = block.find(b"\n", start)
            if nl < 0:
                break
            yield overflow + block[start:nl]
            overflow = b""
            start = nl + 1
        overflow += block[start:]
    if overflow:
        yield overflow


def load_ascii_file(features: SymbolSequence, path: PathLike, remap_to_bin: bool = False,
                    ascii_alphabet: Optional[Union[AlphabetType, str]] = None,
                    binary_alphabet: Union[AlphabetType, str] = AlphabetType.RAWDNA,
                    blocksize: int = BLOCKSIZE) -> SymbolSequence:
    """Load one string per line.

    With remap_to_bin=True every symbol is stored as its bin index and the
    collection ends up with `binary_alphabet`, whose histogram is built over
    the bins; the text itself is still validated against `ascii_alphabet`.
    """
    path = Path(path)
    alpha = Alphabet(ascii_alphabet if ascii_alphabet is not None else features.alphabet.alphabet)
    alpha_bin = Alphabet(binary_alphabet)

    logger.info("counting line numbers in file %s", path)
    num_vectors = 0
    max_len = 0
    with path.open("rb") as fh:
        for line in iter_lines(fh, blocksize):
            num_vectors += 1
            max_len = max(max_len, len(line))
    logger.info("found %d strings", num_vectors)
    logger.debug("block_size=%d max_line=%d", blocksize, max_len)

    vectors: List[np.ndarray] = [None] * num_vectors
    with path.open("rb") as fh:
        for lineno, line in enumerate(iter_lines(fh, blocksize)):
            raw = np.frombuffer(line, dtype=np.uint8)
            alpha.add_string_to_histogram(raw)
            if remap_to_bin:
                try:
                    bins = alpha.remap_to_bin(raw)
                except InvalidSymbol as exc:
                    raise InvalidSymbol(f"{path}:{lineno + 1}: {exc}") from None
                vec = bins.astype(features.dtype)
                alpha_bin.add_string_to_histogram(bins)
            else:
                vec = raw.astype(features.dtype)
            vectors[lineno] = vec

    _check_alphabet(alpha, path)
    features._install(vectors, alpha_bin if remap_to_bin else alpha)
    logger.info("file successfully read")
    logger.info("max_string_length=%d", features.max_length())
    logger.info("num_strings=%d", features.size())
    return features



# FASTA
# -----

def read_fasta_records(path: PathLike) -> List[Tuple[str, bytes]]:
    """Return (header, residues) pairs of a multi-FASTA file.

    Body lines are concatenated with their LF removed. Blank lines are skipped.
    """
    path = Path(path)
    records: List[Tuple[str, List[bytes]]] = []
    with path.open("rb") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.rstrip(b"\n")
            if line.startswith(b">"):
                records.append((line[1:].decode("utf-8", errors="replace").strip(), []))
            elif not line:
                continue
            elif not records:
                raise MalformedFormat(f"{path}:{lineno}: sequence data before the first '>' header")
            else:
                records[-1][1].append(line)

    if not records:
        raise MalformedFormat(f"{path}: no fasta hunks (lines starting with '>') found")

    out: List[Tuple[str, bytes]] = []
    for header, chunks in records:
        seq = b"".join(chunks)
        if not seq:
            raise MalformedFormat(f"{path}: fasta entry '{header}' has no sequence")
        out.append((header, seq))
    return out


def load_fasta_file(features: SymbolSequence, path: PathLike,
                    ignore_invalid: bool = False) -> SymbolSequence:
    """Load every FASTA hunk as one DNA string.

    ignore_invalid=True replaces residues outside the DNA alphabet with 'A';
    otherwise such residues raise InvalidSymbol.
    """
    alpha = Alphabet(AlphabetType.DNA)
    vectors = []
    for header, seq in read_fasta_records(path):
        logger.debug("'%s', len=%d", header, len(seq))
        residues = _replace_invalid(np.frombuffer(seq, dtype=np.uint8), alpha,
                                    ignore_invalid, f"{path} ({header})")
        alpha.add_string_to_histogram(residues)
        vectors.append(residues.astype(features.dtype))

    _check_alphabet(alpha, path)
    features._install(vectors, alpha)
    logger.info("read %d fasta entries from %s", len(vectors), path)
    return features



# FASTQ
# -----

def _fastq_reads(path: Path) -> List[bytes]:
    data = path.read_bytes()
    lines = data.split(b"\n")
    if data.endswith(b"\n"):
        lines.pop()
    if not data or len(lines) % 4:
        raise MalformedFastq(f"{path}: number of lines must be divisible by 4 in fastq files "
                             f"(found {len(lines) if data else 0})")

    reads = []
    for i in range(0, len(lines), 4):
        header, read, plus = lines[i], lines[i + 1], lines[i + 2]
        if not header.startswith(b"@"):
            raise MalformedFastq(f"{path}:{i + 1}: error reading 'read' identifier")
        if not read:
            raise MalformedFastq(f"{path}:{i + 2}: error reading 'read' (empty)")
        if not plus.startswith(b"+"):
            raise MalformedFastq(f"{path}:{i + 3}: error reading 'read' quality identifier")
        reads.append(read)
    return reads


def load_fastq_file(features: SymbolSequence, path: PathLike, ignore_invalid: bool = False,
                    bitremap_in_single_string: bool = False) -> SymbolSequence:
    """Load the reads of a FASTQ file over the DNA alphabet.

    With bitremap_in_single_string=True all reads must share one length L;
    each read is packed into one word of order L and the collection holds a
    single string of those words, ready for slide() or positions().
    """
    path = Path(path)
    alpha = Alphabet(AlphabetType.DNA)
    reads = _fastq_reads(path)

    if not bitremap_in_single_string:
        vectors = []
        for n, read in enumerate(reads):
            residues = _replace_invalid(np.frombuffer(read, dtype=np.uint8), alpha,
                                        ignore_invalid, f"{path}:{4 * n + 2}")
            alpha.add_string_to_histogram(residues)
            vectors.append(residues.astype(features.dtype))
        _check_alphabet(alpha, path)
        features._install(vectors, alpha)
        logger.info("read %d fastq records from %s", len(vectors), path)
        return features

    if not features.packs_symbols:
        raise InvalidArgument(f"packed fastq loading needs an integer dtype, got {features.dtype}")
    order = len(reads[0])
    if alpha.num_bits * order > features.word_bits:
        raise CapacityExceeded(f"reads of length {order} need {alpha.num_bits * order} bits, "
                               f"dtype {features.dtype} has {features.word_bits}")

    bins = np.empty((len(reads), order), dtype=np.uint64)
    for n, read in enumerate(reads):
        if len(read) != order:
            raise LengthMismatch(f"{path}:{4 * n + 2}: read not of length {order} (is {len(read)})")
        residues = _replace_invalid(np.frombuffer(read, dtype=np.uint8), alpha,
                                    ignore_invalid, f"{path}:{4 * n + 2}")
        alpha.add_string_to_histogram(residues)
        bins[n] = alpha.remap_to_bin(residues)

    shifts = np.array([alpha.num_bits * (order - 1 - j) for j in range(order)], dtype=np.uint64)
    words = np.bitwise_or.reduce(np.left_shift(bins, shifts), axis=1).astype(features.dtype)

    features._install([words], alpha)
    features.order = order
    features.original_num_symbols = alpha.num_symbols
    features.num_symbols = alpha.num_symbols ** order
    features.compute_symbol_mask_table(alpha.num_bits)
    logger.info("packed %d fastq reads of length %d into one string", len(reads), order)
    return features



# Directory of raw files
# ----------------------

def load_from_directory(features: SymbolSequence, dirname: PathLike) -> SymbolSequence:
    """Load each regular file of a directory as one string of the target dtype.

    A file of N bytes gives N // itemsize elements; sub-directories are
    skipped. Files are taken in name order.
    """
    root = Path(dirname)
    if not root.is_dir():
        raise NotADirectoryError(f"specified path ('{root}') is not a directory")

    itemsize = features.dtype.itemsize
    alpha = features.alphabet.fresh()
    vectors = []
    for p in sorted(root.iterdir()):
        if not p.is_file():
            logger.debug("skipping %s as it's not a regular file", p)
            continue
        raw = p.read_bytes()
        n = len(raw) // itemsize
        logger.debug("%s: %d bytes -> %d elements", p, len(raw), n)
        vec = np.frombuffer(raw[:n * itemsize], dtype=features.dtype).copy()
        alpha.add_string_to_histogram(vec)
        vectors.append(vec)

    if not vectors:
        raise MalformedFormat(f"no files found in {root}")
    _check_alphabet(alpha, root)
    features._install(vectors, alpha)
    return features



# SGV0 compressed format
# ----------------------

def save_compressed(features: SymbolSequence, path: PathLike,
                    compression: Union[CompressionType, int, str] = CompressionType.GZIP,
                    level: int = 1) -> None:
    """Write all strings to an SGV0 file, compressing each one separately."""
    if features.has_subsets:
        raise SubsetActive("save_compressed() is not possible on subset")
    compressor = Compressor(compression)

    out = io.BytesIO()
    out.write(HEADER.pack(MAGIC, int(compressor.compression), int(features.alphabet.alphabet),
                          features.size(), features.max_length()))
    for i in range(features.size()):
        vector, length, must_free = features.get(i)
        payload = compressor.compress(np.ascontiguousarray(vector).tobytes(), level)
        out.write(VECTOR_HEADER.pack(len(payload), length))
        out.write(payload)
        features.release(vector, i, must_free)

    Path(path).write_bytes(out.getvalue())
    logger.info("saved %d strings to %s (%s, level %d)",
                features.size(), path, compressor.compression.name, level)


def _read_exact(fh: BinaryIO, n: int, what: str) -> bytes:
    data = fh.read(n)
    if len(data) != n:
        raise MalformedFormat(f"failed to read {what} (expected {n} bytes, got {len(data)})")
    return data


def load_compressed(features: SymbolSequence, path: PathLike,
                    decompress: bool = True) -> SymbolSequence:
    """Read an SGV0 file.

    With decompress=False every row keeps its payload compressed, prefixed by
    the (compressed bytes, uncompressed elements) int32 pair; a
    DecompressString preprocessor can expand the rows on fetch. The alphabet
    histogram is only rebuilt when decompressing.
    """
    path = Path(path)
    with path.open("rb") as fh:
        magic, c, a, num_vectors, max_string_length = HEADER.unpack(
            _read_exact(fh, HEADER.size, "header"))
        if magic != MAGIC:
            raise MalformedFormat(f"{path}: bad magic {magic!r}, expected {MAGIC!r}")
        try:
            compressor = Compressor(CompressionType(c))
        except ValueError:
            raise MalformedFormat(f"{path}: unknown compression type {c}") from None
        try:
            alpha = Alphabet(AlphabetType(a))
        except ValueError:
            raise MalformedFormat(f"{path}: unknown alphabet {a}") from None
        if num_vectors < 0 or max_string_length < 0:
            raise MalformedFormat(f"{path}: negative vector count ({num_vectors}) "
                                  f"or maximum length ({max_string_length})")
        logger.debug("%s: %d vectors, max length %d, %s", path, num_vectors,
                     max_string_length, compressor.compression.name)

        itemsize = features.dtype.itemsize
        offs = prefix_elements(features.dtype)
        vectors = []
        for i in range(num_vectors):
            len_compressed, len_uncompressed = VECTOR_HEADER.unpack(
                _read_exact(fh, VECTOR_HEADER.size, f"vector {i} lengths"))
            if len_compressed < 0 or len_uncompressed < 0:
                raise MalformedFormat(f"{path}: vector {i} has negative length")
            payload = _read_exact(fh, len_compressed, f"compressed data of vector {i}")

            if decompress:
                raw = compressor.decompress(payload, len_uncompressed * itemsize)
                vec = np.frombuffer(raw, dtype=features.dtype).copy()
                alpha.add_string_to_histogram(vec)
            else:
                vec = np.zeros(offs + len_compressed, dtype=features.dtype)
                buf = vec.view(np.uint8)
                buf[:ROW_PREFIX.size] = np.frombuffer(ROW_PREFIX.pack(len_compressed, len_uncompressed),
                                                      dtype=np.uint8)
                buf[offs * itemsize:offs * itemsize + len_compressed] = np.frombuffer(payload, dtype=np.uint8)
            vectors.append(vec)

        if fh.read(1):
            logger.warning("%s: trailing bytes after %d vectors ignored", path, num_vectors)

    if decompress:
        _check_alphabet(alpha, path)
    features._install(vectors, alpha)
    return features



# Convenience
# -----------

LOADERS: Dict[str, Callable[..., SymbolSequence]] = {
    "ascii": load_ascii_file,
    "fasta": load_fasta_file,
    "fastq": load_fastq_file,
    "directory": load_from_directory,
    "compressed": load_compressed,
}


def load_file(path: PathLike, fmt: str = "ascii", dtype=np.uint8,
              alphabet: Union[Alphabet, AlphabetType, str] = AlphabetType.DNA,
              **options) -> SymbolSequence:
    """Create a SymbolSequence of `dtype` over `alphabet` and fill it with the `fmt` loader."""
    key = fmt.lower()
    if key not in LOADERS:
        raise KeyError(f"Unknown format '{fmt}'. Known formats: {', '.join(sorted(LOADERS))}")
    features = SymbolSequence(alphabet, dtype=dtype)
    return LOADERS[key](features, path, **options)
