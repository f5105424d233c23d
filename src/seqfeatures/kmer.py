"""K-mer spectrum of embedded symbol strings.

After SymbolSequence.embed(k) every string holds one packed word per window
of k symbols, so the k-mer spectrum is a bincount of those words.
Example (DNA, num_bits=2):
  k = 2
  Sequence: "ACGTACGT"
  Packed 2-mers: AC=1, CG=6, GT=11, TA=12, AC=1, CG=6, GT=11
  Columns: 1 << (2*2) = 16, column w counts word w
  Normalized vector: AC, CG, GT -> 2/7 each, TA -> 1/7

For alphabets whose size is a power of two the column order is the
lexicographic order of all_kmers(); for other sizes some columns stay empty.
"""

from itertools import product
from typing import Dict, Iterable, List, Tuple, Union

import numpy as np
from scipy import sparse

from .alphabet import Alphabet, AlphabetType
from .errors import InvalidArgument
from .strings import SymbolSequence


def _alphabet(alphabet: Union[Alphabet, AlphabetType, str]) -> Alphabet:
    return alphabet if isinstance(alphabet, Alphabet) else Alphabet(alphabet)


def all_kmers(alphabet: Union[Alphabet, AlphabetType, str], k: int) -> List[str]:
    """All k-mers over the alphabet, in bin order."""
    alpha = _alphabet(alphabet)
    symbols = [chr(c) for c in alpha.remap_to_char(np.arange(alpha.num_symbols))]
    return ["".join(p) for p in product(symbols, repeat=k)]


def kmer_index(alphabet: Union[Alphabet, AlphabetType, str], k: int) -> Dict[str, int]:
    """Map each k-mer to its packed word, i.e. its column in the spectrum matrix."""
    alpha = _alphabet(alphabet)
    index = {}
    for kmer in all_kmers(alpha, k):
        word = 0
        for b in alpha.remap_to_bin(kmer.encode("latin-1")):
            word = (word << alpha.num_bits) | int(b)
        index[kmer] = word
    return index


def kmer_vector(words: Iterable[int], n_columns: int, normalize: bool = True) -> Tuple[np.ndarray, int]:
    """
    Count packed words into a vector of n_columns.
    - If normalize=True, divides by the number of words (so the vector sums to 1.0 when there are any).
    Returns: (vector, valid_windows)
    """
    w = np.asarray(words)
    if w.dtype.kind == "i":
        w = w.astype(np.dtype(f"u{w.dtype.itemsize}"))
    w = w.astype(np.uint64) & np.uint64(n_columns - 1)
    V = np.bincount(w.astype(np.int64), minlength=n_columns).astype(np.float64)
    valid = int(w.size)
    if normalize and valid > 0:
        V /= float(valid)
    return V, valid


def batch_kmer_matrix(features: SymbolSequence, normalize: bool = True) -> Tuple[sparse.csr_matrix, List[int]]:
    """
    Vectorize every logical string of an embedded collection into an
    (n_strings, 1 << (num_bits*order)) sparse matrix.
    Returns: (X, valid_counts_per_string)
    """
    if not features.packs_symbols or features.order < 1:
        raise InvalidArgument("k-mer spectrum needs strings embedded with embed(order)")
    n_columns = 1 << (features.alphabet.num_bits * features.order)

    rows: List[sparse.csr_matrix] = []
    valids: List[int] = []
    for i in range(features.size()):
        vector, _, must_free = features.get(i)
        v, valid = kmer_vector(vector, n_columns, normalize=normalize)
        features.release(vector, i, must_free)
        rows.append(sparse.csr_matrix(v))
        valids.append(valid)

    if not rows:
        return sparse.csr_matrix((0, n_columns), dtype=np.float64), valids
    return sparse.vstack(rows, format="csr"), valids
