"""Tests for the SymbolSequence container: access, subsets, windows and embedding.
"""

import numpy as np
import pytest

from seqfeatures.alphabet import AlphabetType
from seqfeatures.errors import (
    CapacityExceeded,
    IndexOutOfRange,
    InvalidArgument,
    RaggedInput,
    SubsetActive,
)
from seqfeatures.preprocess import SortWordString
from seqfeatures.strings import FeatureClass, FeatureType, SymbolSequence


def _as_bytes(features):
    return [features.get_copy(i).tobytes() for i in range(features.size())]


def _random_dna(rng, length):
    return bytes(rng.choice(list(b"ACGT"), size=length).astype(np.uint8))


def test_type_tags():
    """Test feature class and type follow the dtype."""
    f = SymbolSequence(AlphabetType.DNA, dtype=np.uint16)
    assert f.feature_class is FeatureClass.STRING
    assert f.feature_type is FeatureType.WORD
    assert f.get_max_num_symbols() == 1 << 16
    with pytest.raises(InvalidArgument):
        SymbolSequence(AlphabetType.DNA, dtype=np.complex128)


def test_get_is_read_only_view():
    """Test plain fetches alias storage and cannot be written through."""
    f = SymbolSequence("dna", ["ACGT", "GG"])
    vector, length, must_free = f.get(0)
    assert length == 4 and must_free is False
    assert not vector.flags.writeable
    assert np.shares_memory(vector, f.string_list[0])
    assert f.get_element(1, 1) == ord("G")
    assert f.max_length() == 4
    with pytest.raises(IndexOutOfRange):
        f.get(2)
    with pytest.raises(IndexOutOfRange):
        f.get_element(1, 2)


def test_subset_pass_through():
    """Test a pushed subset remaps indices and popping restores the view."""
    f = SymbolSequence("dna", ["AA", "CC", "GG", "TT"])
    f.add_subset([2, 0])
    assert f.size() == 2
    assert _as_bytes(f) == [b"GG", b"AA"]
    f.remove_subset()
    assert f.size() == 4


def test_subset_transparency_random():
    """Test get(i) under a subset equals get(sigma[i]) without it."""
    rng = np.random.default_rng(7)
    strings = [_random_dna(rng, int(n)) for n in rng.integers(1, 30, size=25)]
    f = SymbolSequence("dna", strings)
    before = _as_bytes(f)
    sigma = rng.permutation(25)[:10]
    f.add_subset(sigma)
    assert _as_bytes(f) == [before[s] for s in sigma]
    f.add_subset([9, 0])
    assert _as_bytes(f) == [before[sigma[9]], before[sigma[0]]]
    assert f.max_length() == max(len(before[sigma[9]]), len(before[sigma[0]]))


def test_mutators_refuse_subsets():
    """Test mutating calls raise SubsetActive while a subset is live."""
    f = SymbolSequence("dna", ["AC", "GT"])
    f.add_subset([1])
    with pytest.raises(SubsetActive):
        f.set(0, "AA")
    with pytest.raises(SubsetActive):
        f.embed(1)
    with pytest.raises(SubsetActive):
        f.string_list
    with pytest.raises(SubsetActive):
        f.append(["AA"])
    f.remove_all_subsets()
    f.set(0, "TT")
    assert _as_bytes(f) == [b"TT", b"GT"]


def test_windowing_and_set_all_refuse_subsets():
    """Test slide, positions and set_all under a subset change nothing."""
    f = SymbolSequence("dna", ["ACGTAC"])
    f.add_subset([0])
    with pytest.raises(SubsetActive):
        f.slide(3, 1)
    with pytest.raises(SubsetActive):
        f.positions(3, [0])
    with pytest.raises(SubsetActive):
        f.set_all(["GG"])
    assert f.single_string is None
    assert f.has_subsets
    f.remove_subset()
    assert _as_bytes(f) == [b"ACGTAC"]


def test_cleanup_drops_live_subsets():
    """Test cleanup is allowed under a subset and removes every layer."""
    f = SymbolSequence("dna", ["AA", "CC", "GG"])
    f.add_subset([2, 1])
    f.add_subset([0])
    f.cleanup()
    assert not f.has_subsets
    assert f.size() == 0
    assert f.set_all(["TT"]) is True
    assert _as_bytes(f) == [b"TT"]


def test_slide_rejects_non_positive_step():
    """Test a zero or negative step raises InvalidArgument and keeps the string."""
    f = SymbolSequence("dna", ["ACGTAC"])
    with pytest.raises(InvalidArgument):
        f.slide(3, 0)
    with pytest.raises(InvalidArgument):
        f.slide(3, -2)
    with pytest.raises(InvalidArgument):
        f.slide(3, 1, skip=-1)
    assert f.size() == 1 and f.single_string is None


def test_mixed_case_strings_fit_dna():
    """Test lower-case DNA is accepted and embeds like upper case."""
    f = SymbolSequence("dna")
    assert f.set_all(["ACGTa"]) is True
    f.embed(2)
    assert f.get_copy(0).tolist() == [1, 6, 11, 12]


def test_set_all_and_append_validate_alphabet():
    """Test strings outside the alphabet are rejected without changing anything."""
    f = SymbolSequence("dna", ["AC"])
    assert f.set_all(["ACGN"]) is False
    assert _as_bytes(f) == [b"AC"]

    assert f.append(["GG", "T"]) is True
    assert _as_bytes(f) == [b"AC", b"GG", b"T"]
    assert f.alphabet.histogram_counts() == {ord("A"): 1, ord("C"): 1, ord("G"): 2, ord("T"): 1}

    hist = f.alphabet.histogram.copy()
    assert f.append(["NN"]) is False
    assert f.size() == 3
    assert np.array_equal(f.alphabet.histogram, hist)

    other = SymbolSequence("dna", ["CCC", "AAA"])
    other.add_subset([1])
    assert f.append(other) is True
    assert _as_bytes(f)[-1] == b"AAA"


def test_sliding_window():
    """Test windows of size 3, step 1 over ABCDE are views of the backing string."""
    f = SymbolSequence("alphanum", ["ABCDE"])
    assert f.slide(3, 1) == 3
    assert _as_bytes(f) == [b"ABC", b"BCD", b"CDE"]
    assert np.shares_memory(f.string_list[1], f.single_string)


def test_sliding_window_count_and_spans():
    """Test the number of windows and the byte range of each."""
    text = b"0123456789"
    f = SymbolSequence("digit", [text])
    w, s = 4, 3
    assert f.slide(w, s) == (len(text) - w) // s + 1
    for k, view in enumerate(_as_bytes(f)):
        assert view == text[k * s:k * s + w]


def test_sliding_window_skip_and_errors():
    """Test skip trims the window start and bad arguments are rejected."""
    f = SymbolSequence("dna", ["ACGTAC"])
    with pytest.raises(InvalidArgument):
        f.slide(0, 1)
    with pytest.raises(InvalidArgument):
        f.slide(7, 1)
    assert f.slide(4, 2, skip=1) == 2
    assert _as_bytes(f) == [b"CGT", b"TAC"]


def test_position_list():
    """Test windows cut at explicit positions, and atomic failure on a bad position."""
    f = SymbolSequence("dna", ["ACGTAC"])
    with pytest.raises(InvalidArgument):
        f.positions(3, [0, 4])
    assert f.size() == 1 and f.single_string is None

    assert f.positions(3, [3, 0, 1], skip=1) == 3
    assert _as_bytes(f) == [b"AC", b"CG", b"GT"]


def test_embed_order_two():
    """Test embedding ACGT at order 2 gives packed words 1, 6, 11."""
    f = SymbolSequence("dna", ["ACGT"])
    f.embed(2)
    assert f.get_copy(0).tolist() == [1, 6, 11]
    assert f.length(0) == 3
    assert f.order == 2
    assert f.original_num_symbols == 4
    assert f.num_symbols == 16
    with pytest.raises(InvalidArgument):
        f.embed(2)


def test_embed_unembed_roundtrip():
    """Test every packed word unpacks to the window it was built from."""
    rng = np.random.default_rng(0)
    text = _random_dna(rng, 60)
    for dtype, k in ((np.uint8, 4), (np.uint16, 7), (np.int32, 16), (np.uint64, 32)):
        f = SymbolSequence("dna", [text], dtype=dtype)
        f.embed(k)
        words = f.get_copy(0)
        assert len(words) == len(text) - k + 1
        for i, w in enumerate(words):
            assert f.unembed_word(w, k) == text[i:i + k]


def test_embed_word_matches_embed():
    """Test embed_word packs bins the same way embed() does."""
    f = SymbolSequence("dna", ["GATTACA"], dtype=np.uint16)
    f.embed(3)
    bins = f.alphabet.remap_to_bin(b"GAT")
    assert f.embed_word(bins) == f.get_copy(0)[0]


def test_embed_failures_leave_state():
    """Test capacity and length errors change nothing."""
    f = SymbolSequence("dna", ["ACGT", "AC"])
    with pytest.raises(CapacityExceeded):
        f.embed(5)
    with pytest.raises(InvalidArgument):
        f.embed(3)
    assert f.order == 0
    assert _as_bytes(f) == [b"ACGT", b"AC"]
    with pytest.raises(InvalidArgument):
        SymbolSequence("dna").embed(1)


def test_symbol_mask_table():
    """Test each byte bit expands to a full num_bits wide group."""
    f = SymbolSequence("dna", ["ACGT"], dtype=np.uint16)
    f.embed(2)
    table = f.symbol_mask_table
    assert len(table) == 256
    nbits = f.alphabet.num_bits
    group = (1 << nbits) - 1
    for b in range(256):
        for j in range(8):
            got = (int(table[b]) >> (nbits * j)) & group
            assert got == (group if b & (1 << j) else 0)
    assert f.masked_symbols(0b1011, 0b01) == 0b0011


def test_shift_helpers():
    """Test offset and symbol shifts move whole symbols and wrap like the dtype."""
    f = SymbolSequence("dna", ["ACGT"], dtype=np.uint8)
    assert f.shift_offset(1, 2) == 16
    assert f.shift_offset(0b11, 4) == 0
    assert f.shift_symbol(0b110110, 1) == 0b1101


def test_float_dtype_packing_is_noop():
    """Test packing operations do nothing for floating point strings."""
    f = SymbolSequence("dna", [[1.5, 2.5, 3.5]], dtype=np.float64)
    f.embed(2)
    assert f.order == 0
    assert f.get_copy(0).tolist() == [1.5, 2.5, 3.5]
    assert f.embed_word([1, 2]) == 0
    assert f.unembed_word(1.0, 2) is None
    assert f.shift_symbol(2.0, 1) == 2.0
    f.compute_symbol_mask_table()
    assert f.symbol_mask_table is None
    assert f.alphabet.num_symbols_in_histogram() == 0


def test_from_char_sequence_matches_embed():
    """Test translating a character collection equals embedding it in place."""
    src = SymbolSequence("dna", ["ACGTTGCA"])
    words = SymbolSequence("dna", dtype=np.uint16)
    assert words.from_char_sequence(src, start=2, order=3) is True
    ref = SymbolSequence("dna", ["ACGTTGCA"], dtype=np.uint16)
    ref.embed(3)
    assert words.get_copy(0).tolist() == ref.get_copy(0).tolist()
    assert words.order == 3 and words.num_symbols == 64


def test_from_char_sequence_reverse():
    """Test reverse packing puts the first symbol in the lowest bits."""
    src = SymbolSequence("dna", ["ACG"])
    words = SymbolSequence("dna", dtype=np.uint8)
    words.from_char_sequence(src, start=1, order=2, reverse=True)
    # AC -> C<<2 | A, CG -> G<<2 | C
    assert words.get_copy(0).tolist() == [0b0100, 0b1001]


def test_transpose():
    """Test transposing equal-length strings and rejecting ragged ones."""
    f = SymbolSequence("dna", ["ACG", "TTA"])
    t = f.transpose()
    assert _as_bytes(t) == [b"AT", b"CT", b"GA"]
    with pytest.raises(RaggedInput):
        SymbolSequence("dna", ["AC", "G"]).transpose()


def test_histogram_and_random_strings():
    """Test the positional histogram and strings drawn from it."""
    f = SymbolSequence("dna", ["AC", "AG"])
    hist = f.get_histogram()
    assert hist.shape == (4, 2)
    assert hist[:, 0].tolist() == [1.0, 0.0, 0.0, 0.0]
    assert hist[:, 1].tolist() == [0.0, 0.5, 0.5, 0.0]

    g = SymbolSequence("dna")
    g.create_random(hist, 20, seed=3)
    assert g.size() == 20
    for s in _as_bytes(g):
        assert s[:1] == b"A" and s[1:] in (b"C", b"G")
    with pytest.raises(InvalidArgument):
        g.create_random(np.ones((3, 2)), 1, seed=0)


def test_copy_subset_and_duplicate():
    """Test materialised copies are independent of the source."""
    f = SymbolSequence("dna", ["AA", "CC", "GG", "TT"])
    c = f.copy_subset([3, 1])
    assert _as_bytes(c) == [b"TT", b"CC"]
    d = f.duplicate()
    d.set(0, "GG")
    assert f.get_copy(0).tobytes() == b"AA"


def test_on_the_fly_preprocessing():
    """Test fetched strings run through the chain and are owned copies."""
    f = SymbolSequence("dna", ["TGCA"])
    f.add_preprocessor(SortWordString())
    assert f.num_preprocessors == 1
    assert f.get_copy(0).tobytes() == b"TGCA"
    f.enable_on_the_fly_preprocessing()
    vector, length, must_free = f.get(0)
    assert must_free is True
    assert vector.tobytes() == b"ACGT"
    assert f.string_list[0].tobytes() == b"TGCA"

    f.disable_on_the_fly_preprocessing()
    f.apply_preprocessors()
    assert f.string_list[0].tobytes() == b"ACGT"
    assert f.num_preprocessors == 0


def test_cleanup_resets_state():
    """Test cleanup drops strings, subsets and embedding metadata."""
    f = SymbolSequence("dna", ["ACGT"])
    f.embed(2)
    f.cleanup()
    assert f.size() == 0
    assert f.order == 0
    assert f.symbol_mask_table is None
    assert f.num_symbols == 4
    assert f.alphabet.num_symbols_in_histogram() == 0


def test_has_same_length_and_in_place_subset():
    """Test equal-length checks follow the logical view."""
    f = SymbolSequence("dna", ["ACG", "TT", "GGA"])
    assert not f.has_same_length()
    f.add_subset([2, 1, 0])
    f.add_subset_in_place([0, 2])
    assert f.subset_stack.depth == 1
    assert _as_bytes(f) == [b"GGA", b"ACG"]
    assert f.has_same_length()
    assert f.has_same_length(3) and not f.has_same_length(2)
