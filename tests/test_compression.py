"""Tests for the byte codecs behind the compressed string format.
"""

import numpy as np
import pytest

from seqfeatures.compression import CompressionType, Compressor, prefix_elements
from seqfeatures.errors import CodecBufferTooSmall, CodecCorrupt


def test_available_codecs_roundtrip():
    """Test every available codec restores the input at several levels."""
    data = b"ACGT" * 200
    for name in ("uncompressed", "gzip", "bzip2", "lzma", "lzo", "snappy"):
        comp = Compressor(name)
        for level in (0, 1, 9):
            assert comp.decompress(comp.compress(data, level), len(data)) == data


def test_zlib_is_gzip():
    """Test the ZLIB name refers to the GZIP codec value."""
    assert CompressionType.from_name("zlib") is CompressionType.GZIP
    assert int(CompressionType.GZIP) == 2


def test_lzo_and_snappy_header_values():
    """Test LZO and SNAPPY keep their header bytes and reject foreign payloads."""
    assert int(CompressionType.from_name("lzo")) == 1
    assert int(CompressionType.from_name("snappy")) == 5
    packed = Compressor("snappy").compress(b"ACGT" * 50)
    assert len(packed) < 200
    with pytest.raises(CodecCorrupt):
        Compressor("gzip").decompress(packed, 200)
    with pytest.raises(ValueError):
        Compressor("zstd")


def test_corrupt_and_size_mismatch():
    """Test decoding errors and wrong expected sizes."""
    comp = Compressor("gzip")
    packed = comp.compress(b"ACGTACGT", 6)
    with pytest.raises(CodecCorrupt):
        comp.decompress(b"not zlib data", 8)
    with pytest.raises(CodecBufferTooSmall):
        comp.decompress(packed, 4)
    with pytest.raises(CodecCorrupt):
        comp.decompress(packed, 16)


def test_prefix_elements():
    """Test the row prefix occupies ceil(8 / itemsize) elements."""
    assert prefix_elements(np.uint8) == 8
    assert prefix_elements(np.uint16) == 4
    assert prefix_elements(np.int32) == 2
    assert prefix_elements(np.float64) == 1


def test_lzo_oversized_payload():
    """Test an LZO payload longer than expected raises CodecBufferTooSmall."""
    data = b"GATTACA" * 30
    packed = Compressor("lzo").compress(data, 1)
    with pytest.raises(CodecBufferTooSmall):
        Compressor("lzo").decompress(packed, len(data) - 1)
