"""Byte codecs used by the SGV0 compressed string format.

Compressor(type).compress(data, level) -> bytes
Compressor(type).decompress(data, expected_size) -> bytes

GZIP (alias ZLIB), BZIP2 and LZMA use the codecs shipped with Python.
LZO uses python-lzo (raw LZO1X stream, no header) and SNAPPY uses
python-snappy (raw snappy format).
"""

from __future__ import annotations

import bz2
import logging
import lzma
import math
import struct
import zlib
from enum import IntEnum
from typing import Union

import lzo
import numpy as np
import snappy

from .errors import CodecBufferTooSmall, CodecCorrupt

logger = logging.getLogger(__name__)

# (compressed bytes, uncompressed elements) prefix of a row kept compressed in memory
ROW_PREFIX = struct.Struct("<ii")


def prefix_elements(dtype) -> int:
    """Number of elements of `dtype` occupied by ROW_PREFIX."""
    return int(math.ceil(ROW_PREFIX.size / np.dtype(dtype).itemsize))


class CompressionType(IntEnum):
    UNCOMPRESSED = 0
    LZO = 1
    GZIP = 2
    ZLIB = 2
    BZIP2 = 3
    LZMA = 4
    SNAPPY = 5

    @classmethod
    def from_name(cls, name: Union["CompressionType", int, str]) -> "CompressionType":
        if isinstance(name, cls):
            return name
        if isinstance(name, int):
            return cls(name)
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            raise ValueError(f"unknown compression type '{name}'") from None


class Compressor:
    """Opaque compress/decompress entry points for one compression type."""

    def __init__(self, compression: Union[CompressionType, int, str] = CompressionType.GZIP) -> None:
        self.compression = CompressionType.from_name(compression)

    def __repr__(self) -> str:
        return f"Compressor({self.compression.name})"

    def compress(self, data: bytes, level: int = 1) -> bytes:
        """Compress `data`. `level` follows zlib conventions (0 = store, 9 = best)."""
        c = self.compression
        data = bytes(data)
        level = max(0, min(int(level), 9))
        if c == CompressionType.UNCOMPRESSED:
            return data
        if c == CompressionType.GZIP:
            return zlib.compress(data, level)
        if c == CompressionType.BZIP2:
            # bzip2 block sizes run 1..9
            return bz2.compress(data, max(1, level))
        if c == CompressionType.LZMA:
            return lzma.compress(data, preset=level)
        if c == CompressionType.LZO:
            # levels above 1 select lzo1x_999
            return lzo.compress(data, max(1, level), False)
        return snappy.compress(data)

    def _decode(self, data: bytes, expected_size: int) -> bytes:
        c = self.compression
        if c == CompressionType.UNCOMPRESSED:
            return data
        if c == CompressionType.GZIP:
            return zlib.decompress(data)
        if c == CompressionType.BZIP2:
            return bz2.decompress(data)
        if c == CompressionType.LZMA:
            return lzma.decompress(data)
        if c == CompressionType.LZO:
            # one spare byte so an oversized payload shows up as a long result
            return lzo.decompress(data, False, expected_size + 1)
        return snappy.decompress(data)

    def decompress(self, data: bytes, expected_size: int) -> bytes:
        """Decompress `data`, which must expand to exactly `expected_size` bytes."""
        c = self.compression
        data = bytes(data)
        try:
            out = bytes(self._decode(data, expected_size))
        except (zlib.error, OSError, lzma.LZMAError, EOFError, lzo.error, snappy.UncompressError) as exc:
            raise CodecCorrupt(f"{c.name}: cannot decompress {len(data)} bytes: {exc}") from exc

        if len(out) > expected_size:
            raise CodecBufferTooSmall(f"{c.name}: decompressed {len(out)} bytes, "
                                      f"buffer holds {expected_size}")
        if len(out) < expected_size:
            raise CodecCorrupt(f"{c.name}: decompressed {len(out)} bytes, "
                               f"expected {expected_size}")
        logger.debug("%s: %d -> %d bytes", c.name, len(data), len(out))
        return out
