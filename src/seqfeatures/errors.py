"""Exception types raised by the string-feature engine.

Each error also derives from the closest builtin so callers can catch
either the specific type or the usual Python family (IndexError,
ValueError, ...).
"""


class StringFeatureError(Exception):
    """Base class for every error raised by seqfeatures."""


class IndexOutOfRange(StringFeatureError, IndexError):
    """Logical index exceeds the logical size."""


class SubsetActive(StringFeatureError, RuntimeError):
    """Mutation attempted while a subset is live."""


class InvalidArgument(StringFeatureError, ValueError):
    """Non-positive window/step, impossible embedding order, bad shapes."""


class RaggedInput(StringFeatureError, ValueError):
    """Operation requires equal-length strings."""


class InvalidSymbol(StringFeatureError, ValueError):
    """Alphabet validation failed and invalid symbols are not ignored."""


class MalformedFormat(StringFeatureError, ValueError):
    """File is not a valid ASCII/FASTA/FASTQ/compressed stream."""


class MalformedFastq(MalformedFormat):
    """FASTQ record is broken (line count, markers, empty read)."""


class LengthMismatch(StringFeatureError, ValueError):
    """Records that must share one length do not."""


class CapacityExceeded(StringFeatureError, OverflowError):
    """Embedding needs more bits than the element type has."""


class CodecError(StringFeatureError):
    """Base class for compressor failures."""


class CodecCorrupt(CodecError, ValueError):
    """Compressed payload cannot be decoded."""


class CodecBufferTooSmall(CodecError, ValueError):
    """Decoded payload is larger than the expected output size."""
