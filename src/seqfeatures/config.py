"""
YAML description of a string collection to load.

A config file looks like:

  format: fastq            # ascii | fasta | fastq | directory | compressed
  path: data/reads.fq
  dtype: uint8             # optional, default uint8
  alphabet: dna            # optional, default dna
  ignore_invalid: true     # fasta/fastq only
  order: 3                 # optional: embed(order) after loading
  preprocess_on_get: false # optional

Format specific keys: remap_to_bin / binary_alphabet (ascii),
bitremap_in_single_string (fastq), decompress (compressed).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import yaml

from .alphabet import AlphabetType
from .loaders import LOADERS, load_file
from .strings import SUPPORTED_DTYPES, SymbolSequence

# loader keyword arguments each format understands
_FORMAT_OPTIONS = {
    "ascii": ("remap_to_bin", "binary_alphabet"),
    "fasta": ("ignore_invalid",),
    "fastq": ("ignore_invalid", "bitremap_in_single_string"),
    "directory": (),
    "compressed": ("decompress",),
}


@dataclass
class LoaderConfig:
    format: str
    path: str
    dtype: str = "uint8"
    alphabet: str = "dna"
    ignore_invalid: Optional[bool] = None
    bitremap_in_single_string: Optional[bool] = None
    remap_to_bin: Optional[bool] = None
    binary_alphabet: Optional[str] = None
    decompress: Optional[bool] = None
    preprocess_on_get: bool = False
    order: Optional[int] = None

    def loader_options(self) -> Dict[str, Any]:
        """Keyword arguments for the format's loader (unset keys left to its defaults)."""
        out = {}
        for key in _FORMAT_OPTIONS[self.format]:
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


def _validate(cfg: Dict[str, Any], source: str) -> LoaderConfig:
    known = {f.name for f in fields(LoaderConfig)}
    unknown = sorted(set(cfg) - known)
    if unknown:
        raise ValueError(f"{source}: unknown keys {unknown}")
    for key in ("format", "path"):
        if not cfg.get(key):
            raise ValueError(f"{source}: '{key}' key is required")

    fmt = str(cfg["format"]).lower()
    if fmt not in LOADERS:
        raise ValueError(f"{source}: unknown format '{cfg['format']}'. "
                         f"Known formats: {', '.join(sorted(LOADERS))}")
    allowed = set(_FORMAT_OPTIONS[fmt])
    for key in ("ignore_invalid", "bitremap_in_single_string", "remap_to_bin",
                "binary_alphabet", "decompress"):
        if cfg.get(key) is not None and key not in allowed:
            raise ValueError(f"{source}: '{key}' does not apply to format '{fmt}'")

    dtype = str(cfg.get("dtype", "uint8"))
    try:
        ok = np.dtype(dtype) in SUPPORTED_DTYPES
    except TypeError:
        ok = False
    if not ok:
        raise ValueError(f"{source}: unsupported dtype '{dtype}'")

    AlphabetType.from_name(cfg.get("alphabet", "dna"))
    if cfg.get("binary_alphabet") is not None:
        AlphabetType.from_name(cfg["binary_alphabet"])

    order = cfg.get("order")
    if order is not None and int(order) < 1:
        raise ValueError(f"{source}: 'order' must be >= 1, got {order}")

    out = LoaderConfig(**{**cfg, "format": fmt, "path": str(cfg["path"]), "dtype": dtype})
    if order is not None:
        out.order = int(order)
    return out


def load_config(path: Union[str, Path]) -> LoaderConfig:
    """Read and validate a YAML loader config. Relative data paths resolve against the config's directory."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as fh:
        cfg = yaml.safe_load(fh)

    if not isinstance(cfg, dict):
        raise ValueError(f"Top-level YAML in {path} must be a mapping")

    out = _validate(cfg, str(path))
    data = Path(out.path)
    if not data.is_absolute():
        out.path = str(path.parent / data)
    return out


def load_from_config(cfg: Union[LoaderConfig, str, Path]) -> SymbolSequence:
    """Load the collection a config describes, then embed and enable preprocessing as requested."""
    if not isinstance(cfg, LoaderConfig):
        cfg = load_config(cfg)
    features = load_file(cfg.path, cfg.format, dtype=np.dtype(cfg.dtype),
                         alphabet=cfg.alphabet, **cfg.loader_options())
    if cfg.order is not None:
        features.embed(cfg.order)
    if cfg.preprocess_on_get:
        features.enable_on_the_fly_preprocessing()
    return features
