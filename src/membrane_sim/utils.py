"""
Run traces, parameter files and small helpers shared by the scripts.
"""
from __future__ import annotations

import json
import os
import sys
import time
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import numpy as np

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    tomllib = None

TRACE_FIELDS = ("times", "in_rates", "out_rates", "inside", "outside")
PARAM_SUFFIXES = {".json": "json", "": "json", ".toml": "toml", ".tml": "toml"}


@dataclass
class SimulationTrace:
    """Sampled observables of one run, one entry per sampling window."""

    times: np.ndarray = field(default_factory=lambda: np.zeros(0))
    in_rates: np.ndarray = field(default_factory=lambda: np.zeros(0))
    out_rates: np.ndarray = field(default_factory=lambda: np.zeros(0))
    inside: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    outside: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    meta: Optional[Dict[str, Any]] = None

    def ensure_meta(self) -> Dict[str, Any]:
        if self.meta is None:
            self.meta = {}
        return self.meta

    @property
    def inside_fraction(self) -> np.ndarray:
        total = np.maximum(self.inside + self.outside, 1)
        return self.inside / total

    def __len__(self) -> int:
        return int(np.asarray(self.times).shape[0])


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Random source for the simulator; pass a seed for reproducible runs."""
    return np.random.default_rng(seed)


def now_str() -> str:
    return time.strftime("%Y%m%d-%H%M%S")


def save_trace(
    path: str | os.PathLike[str], trace: SimulationTrace, *, overwrite: bool = True
) -> None:
    """Serialize a SimulationTrace to a compressed .npz file."""
    out_dir = Path(path).parent
    out_dir.mkdir(parents=True, exist_ok=True)
    if not overwrite and Path(path).exists():
        raise FileExistsError(f"{path} already exists")
    out: Dict[str, Any] = {name: np.asarray(getattr(trace, name)) for name in TRACE_FIELDS}
    out["meta"] = trace.meta or {}
    np.savez_compressed(path, **out)


def load_trace(path: str | os.PathLike[str]) -> SimulationTrace:
    """
    Load a .npz trace written by save_trace.
    """
    data = np.load(path, allow_pickle=True)
    arrays = {name: data[name] for name in TRACE_FIELDS if name in data}
    meta = None
    if "meta" in data:
        meta_raw = data["meta"]
        try:
            meta = meta_raw.item()
        except ValueError:
            meta = meta_raw
    return SimulationTrace(meta=meta, **arrays)


def check_keys(values: Mapping[str, Any], schema) -> None:
    """Raise ``ValueError`` naming every key of ``values`` that ``schema`` has no field for."""
    if not is_dataclass(schema):
        raise TypeError(f"{schema!r} is not a dataclass")
    unknown = sorted(set(values) - {f.name for f in fields(schema)})
    if unknown:
        raise ValueError(f"Unknown {schema.__name__} parameter(s): {', '.join(unknown)}")


def load_params(path: str | os.PathLike[str], schema=None) -> Dict[str, Any]:
    """
    Read a parameter mapping from a JSON or TOML file.

    When ``schema`` (a dataclass such as ``SimulationConfig``) is given, keys
    it does not define are rejected with ``ValueError``.
    """
    path = Path(path)
    kind = PARAM_SUFFIXES.get(path.suffix.lower())
    if kind is None:
        raise ValueError(f"Unsupported parameter file format: {path.suffix}")
    text = path.read_text(encoding="utf-8")
    if kind == "json":
        values = json.loads(text)
    elif tomllib is None:
        raise RuntimeError("TOML parameter files need Python 3.11 or newer")
    else:
        values = tomllib.loads(text)

    if not isinstance(values, dict):
        raise ValueError(f"{path} does not hold a parameter mapping")
    if schema is not None:
        check_keys(values, schema)
    return values
