"""Utility helpers: weight initializers and label encoding."""
from __future__ import annotations
import numpy as np
from typing import Optional, Tuple

from .tensor import Matrix, Volume


def glorot_uniform(shape: Tuple[int, ...], rng: np.random.Generator) -> np.ndarray:
    fan_in = np.prod(shape[1:]) if len(shape) > 1 else shape[0]
    fan_out = shape[0]
    limit = np.sqrt(6.0 / (fan_in + fan_out))
    return rng.uniform(-limit, limit, size=shape).astype(np.float32)


def random_weight_matrix(width: int, height: int, rng: Optional[np.random.Generator] = None,
                         limit: Optional[float] = None) -> Matrix:
    """Uniform random matrix, Glorot scaled unless ``limit`` is given."""
    rng = rng or np.random.default_rng()
    if limit is None:
        values = glorot_uniform((height, width), rng)
    else:
        values = rng.uniform(-limit, limit, size=(height, width)).astype(np.float32)
    return Matrix.from_array(values)


def random_weight_volume(width: int, height: int, depth: int, rng: Optional[np.random.Generator] = None,
                         limit: Optional[float] = None) -> Volume:
    rng = rng or np.random.default_rng()
    if limit is None:
        limit = float(np.sqrt(6.0 / (width * height * depth + width * height)))
    return Volume.from_array(rng.uniform(-limit, limit, size=(depth, height, width)).astype(np.float32))


def one_hot(index: int, count: int, base_value: float = 0.0, hot_value: float = 1.0) -> np.ndarray:
    if not 0 <= index < count:
        raise ValueError(f"Target index {index} out of range for {count} outputs")
    values = np.full(count, base_value, dtype=np.float32)
    values[index] = hot_value
    return values
