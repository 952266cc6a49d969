"""Flat float32 buffer math used by the host backend.

Every function takes 1-D buffers (anything ``np.asarray`` accepts) and returns
a new ``float32`` buffer. Binary operations accept a scalar on either side;
two buffers must have the same length.
"""
from __future__ import annotations
import numpy as np
from typing import Tuple, Union

from .errors import ShapeMismatchError, UnsupportedConfigurationError

Operand = Union[np.ndarray, float, int]


def as_vector(values) -> np.ndarray:
    """Return a contiguous float32 1-D copy of ``values``."""
    return np.array(values, dtype=np.float32).reshape(-1)


def _operands(a: Operand, b: Operand):
    if np.isscalar(a) and np.isscalar(b):
        return np.float32(a), np.float32(b)
    if np.isscalar(a):
        return np.float32(a), as_vector(b)
    if np.isscalar(b):
        return as_vector(a), np.float32(b)
    a, b = as_vector(a), as_vector(b)
    if a.size != b.size:
        raise ShapeMismatchError(f"Vector lengths differ: {a.size} != {b.size}")
    return a, b


def negate(a: Operand) -> np.ndarray:
    return -as_vector(a)


def add(a: Operand, b: Operand) -> np.ndarray:
    a, b = _operands(a, b)
    return np.asarray(a + b, dtype=np.float32)


def subtract(a: Operand, b: Operand) -> np.ndarray:
    a, b = _operands(a, b)
    return np.asarray(a - b, dtype=np.float32)


def multiply(a: Operand, b: Operand) -> np.ndarray:
    a, b = _operands(a, b)
    return np.asarray(a * b, dtype=np.float32)


def divide(a: Operand, b: Operand) -> np.ndarray:
    a, b = _operands(a, b)
    return np.asarray(a / b, dtype=np.float32)


def dot(a: Operand, b: Operand) -> float:
    a, b = _operands(as_vector(a), as_vector(b))
    return float(np.dot(a, b))


def sqrt(a: Operand) -> np.ndarray:
    return np.sqrt(as_vector(a))


def exp(a: Operand) -> np.ndarray:
    return np.exp(as_vector(a))


def log(a: Operand) -> np.ndarray:
    return np.log(as_vector(a))


def tanh(a: Operand) -> np.ndarray:
    return np.tanh(as_vector(a))


def power(base: Operand, exponent: Operand) -> np.ndarray:
    base, exponent = _operands(base, exponent)
    return np.asarray(np.power(base, exponent), dtype=np.float32)


def copysign(magnitudes: Operand, signs: Operand) -> np.ndarray:
    magnitudes, signs = _operands(magnitudes, signs)
    return np.asarray(np.copysign(magnitudes, signs), dtype=np.float32)


# Reductions

def reduce_sum(a: Operand) -> float:
    return float(np.sum(as_vector(a)))


def reduce_min(a: Operand) -> float:
    return float(np.min(as_vector(a)))


def reduce_max(a: Operand) -> float:
    return float(np.max(as_vector(a)))


def argmin(a: Operand) -> Tuple[float, int]:
    """Return ``(value, index)`` of the first minimum."""
    a = as_vector(a)
    index = int(np.argmin(a))
    return float(a[index]), index


def argmax(a: Operand) -> Tuple[float, int]:
    """Return ``(value, index)`` of the first maximum."""
    a = as_vector(a)
    index = int(np.argmax(a))
    return float(a[index]), index


# Activation functions and their derivatives. Derivatives take the output of
# the corresponding function, not its input.

def identity(a: Operand) -> np.ndarray:
    return as_vector(a)


def ones(a: Operand) -> np.ndarray:
    return np.ones_like(as_vector(a))


def zeros(a: Operand) -> np.ndarray:
    return np.zeros_like(as_vector(a))


def sigmoid(a: Operand) -> np.ndarray:
    a = as_vector(a)
    return (1.0 / (1.0 + np.exp(-a))).astype(np.float32)


def sigmoid_deriv(y: Operand) -> np.ndarray:
    y = as_vector(y)
    return y * (1.0 - y)


def tanh_deriv(y: Operand) -> np.ndarray:
    y = as_vector(y)
    return 1.0 - y * y


def relu(a: Operand) -> np.ndarray:
    return np.maximum(as_vector(a), np.float32(0.0))


def relu_deriv(y: Operand) -> np.ndarray:
    # 0 and negative values map to 0, positive values to 1
    return np.ceil(np.clip(as_vector(y), 0.0, 1.0))


def softmax(a: Operand) -> np.ndarray:
    a = as_vector(a)
    e = np.exp(a - np.max(a))
    return (e / np.sum(e)).astype(np.float32)


def softmax_deriv(y: Operand) -> np.ndarray:
    raise UnsupportedConfigurationError(
        "The softmax derivative is only available combined with the cross-entropy loss"
    )
