"""Activation functions shared by nonlinearity and output layers."""
from __future__ import annotations
from enum import Enum
import numpy as np

from . import vector
from .errors import ConfigurationError


class Activation(Enum):
    LINEAR = 'linear'
    RELU = 'relu'
    SIGMOID = 'sigmoid'
    TANH = 'tanh'
    SOFTMAX = 'softmax'

    @classmethod
    def parse(cls, value) -> Activation:
        if isinstance(value, Activation):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown activation {value!r}, expected one of {[a.value for a in cls]}") from None

    def function(self, values) -> np.ndarray:
        return _FUNCTIONS[self](values)

    def derivative(self, outputs) -> np.ndarray:
        """Derivative evaluated on the activation's output values."""
        return _DERIVATIVES[self](outputs)


_FUNCTIONS = {
    Activation.LINEAR: vector.identity,
    Activation.RELU: vector.relu,
    Activation.SIGMOID: vector.sigmoid,
    Activation.TANH: vector.tanh,
    Activation.SOFTMAX: vector.softmax,
}

_DERIVATIVES = {
    Activation.LINEAR: vector.ones,
    Activation.RELU: vector.relu_deriv,
    Activation.SIGMOID: vector.sigmoid_deriv,
    Activation.TANH: vector.tanh_deriv,
    Activation.SOFTMAX: vector.softmax_deriv,
}
