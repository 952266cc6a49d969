"""Loss policies selected by the output activation."""
from __future__ import annotations
import numpy as np
from typing import Optional

from . import vector
from .activations import Activation
from .errors import ConfigurationError, UnsupportedConfigurationError

_TINY = np.finfo(np.float32).tiny


class Loss:
    def value(self, expected, actual) -> float:
        raise NotImplementedError

    def error_signal(self, expected, actual) -> np.ndarray:
        """Descent direction at the network output (``expected - actual`` based)."""
        raise NotImplementedError


class CategoricalCrossentropy(Loss):
    """Cross-entropy on top of a softmax output. The softmax Jacobian cancels,
    leaving ``expected - actual`` as the error signal."""

    def value(self, expected, actual):
        # probabilities that underflowed to 0 are read as the smallest normal float32
        return -vector.dot(vector.log(np.maximum(vector.as_vector(actual), _TINY)), expected)

    def error_signal(self, expected, actual):
        return vector.subtract(expected, actual)


class HalfSquaredError(Loss):
    def __init__(self, activation: Activation = Activation.LINEAR):
        self.activation = Activation.parse(activation)

    def value(self, expected, actual):
        delta = vector.subtract(actual, expected)
        return 0.5 * vector.dot(delta, delta)

    def error_signal(self, expected, actual):
        return vector.multiply(vector.subtract(expected, actual), self.activation.derivative(actual))


NAME2LOSS = {
    'categorical_crossentropy': CategoricalCrossentropy,
    'cce': CategoricalCrossentropy,
    'half_squared_error': HalfSquaredError,
    'mse': HalfSquaredError,
}


def loss_for(activation, name: Optional[str] = None) -> Loss:
    """Loss policy of an output activation.

    Cross-entropy pairs with a softmax output, half squared error with every
    other activation. ``name`` (a key of :data:`NAME2LOSS`) selects the policy
    explicitly and must agree with that pairing.
    """
    activation = Activation.parse(activation)
    default = CategoricalCrossentropy if activation is Activation.SOFTMAX else HalfSquaredError
    if name is not None:
        try:
            loss_type = NAME2LOSS[name.lower()]
        except KeyError:
            raise ConfigurationError(f"Unknown loss {name!r}, expected one of {sorted(NAME2LOSS)}") from None
        if loss_type is not default:
            raise UnsupportedConfigurationError(
                f"Loss {name!r} cannot be used with a {activation.value} output"
            )
    if default is CategoricalCrossentropy:
        return CategoricalCrossentropy()
    return HalfSquaredError(activation)
