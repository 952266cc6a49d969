"""Exception types raised by ffnet."""
from __future__ import annotations


class FFNetError(Exception):
    """Base class for all ffnet errors."""


class ShapeMismatchError(FFNetError, ValueError):
    """Raised when operand, layer or sample shapes do not line up."""


class UnsupportedConfigurationError(FFNetError, NotImplementedError):
    """Raised for configurations that have no implementation (e.g. non-unit
    convolution strides or the isolated softmax derivative)."""


class DeviceError(FFNetError, RuntimeError):
    """Raised when the GPU backend cannot be used as requested."""


class ConfigurationError(FFNetError, ValueError):
    """Raised for invalid hyperparameters, activation names or loss names."""
