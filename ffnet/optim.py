"""Gradient descent update rule with momentum, weight decay and annealing."""
from __future__ import annotations
from dataclasses import dataclass
import numpy as np
from typing import Any

from .errors import ConfigurationError


@dataclass(frozen=True)
class TrainingParameters:
    learning_rate: float
    annealing_rate: float = 0.0
    momentum: float = 0.0
    decay: float = 0.0

    def __post_init__(self):
        if self.learning_rate < 0:
            raise ConfigurationError(f"learning_rate must be non-negative, got {self.learning_rate}")
        if self.annealing_rate < 0:
            raise ConfigurationError(f"annealing_rate must be non-negative, got {self.annealing_rate}")
        if not 0 <= self.momentum < 1:
            raise ConfigurationError(f"momentum must be in [0, 1), got {self.momentum}")
        if not 0 <= self.decay < 1:
            raise ConfigurationError(f"decay must be in [0, 1), got {self.decay}")


@dataclass
class OptimizerState:
    """Per parameter tensor optimizer state.

    ``velocity`` holds the last update (a numpy array on the host backend,
    a device array on the GPU backend); ``steps`` counts applied updates and
    drives learning-rate annealing.
    """
    velocity: Any
    steps: int = 0

    @classmethod
    def like(cls, weights: np.ndarray) -> OptimizerState:
        return cls(np.zeros_like(weights, dtype=np.float32))


def effective_learning_rate(state: OptimizerState, params: TrainingParameters) -> float:
    return params.learning_rate / (1.0 + params.annealing_rate * state.steps)


def apply_update(weights: np.ndarray, step: np.ndarray, state: OptimizerState, params: TrainingParameters):
    """Update ``weights`` in place along the descent direction ``step``.

    velocity = momentum * velocity + lr * step
    weights  = weights * (1 - decay) + velocity
    """
    lr = effective_learning_rate(state, params)
    state.velocity *= np.float32(params.momentum)
    state.velocity += np.float32(lr) * step
    if params.decay:
        weights *= np.float32(1.0 - params.decay)
    weights += state.velocity
    state.steps += 1
