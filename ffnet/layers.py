"""Layer definitions for the host backend.
Vectorized NumPy implementations of the feed-forward layer types.

Every layer has a fixed ``input_shape`` and ``output_shape``. ``forward`` maps
an input volume to an output volume. ``backward`` receives the error signal at
the layer output together with the input the layer saw during the forward
pass, updates the layer's parameters and returns the error signal at its input.
"""
from __future__ import annotations
import numpy as np
from typing import Dict, Optional, Sequence, Tuple

from . import vector
from .activations import Activation
from .errors import ShapeMismatchError, UnsupportedConfigurationError
from .losses import loss_for
from .optim import OptimizerState, TrainingParameters, apply_update
from .tensor import Matrix, Shape, Volume
from .utils import random_weight_matrix, random_weight_volume


class Layer:
    """Abstract layer base class."""
    def __init__(self, input_shape: Shape, output_shape: Shape):
        self.input_shape = Shape(*input_shape)
        self.output_shape = Shape(*output_shape)
        self.params: Dict[str, np.ndarray] = {}
        self.states: Dict[str, OptimizerState] = {}

    def _add_param(self, name: str, value: np.ndarray):
        self.params[name] = np.ascontiguousarray(value, dtype=np.float32)
        self.states[name] = OptimizerState.like(self.params[name])

    def _check_input(self, x: Volume, expected: Optional[Shape] = None):
        expected = expected or self.input_shape
        if x.shape != expected:
            raise ShapeMismatchError(f"{self.__class__.__name__} expects {expected}, got {x.shape}")

    @property
    def parameter_count(self) -> int:
        return sum(p.size for p in self.params.values())

    def forward(self, x: Volume) -> Volume:
        raise NotImplementedError

    def backward(self, gradient: Volume, inputs: Volume, params: TrainingParameters) -> Volume:
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}({self.input_shape} -> {self.output_shape})"


class FullyConnectedLayer(Layer):
    """Dense layer. The weight matrix is ``input_depth + 1`` wide and
    ``output_depth`` high; its last column holds the bias."""
    def __init__(self, weights: Matrix):
        if weights.width < 2 or weights.height < 1:
            raise ShapeMismatchError(f"Weight matrix {weights.width}x{weights.height} has no inputs or outputs")
        super().__init__(Shape(1, 1, weights.width - 1), Shape(1, 1, weights.height))
        self._add_param('W', weights.to_array())

    @classmethod
    def random(cls, input_depth: int, output_depth: int, rng: Optional[np.random.Generator] = None) -> FullyConnectedLayer:
        return cls(random_weight_matrix(input_depth + 1, output_depth, rng))

    @property
    def weights(self) -> Matrix:
        return Matrix.from_array(self.params['W'])

    def forward(self, x):
        self._check_input(x)
        W = self.params['W']
        return Volume.from_vector(W[:, :-1] @ x.values + W[:, -1])

    def backward(self, gradient, inputs, params):
        self._check_input(gradient, self.output_shape)
        self._check_input(inputs)
        W = self.params['W']
        g = gradient.values
        # propagate with the weights used in the forward pass
        grad_in = W[:, :-1].T @ g
        x = np.append(inputs.values, np.float32(1.0))
        apply_update(W, np.outer(g, x), self.states['W'], params)
        return Volume.from_vector(grad_in)


class ConvolutionLayer(Layer):
    """Applies one depth-spanning kernel per output slice, plus a bias per kernel."""
    def __init__(self, input_shape: Shape, kernels: Sequence[Volume], bias, inset: Tuple[int, int] = (0, 0),
                 stride: Tuple[int, int] = (1, 1)):
        if tuple(stride) != (1, 1):
            raise UnsupportedConfigurationError(f"Convolution strides other than 1 are not supported, got {stride}")
        if not kernels:
            raise ShapeMismatchError("A convolution layer needs at least one kernel")
        input_shape = Shape(*input_shape)
        first = kernels[0]
        for k in kernels:
            if k.shape != first.shape:
                raise ShapeMismatchError(f"Kernel shapes differ: {k.shape} != {first.shape}")
        if first.depth != input_shape.depth:
            raise ShapeMismatchError(f"Kernel depth {first.depth} != input depth {input_shape.depth}")
        bias = vector.as_vector(bias)
        if bias.size != len(kernels):
            raise ShapeMismatchError(f"Expected {len(kernels)} bias values, got {bias.size}")
        self.inset = (int(inset[0]), int(inset[1]))
        self.stride = (1, 1)
        self.kernel_size = (first.width, first.height)
        out_w = input_shape.width - first.width + 1 - 2 * self.inset[0]
        out_h = input_shape.height - first.height + 1 - 2 * self.inset[1]
        if out_w <= 0 or out_h <= 0:
            raise ShapeMismatchError(f"Kernel {first.width}x{first.height} does not fit input {input_shape}")
        super().__init__(input_shape, Shape(out_w, out_h, len(kernels)))
        self._add_param('kernels', np.stack([k.to_array() for k in kernels]))
        self._add_param('bias', bias)

    @classmethod
    def random(cls, input_shape: Shape, output_depth: int, kernel_size: Tuple[int, int],
               inset: Tuple[int, int] = (0, 0), rng: Optional[np.random.Generator] = None) -> ConvolutionLayer:
        rng = rng or np.random.default_rng()
        input_shape = Shape(*input_shape)
        kernels = [random_weight_volume(kernel_size[0], kernel_size[1], input_shape.depth, rng)
                   for _ in range(output_depth)]
        bias = random_weight_matrix(output_depth, 1, rng).values
        return cls(input_shape, kernels, bias, inset=inset)

    @property
    def kernels(self):
        return [Volume.from_array(k) for k in self.params['kernels']]

    @property
    def bias(self) -> np.ndarray:
        return self.params['bias'].copy()

    def forward(self, x):
        self._check_input(x)
        slices = []
        for kernel, b in zip(self.kernels, self.params['bias']):
            conv = x.convolved(kernel, inset=self.inset)
            slices.append(Matrix(conv.values + b, conv.width, conv.height))
        return Volume.stack(slices)

    def backward(self, gradient, inputs, params):
        self._check_input(gradient, self.output_shape)
        self._check_input(inputs)
        kw, kh = self.kernel_size
        depth = self.input_shape.depth
        full_inset = (-(self.inset[0] + kw - 1), -(self.inset[1] + kh - 1))
        signals = gradient.slices()
        flipped = [k.reversed() for k in self.kernels]

        grad_in = []
        for d in range(depth):
            acc = Matrix.zeros(self.input_shape.width, self.input_shape.height)
            for g, kernel in zip(signals, flipped):
                acc.add_(g.convolved(kernel.slice(depth - 1 - d), inset=full_inset))
            grad_in.append(acc)

        input_slices = inputs.slices()
        kernel_step = np.stack([
            np.stack([s.convolved(g, inset=self.inset).to_array() for s in input_slices])
            for g in signals
        ])
        bias_step = gradient.to_array().sum(axis=(1, 2))
        apply_update(self.params['kernels'], kernel_step, self.states['kernels'], params)
        apply_update(self.params['bias'], bias_step, self.states['bias'], params)
        return Volume.stack(grad_in)


class PoolingLayer(Layer):
    """Max pooling; the window size is the ratio of input to output size."""
    def __init__(self, input_shape: Shape, output_shape: Shape):
        input_shape, output_shape = Shape(*input_shape), Shape(*output_shape)
        if input_shape.depth != output_shape.depth:
            raise ShapeMismatchError(f"Pooling keeps depth: {input_shape.depth} != {output_shape.depth}")
        if (min(output_shape) <= 0 or input_shape.width % output_shape.width
                or input_shape.height % output_shape.height):
            raise ShapeMismatchError(f"Cannot pool {input_shape} into {output_shape}")
        super().__init__(input_shape, output_shape)
        self.pool_size = (input_shape.width // output_shape.width, input_shape.height // output_shape.height)

    def _windows(self, x: Volume) -> np.ndarray:
        sx, sy = self.pool_size
        d, oh, ow = self.output_shape.depth, self.output_shape.height, self.output_shape.width
        return x.to_array().reshape(d, oh, sy, ow, sx).transpose(0, 1, 3, 2, 4).reshape(d, oh, ow, sy * sx)

    def forward(self, x):
        self._check_input(x)
        return Volume.from_array(self._windows(x).max(axis=-1))

    def backward(self, gradient, inputs, params):
        self._check_input(gradient, self.output_shape)
        self._check_input(inputs)
        windows = self._windows(inputs)
        # argmax picks the first maximum in row-major window order
        winner = windows.argmax(axis=-1)[..., None]
        routed = np.zeros_like(windows)
        np.put_along_axis(routed, winner, gradient.to_array()[..., None], axis=-1)
        sx, sy = self.pool_size
        d, oh, ow = routed.shape[:3]
        return Volume.from_array(routed.reshape(d, oh, ow, sy, sx).transpose(0, 1, 3, 2, 4).reshape(d, oh * sy, ow * sx))


class ReshapingLayer(Layer):
    def __init__(self, input_shape: Shape, output_shape: Shape):
        input_shape, output_shape = Shape(*input_shape), Shape(*output_shape)
        if input_shape.volume != output_shape.volume:
            raise ShapeMismatchError(f"Cannot reshape {input_shape} to {output_shape}")
        super().__init__(input_shape, output_shape)

    def forward(self, x):
        self._check_input(x)
        return x.reshaped(*self.output_shape)

    def backward(self, gradient, inputs, params):
        self._check_input(gradient, self.output_shape)
        return gradient.reshaped(*self.input_shape)


class NonlinearityLayer(Layer):
    def __init__(self, input_shape: Shape, activation=Activation.RELU):
        activation = Activation.parse(activation)
        if activation is Activation.SOFTMAX:
            raise UnsupportedConfigurationError("Softmax is only available as the output activation of a network")
        super().__init__(input_shape, input_shape)
        self.activation = activation

    def forward(self, x):
        self._check_input(x)
        if self.activation is Activation.LINEAR:
            return x
        return x.mapv(self.activation.function)

    def backward(self, gradient, inputs, params):
        self._check_input(gradient, self.output_shape)
        if self.activation is Activation.LINEAR:
            return gradient
        outputs = self.activation.function(inputs.values)
        return gradient.mapv(lambda g: g * self.activation.derivative(outputs))

    def __repr__(self):
        return f"NonlinearityLayer({self.input_shape}, {self.activation.value})"


class OutputLayer:
    """Terminal activation of a network together with its loss policy."""
    def __init__(self, input_shape: Shape, activation=Activation.LINEAR, loss: Optional[str] = None):
        self.input_shape = Shape(*input_shape)
        self.output_shape = self.input_shape
        self.activation = Activation.parse(activation)
        self.loss_name = loss
        self.loss_function = loss_for(self.activation, loss)

    def forward(self, x: Volume) -> Volume:
        if x.shape != self.input_shape:
            raise ShapeMismatchError(f"OutputLayer expects {self.input_shape}, got {x.shape}")
        if self.activation is Activation.LINEAR:
            return x
        return x.mapv(self.activation.function)

    def loss(self, expected: Volume, actual: Volume) -> Volume:
        """Error signal at the network output."""
        if expected.shape != actual.shape:
            raise ShapeMismatchError(f"Expected output {expected.shape} != actual output {actual.shape}")
        return Volume.with_shape(self.loss_function.error_signal(expected.values, actual.values), actual.shape)

    def total_loss(self, expected: Volume, actual: Volume) -> float:
        return self.loss_function.value(expected.values, actual.values)
