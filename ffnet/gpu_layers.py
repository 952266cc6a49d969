"""Layer definitions for the GPU backend.

Each GPU layer wraps the host layer that describes it: the host layer fixes
the shapes, validates the configuration and holds the initial parameters.
:meth:`GPULayer.initialize` uploads parameters and optimizer velocities and
allocates the output and gradient buffers; :meth:`GPULayer.to_host` reads the
current parameters back once no batch is in flight.
"""
from __future__ import annotations
import numpy as np
from typing import Dict, Optional, Sequence, Tuple

from .activations import Activation
from .cuda import CommandBatch, ComputePipeline, DeviceContext, DeviceVolume
from .errors import DeviceError, ShapeMismatchError, UnsupportedConfigurationError
from .layers import (ConvolutionLayer, FullyConnectedLayer, Layer, NonlinearityLayer, OutputLayer,
                     PoolingLayer, ReshapingLayer)
from .optim import OptimizerState, TrainingParameters, effective_learning_rate
from .tensor import Matrix, Shape, Volume


class GPULayer:
    """Abstract GPU layer base class."""
    kernel_names: Tuple[str, ...] = ()

    def __init__(self, host: Layer):
        self.host = host
        self.input_shape = host.input_shape
        self.output_shape = host.output_shape
        self.context: Optional[DeviceContext] = None
        self.pipelines: Dict[str, ComputePipeline] = {}
        self.buffers: Dict[str, object] = {}
        self.states: Dict[str, OptimizerState] = {}

    @classmethod
    def from_host(cls, layer: Layer) -> GPULayer:
        raise NotImplementedError

    def _adopt_states(self, layer: Layer) -> GPULayer:
        self.host.states = {name: OptimizerState(state.velocity.copy(), state.steps)
                            for name, state in layer.states.items()}
        return self

    @property
    def initialized(self) -> bool:
        return self.context is not None

    @property
    def parameter_count(self) -> int:
        return self.host.parameter_count

    def initialize(self, context: DeviceContext) -> GPULayer:
        """Upload parameters and velocities to ``context`` and allocate buffers.

        A layer that was already initialized first reads its device state
        back, so training done on the previous context carries over.
        """
        if self.initialized:
            self.to_host()
        self.context = context
        self.pipelines = {name: context.make_pipeline(name) for name in self.kernel_names}
        for name, value in self.host.params.items():
            state = self.host.states[name]
            self.buffers[name] = context.to_device(value)
            self.states[name] = OptimizerState(context.to_device(state.velocity), state.steps)
        self._allocate(context)
        return self

    def _allocate(self, context: DeviceContext):
        self.output = context.zeros(self.output_shape)
        self.gradient = context.zeros(self.input_shape)

    def _check(self, x: DeviceVolume, expected: Shape):
        if not self.initialized:
            raise DeviceError(f"{self.__class__.__name__} used before initialize()")
        if x.shape != expected:
            raise ShapeMismatchError(f"{self.__class__.__name__} expects {expected}, got {x.shape}")

    def forward(self, x: DeviceVolume, batch: CommandBatch) -> DeviceVolume:
        raise NotImplementedError

    def backward(self, gradient: DeviceVolume, inputs: DeviceVolume, batch: CommandBatch,
                 params: TrainingParameters) -> DeviceVolume:
        raise NotImplementedError

    def to_host(self) -> Layer:
        """Copy device parameters and optimizer state into the wrapped host layer and return it."""
        if self.initialized:
            if self.context.active_batch is not None:
                raise DeviceError("Cannot read layer parameters while a command batch is in flight")
            for name, buffer in self.buffers.items():
                param = self.host.params[name]
                param[...] = buffer.copy_to_host().reshape(param.shape)
                state = self.states[name]
                host_state = self.host.states[name]
                host_state.velocity[...] = state.velocity.copy_to_host().reshape(param.shape)
                host_state.steps = state.steps
        return self.host

    def _lr(self, name: str, params: TrainingParameters) -> float:
        return effective_learning_rate(self.states[name], params)

    def _step(self, *names: str):
        for name in names:
            self.states[name].steps += 1

    def __repr__(self):
        return f"{self.__class__.__name__}({self.input_shape} -> {self.output_shape})"


class GPUFullyConnectedLayer(GPULayer):
    kernel_names = ('fully_connected_forward', 'fully_connected_backpropagate')

    def __init__(self, weights: Matrix):
        super().__init__(FullyConnectedLayer(weights))

    @classmethod
    def from_host(cls, layer):
        return cls(layer.weights)._adopt_states(layer)

    @classmethod
    def random(cls, input_depth: int, output_depth: int, rng: Optional[np.random.Generator] = None):
        return cls.from_host(FullyConnectedLayer.random(input_depth, output_depth, rng))

    @property
    def weights(self) -> Matrix:
        return self.to_host().weights

    def forward(self, x, batch):
        self._check(x, self.input_shape)
        inputs, outputs = self.input_shape.depth, self.output_shape.depth
        self.pipelines['fully_connected_forward'].dispatch(
            batch, (outputs, 1, 1), x.array, self.output.array, self.buffers['W'], inputs, outputs)
        return self.output

    def backward(self, gradient, inputs, batch, params):
        self._check(gradient, self.output_shape)
        self._check(inputs, self.input_shape)
        n_in, n_out = self.input_shape.depth, self.output_shape.depth
        self.pipelines['fully_connected_backpropagate'].dispatch(
            batch, (n_in + 1, 1, 1), inputs.array, gradient.array, self.gradient.array,
            self.buffers['W'], self.states['W'].velocity,
            self._lr('W', params), params.momentum, params.decay, n_in, n_out)
        self._step('W')
        return self.gradient


class GPUConvolutionLayer(GPULayer):
    kernel_names = ('convolution_forward', 'convolution_backpropagate', 'convolution_adjust_weights')

    def __init__(self, input_shape: Shape, kernels: Sequence[Volume], bias, inset: Tuple[int, int] = (0, 0),
                 stride: Tuple[int, int] = (1, 1)):
        super().__init__(ConvolutionLayer(input_shape, kernels, bias, inset=inset, stride=stride))

    @classmethod
    def from_host(cls, layer):
        return cls(layer.input_shape, layer.kernels, layer.bias, inset=layer.inset)._adopt_states(layer)

    @classmethod
    def random(cls, input_shape: Shape, output_depth: int, kernel_size: Tuple[int, int],
               inset: Tuple[int, int] = (0, 0), rng: Optional[np.random.Generator] = None):
        return cls.from_host(ConvolutionLayer.random(input_shape, output_depth, kernel_size, inset, rng))

    def _geometry(self):
        i, o = self.input_shape, self.output_shape
        kw, kh = self.host.kernel_size
        ix, iy = self.host.inset
        return (i.width, i.height, i.depth, o.width, o.height, o.depth, kw, kh, ix, iy)

    def forward(self, x, batch):
        self._check(x, self.input_shape)
        self.pipelines['convolution_forward'].dispatch(
            batch, self.output_shape, x.array, self.output.array,
            self.buffers['kernels'], self.buffers['bias'], *self._geometry())
        return self.output

    def backward(self, gradient, inputs, batch, params):
        self._check(gradient, self.output_shape)
        self._check(inputs, self.input_shape)
        geometry = self._geometry()
        self.pipelines['convolution_backpropagate'].dispatch(
            batch, self.input_shape, gradient.array, self.gradient.array, self.buffers['kernels'], *geometry)
        kw, kh = self.host.kernel_size
        self.pipelines['convolution_adjust_weights'].dispatch(
            batch, (kw, kh, self.input_shape.depth * self.output_shape.depth),
            inputs.array, gradient.array, self.buffers['kernels'], self.buffers['bias'],
            self.states['kernels'].velocity, self.states['bias'].velocity,
            self._lr('kernels', params), params.momentum, params.decay, *geometry)
        self._step('kernels', 'bias')
        return self.gradient


class GPUPoolingLayer(GPULayer):
    kernel_names = ('pooling_forward', 'pooling_backpropagate')

    def __init__(self, input_shape: Shape, output_shape: Shape):
        super().__init__(PoolingLayer(input_shape, output_shape))

    @classmethod
    def from_host(cls, layer):
        return cls(layer.input_shape, layer.output_shape)

    def _geometry(self):
        i, o = self.input_shape, self.output_shape
        return (i.width, i.height, o.width, o.height, o.depth)

    def forward(self, x, batch):
        self._check(x, self.input_shape)
        self.pipelines['pooling_forward'].dispatch(
            batch, self.output_shape, x.array, self.output.array, *self._geometry())
        return self.output

    def backward(self, gradient, inputs, batch, params):
        self._check(gradient, self.output_shape)
        self._check(inputs, self.input_shape)
        self.pipelines['pooling_backpropagate'].dispatch(
            batch, self.output_shape, inputs.array, gradient.array, self.gradient.array, *self._geometry())
        return self.gradient


class GPUReshapingLayer(GPULayer):
    """Reinterprets the incoming buffer; no kernels, no copies."""

    def __init__(self, input_shape: Shape, output_shape: Shape):
        super().__init__(ReshapingLayer(input_shape, output_shape))

    @classmethod
    def from_host(cls, layer):
        return cls(layer.input_shape, layer.output_shape)

    def _allocate(self, context):
        pass

    def forward(self, x, batch):
        self._check(x, self.input_shape)
        return x.reshaped(self.output_shape)

    def backward(self, gradient, inputs, batch, params):
        self._check(gradient, self.output_shape)
        return gradient.reshaped(self.input_shape)


class GPUNonlinearityLayer(GPULayer):
    def __init__(self, input_shape: Shape, activation=Activation.RELU):
        super().__init__(NonlinearityLayer(input_shape, activation))
        self.activation = self.host.activation
        if self.activation is not Activation.LINEAR:
            name = self.activation.value
            self.kernel_names = (f'nonlinearity_forward_{name}', f'nonlinearity_backpropagate_{name}')

    @classmethod
    def from_host(cls, layer):
        return cls(layer.input_shape, layer.activation)

    def forward(self, x, batch):
        self._check(x, self.input_shape)
        if self.activation is Activation.LINEAR:
            return x
        self.pipelines[self.kernel_names[0]].dispatch(
            batch, (self.input_shape.volume, 1, 1), x.array, self.output.array, self.input_shape.volume)
        return self.output

    def backward(self, gradient, inputs, batch, params):
        self._check(gradient, self.output_shape)
        if self.activation is Activation.LINEAR:
            return gradient
        # self.output holds f(inputs) from the forward pass of this step
        self.pipelines[self.kernel_names[1]].dispatch(
            batch, (self.input_shape.volume, 1, 1), self.output.array, gradient.array, self.gradient.array,
            self.input_shape.volume)
        return self.gradient


class GPUOutputLayer:
    """Output activation and error signal on the device; the scalar loss is
    evaluated on the host from the read-back output."""

    def __init__(self, input_shape: Shape, activation=Activation.LINEAR, loss: Optional[str] = None):
        self.host = OutputLayer(input_shape, activation, loss)
        self.input_shape = self.output_shape = self.host.input_shape
        self.activation = self.host.activation
        self.context: Optional[DeviceContext] = None
        names = ['loss_delta']
        if self.activation is Activation.SOFTMAX:
            names += ['softmax_forward_exp', 'softmax_forward']
        elif self.activation is not Activation.LINEAR:
            names += [f'nonlinearity_forward_{self.activation.value}',
                      f'nonlinearity_backpropagate_{self.activation.value}']
        self.kernel_names = tuple(names)

    def initialize(self, context: DeviceContext) -> GPUOutputLayer:
        self.context = context
        self.pipelines = {name: context.make_pipeline(name) for name in self.kernel_names}
        self.output = context.zeros(self.output_shape)
        self.exponentials = context.zeros(self.output_shape)
        self.delta = context.zeros(self.output_shape)
        self.error = context.zeros(self.output_shape)
        return self

    def forward(self, x: DeviceVolume, batch: CommandBatch) -> DeviceVolume:
        if x.shape != self.input_shape:
            raise ShapeMismatchError(f"GPUOutputLayer expects {self.input_shape}, got {x.shape}")
        count = self.input_shape.volume
        if self.activation is Activation.LINEAR:
            return x
        if self.activation is Activation.SOFTMAX:
            self.pipelines['softmax_forward_exp'].dispatch(batch, (count, 1, 1), x.array, self.exponentials.array, count)
            self.pipelines['softmax_forward'].dispatch(batch, (count, 1, 1), self.exponentials.array,
                                                       self.output.array, count)
            return self.output
        self.pipelines[self.kernel_names[1]].dispatch(batch, (count, 1, 1), x.array, self.output.array, count)
        return self.output

    def loss(self, expected: DeviceVolume, actual: DeviceVolume, batch: CommandBatch) -> DeviceVolume:
        """Error signal at the network output."""
        if expected.shape != actual.shape:
            raise ShapeMismatchError(f"Expected output {expected.shape} != actual output {actual.shape}")
        count = self.input_shape.volume
        self.pipelines['loss_delta'].dispatch(batch, (count, 1, 1), expected.array, actual.array,
                                              self.delta.array, count)
        if self.activation in (Activation.LINEAR, Activation.SOFTMAX):
            return self.delta
        self.pipelines[self.kernel_names[2]].dispatch(batch, (count, 1, 1), actual.array, self.delta.array,
                                                      self.error.array, count)
        return self.error

    def total_loss(self, expected: Volume, actual: Volume) -> float:
        return self.host.total_loss(expected, actual)


GPU_LAYER_TYPES = {
    FullyConnectedLayer: GPUFullyConnectedLayer,
    ConvolutionLayer: GPUConvolutionLayer,
    PoolingLayer: GPUPoolingLayer,
    ReshapingLayer: GPUReshapingLayer,
    NonlinearityLayer: GPUNonlinearityLayer,
}


def gpu_layer_for(layer: Layer) -> GPULayer:
    """GPU mirror of a host layer with the same parameters and optimizer state."""
    try:
        gpu_type = GPU_LAYER_TYPES[type(layer)]
    except KeyError:
        raise UnsupportedConfigurationError(f"No GPU implementation for {layer.__class__.__name__}") from None
    return gpu_type.from_host(layer)
