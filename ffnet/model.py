"""Network classes implementing inference and training."""
from __future__ import annotations
from enum import Enum
import numpy as np
from typing import Dict, List, Optional, Sequence

from tqdm import tqdm

from . import vector
from .activations import Activation
from .data import TrainingSample
from .cuda import CommandBatch, DeviceContext
from .errors import ShapeMismatchError
from .gpu_layers import GPULayer, GPUOutputLayer, gpu_layer_for
from .layers import Layer, OutputLayer
from .optim import TrainingParameters
from .tensor import Volume


class NetworkPhase(Enum):
    IDLE = 'idle'
    FORWARDING = 'forwarding'
    LOSS_COMPUTED = 'loss_computed'
    BACKPROPAGATING = 'backpropagating'


def check_chain(layers: Sequence) -> None:
    """Raise :class:`ShapeMismatchError` unless adjacent layer shapes line up."""
    if not layers:
        raise ShapeMismatchError("A network needs at least one layer")
    for idx, (earlier, later) in enumerate(zip(layers[:-1], layers[1:])):
        if earlier.output_shape != later.input_shape:
            raise ShapeMismatchError(
                f"Layer {idx} ({earlier.__class__.__name__}) outputs {earlier.output_shape} "
                f"but layer {idx + 1} ({later.__class__.__name__}) expects {later.input_shape}"
            )


class TrainingLoop:
    """Epoch loop shared by both network backends (expects ``train`` and ``evaluate``)."""

    def fit(self, samples: Sequence[TrainingSample], epochs: int = 1, learning_rate: float = 0.01,
            annealing_rate: float = 0.0, momentum: float = 0.0, decay: float = 0.0, lr_decay: float = 1.0,
            shuffle: bool = True, val_data: Optional[Sequence[TrainingSample]] = None,
            rng: Optional[np.random.Generator] = None, verbose: bool = True) -> Dict[str, list]:
        """Train on every sample once per epoch.

        Args:
            samples: Training samples.
            epochs: Number of passes over ``samples``.
            learning_rate: Initial learning rate.
            annealing_rate: Per-update learning rate annealing, see :func:`ffnet.optim.effective_learning_rate`.
            momentum: Momentum of weight updates.
            decay: Weight decay applied on every update.
            lr_decay: Factor the learning rate is multiplied with after every epoch.
            shuffle: Visit samples in a random order.
            val_data: Optional samples whose arg-max accuracy is reported per epoch.
            rng: Random generator used for shuffling.
            verbose: Show progress bars and per-epoch results.

        Returns:
            History dict with per-epoch ``loss``, ``val_acc`` and ``lr``.
        """
        rng = rng or np.random.default_rng()
        history: Dict[str, list] = {'loss': [], 'val_acc': [], 'lr': []}
        lr = learning_rate
        for epoch in range(epochs):
            order = rng.permutation(len(samples)) if shuffle else np.arange(len(samples))
            pbar = tqdm(order, desc=f"Epoch {epoch+1}/{epochs}", disable=not verbose)
            losses: List[float] = []
            for i in pbar:
                losses.append(self.train(samples[i], lr, annealing_rate=annealing_rate,
                                         momentum=momentum, decay=decay))
                pbar.set_postfix(loss=np.mean(losses))
            val_acc = self.evaluate(val_data) if val_data else None
            history['loss'].append(float(np.mean(losses)) if losses else 0.0)
            history['val_acc'].append(val_acc)
            history['lr'].append(lr)
            if verbose and val_acc is not None:
                print(f"Val acc: {val_acc:.4f}")
            lr *= lr_decay
        return history

    def evaluate(self, samples: Sequence[TrainingSample]) -> float:
        """Fraction of samples whose arg-max output matches the expected arg-max."""
        if not samples:
            return 0.0
        correct = 0
        for sample in samples:
            _, predicted = vector.argmax(self.feed_forward(sample.values).values)
            correct += int(predicted == sample.target_index)
        return correct / len(samples)

    def predict(self, sample: Volume) -> Volume:
        return self.feed_forward(sample)

    def summary(self):
        print("Network summary:")
        total = 0
        for layer in self.layers:
            params = layer.parameter_count
            total += params
            print(f"{layer.__class__.__name__}: {layer.input_shape} -> {layer.output_shape}, params={params}")
        print(f"Output activation: {self.output_layer.activation.value}")
        print(f"Total params: {total}")


class FeedForwardNetwork(TrainingLoop):
    """Sequence of host layers followed by an output activation."""

    def __init__(self, layers: List[Layer], output_activation=Activation.LINEAR, loss: Optional[str] = None):
        check_chain(layers)
        self.layers: List[Layer] = list(layers)
        self.output_layer = OutputLayer(self.layers[-1].output_shape, output_activation, loss)
        self.phase = NetworkPhase.IDLE

    @property
    def input_shape(self):
        return self.layers[0].input_shape

    @property
    def output_shape(self):
        return self.layers[-1].output_shape

    def _check_sample(self, values: Volume):
        if values.shape != self.input_shape:
            raise ShapeMismatchError(f"Network expects input {self.input_shape}, got {values.shape}")

    def feed_forward(self, sample: Volume) -> Volume:
        self._check_sample(sample)
        x = sample
        for layer in self.layers:
            x = layer.forward(x)
        return self.output_layer.forward(x)

    def train(self, sample: TrainingSample, learning_rate: float, annealing_rate: float = 0.0,
              momentum: float = 0.0, decay: float = 0.0) -> float:
        """Run one gradient descent step on ``sample`` and return its loss.

        The loss is the cross-entropy for a softmax output and half the summed
        squared error otherwise.
        """
        params = TrainingParameters(learning_rate, annealing_rate, momentum, decay)
        self._check_sample(sample.values)
        if sample.expected.shape != self.output_shape:
            raise ShapeMismatchError(f"Network outputs {self.output_shape}, sample expects {sample.expected.shape}")
        try:
            self.phase = NetworkPhase.FORWARDING
            outputs = [sample.values]
            for layer in self.layers:
                outputs.append(layer.forward(outputs[-1]))
            actual = self.output_layer.forward(outputs[-1])

            self.phase = NetworkPhase.LOSS_COMPUTED
            gradient = self.output_layer.loss(sample.expected, actual)
            loss = self.output_layer.total_loss(sample.expected, actual)

            self.phase = NetworkPhase.BACKPROPAGATING
            for idx in reversed(range(len(self.layers))):
                gradient = self.layers[idx].backward(gradient, outputs[idx], params)
        finally:
            self.phase = NetworkPhase.IDLE
        return loss


class GPUFeedForwardNetwork(TrainingLoop):
    """Sequence of GPU layers sharing one device context.

    Every :meth:`feed_forward` and :meth:`train` call encodes all of its kernels
    into a single command batch and waits for it once. The device context is
    passed in explicitly; networks built on the same context share its stream.
    """

    def __init__(self, layers: List[GPULayer], context: DeviceContext, output_activation=Activation.LINEAR,
                 loss: Optional[str] = None):
        check_chain(layers)
        self.context = context
        self.layers: List[GPULayer] = list(layers)
        for layer in self.layers:
            layer.initialize(self.context)
        self.output_layer = GPUOutputLayer(self.layers[-1].output_shape, output_activation, loss).initialize(self.context)
        self.phase = NetworkPhase.IDLE
        self.last_batch: Optional[CommandBatch] = None

    @classmethod
    def from_network(cls, network: FeedForwardNetwork, context: DeviceContext) -> GPUFeedForwardNetwork:
        """GPU mirror of a host network with identical parameters."""
        output = network.output_layer
        return cls([gpu_layer_for(layer) for layer in network.layers], context, output.activation, output.loss_name)

    def to_network(self) -> FeedForwardNetwork:
        """Host network holding the current device parameters."""
        return FeedForwardNetwork([layer.to_host() for layer in self.layers], self.output_layer.activation,
                                  self.output_layer.host.loss_name)

    @property
    def input_shape(self):
        return self.layers[0].input_shape

    @property
    def output_shape(self):
        return self.layers[-1].output_shape

    def _check_sample(self, values: Volume):
        if values.shape != self.input_shape:
            raise ShapeMismatchError(f"Network expects input {self.input_shape}, got {values.shape}")

    def feed_forward(self, sample: Volume) -> Volume:
        self._check_sample(sample)
        with self.context.batch() as batch:
            x = batch.upload(sample)
            for layer in self.layers:
                x = layer.forward(x, batch)
            output = self.output_layer.forward(x, batch)
        self.last_batch = batch
        return output.to_volume()

    def train(self, sample: TrainingSample, learning_rate: float, annealing_rate: float = 0.0,
              momentum: float = 0.0, decay: float = 0.0) -> float:
        params = TrainingParameters(learning_rate, annealing_rate, momentum, decay)
        self._check_sample(sample.values)
        if sample.expected.shape != self.output_shape:
            raise ShapeMismatchError(f"Network outputs {self.output_shape}, sample expects {sample.expected.shape}")
        try:
            with self.context.batch() as batch:
                self.phase = NetworkPhase.FORWARDING
                outputs = [batch.upload(sample.values)]
                for layer in self.layers:
                    outputs.append(layer.forward(outputs[-1], batch))
                actual = self.output_layer.forward(outputs[-1], batch)

                self.phase = NetworkPhase.LOSS_COMPUTED
                gradient = self.output_layer.loss(batch.upload(sample.expected), actual, batch)

                self.phase = NetworkPhase.BACKPROPAGATING
                for idx in reversed(range(len(self.layers))):
                    gradient = self.layers[idx].backward(gradient, outputs[idx], batch, params)
            self.last_batch = batch
            return self.output_layer.total_loss(sample.expected, actual.to_volume())
        finally:
            self.phase = NetworkPhase.IDLE
