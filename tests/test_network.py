import numpy as np
import pytest

from ffnet.activations import Activation
from ffnet.data import TrainingSample
from ffnet.errors import ShapeMismatchError, UnsupportedConfigurationError
from ffnet.layers import ConvolutionLayer, FullyConnectedLayer, NonlinearityLayer, PoolingLayer, ReshapingLayer
from ffnet.model import FeedForwardNetwork, NetworkPhase
from ffnet.tensor import Matrix, Shape, Volume


def small_cnn(rng, output_activation=Activation.SOFTMAX):
    return FeedForwardNetwork([
        ConvolutionLayer.random(Shape(6, 6, 1), 2, (3, 3), rng=rng),
        NonlinearityLayer(Shape(4, 4, 2), Activation.RELU),
        PoolingLayer(Shape(4, 4, 2), Shape(2, 2, 2)),
        ReshapingLayer(Shape(2, 2, 2), Shape(1, 1, 8)),
        FullyConnectedLayer.random(8, 3, rng),
    ], output_activation)


def test_construction_requires_matching_shapes(rng):
    with pytest.raises(ShapeMismatchError):
        FeedForwardNetwork([FullyConnectedLayer.random(3, 2, rng), FullyConnectedLayer.random(3, 2, rng)])
    with pytest.raises(ShapeMismatchError):
        FeedForwardNetwork([])


def test_feed_forward_applies_output_activation(rng):
    network = small_cnn(rng)
    out = network.feed_forward(Volume.from_array(rng.normal(size=(1, 6, 6))))
    assert out.shape == Shape(1, 1, 3)
    assert out.values.sum() == pytest.approx(1.0, abs=1e-5)
    with pytest.raises(ShapeMismatchError):
        network.feed_forward(Volume.zeros(5, 5, 1))


def test_feed_forward_does_not_change_parameters(rng):
    network = small_cnn(rng)
    before = [p.copy() for layer in network.layers for p in layer.params.values()]
    network.feed_forward(Volume.from_array(rng.normal(size=(1, 6, 6))))
    after = [p for layer in network.layers for p in layer.params.values()]
    assert all(np.array_equal(a, b) for a, b in zip(before, after))


def test_linear_training_loss_decreases_monotonically(rng):
    network = FeedForwardNetwork([FullyConnectedLayer.random(3, 2, rng)])
    sample = TrainingSample(Volume.from_vector([0.5, -1.0, 2.0]), Volume.from_vector([1.0, -1.0]))
    losses = [network.train(sample, learning_rate=0.02) for _ in range(30)]
    assert all(later < earlier for earlier, later in zip(losses, losses[1:]))
    assert network.phase is NetworkPhase.IDLE


def test_half_squared_error_loss_value():
    network = FeedForwardNetwork([FullyConnectedLayer(Matrix.from_rows([[1, 0, 0, 0], [0, 1, 0, 0]]))])
    sample = TrainingSample(Volume.from_vector([1.0, 2.0, 3.0]), Volume.from_vector([0.0, 0.0]))
    assert network.train(sample, learning_rate=0.0) == pytest.approx(0.5 * (1.0 + 4.0))


def test_train_rejects_mismatched_sample(rng):
    network = FeedForwardNetwork([FullyConnectedLayer.random(3, 2, rng)])
    with pytest.raises(ShapeMismatchError):
        network.train(TrainingSample(Volume.from_vector([1.0, 2.0, 3.0]), Volume.from_vector([1.0])), 0.1)


def test_softmax_network_learns_two_classes(rng):
    network = FeedForwardNetwork([
        FullyConnectedLayer.random(2, 8, rng),
        NonlinearityLayer(Shape(1, 1, 8), Activation.TANH),
        FullyConnectedLayer.random(8, 2, rng),
    ], Activation.SOFTMAX)
    samples = []
    for _ in range(40):
        point = rng.normal(size=2)
        samples.append(TrainingSample.one_hot(Volume.from_vector(point), 2, int(point[0] + point[1] > 0)))
    history = network.fit(samples, epochs=15, learning_rate=0.1, momentum=0.5, rng=rng, verbose=False)
    assert history['loss'][-1] < history['loss'][0]
    assert network.evaluate(samples) >= 0.85


def test_fit_applies_learning_rate_decay(rng):
    network = FeedForwardNetwork([FullyConnectedLayer.random(2, 1, rng)])
    samples = [TrainingSample(Volume.from_vector([1.0, 0.0]), Volume.from_vector([1.0]))]
    history = network.fit(samples, epochs=3, learning_rate=0.1, lr_decay=0.5, verbose=False)
    assert history['lr'] == pytest.approx([0.1, 0.05, 0.025])
    assert len(history['loss']) == 3


def test_cnn_training_reduces_loss(rng):
    network = small_cnn(rng)
    sample = TrainingSample.one_hot(Volume.from_array(rng.normal(size=(1, 6, 6))), 3, 1)
    first = network.train(sample, learning_rate=0.05)
    for _ in range(20):
        last = network.train(sample, learning_rate=0.05)
    assert last < first


def test_summary_prints_parameter_counts(rng, capsys):
    small_cnn(rng).summary()
    out = capsys.readouterr().out
    assert "ConvolutionLayer" in out
    assert f"Total params: {2 * 9 + 2 + 9 * 3}" in out


def test_network_loss_name(rng):
    layer = FullyConnectedLayer(Matrix.from_rows([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]))
    network = FeedForwardNetwork([layer], Activation.LINEAR, loss='mse')
    sample = TrainingSample(Volume.from_vector([1.0, 2.0]), Volume.from_vector([0.0, 0.0]))
    assert network.train(sample, learning_rate=0.0) == pytest.approx(2.5)
    with pytest.raises(UnsupportedConfigurationError):
        FeedForwardNetwork([layer], Activation.LINEAR, loss='categorical_crossentropy')
