import numpy as np
import pytest

from ffnet import vector
from ffnet.errors import ShapeMismatchError, UnsupportedConfigurationError


def test_binary_ops_accept_scalars_on_either_side():
    a = np.array([1.0, 2.0, 4.0])
    assert np.allclose(vector.subtract(a, 1.0), [0.0, 1.0, 3.0])
    assert np.allclose(vector.subtract(1.0, a), [0.0, -1.0, -3.0])
    assert np.allclose(vector.divide(8.0, a), [8.0, 4.0, 2.0])
    assert np.allclose(vector.multiply(a, a), [1.0, 4.0, 16.0])
    assert vector.add(a, a).dtype == np.float32


def test_length_mismatch_raises():
    with pytest.raises(ShapeMismatchError):
        vector.add([1.0, 2.0], [1.0, 2.0, 3.0])
    with pytest.raises(ShapeMismatchError):
        vector.dot([1.0], [1.0, 2.0])


def test_reductions_return_first_extreme():
    values = [3.0, -1.0, 7.0, 7.0, -1.0]
    assert vector.argmax(values) == (7.0, 2)
    assert vector.argmin(values) == (-1.0, 1)
    assert vector.reduce_sum(values) == pytest.approx(15.0)
    assert vector.reduce_max(values) == 7.0
    assert vector.reduce_min(values) == -1.0


def test_softmax_sums_to_one_and_is_shift_invariant(rng):
    x = rng.normal(size=12).astype(np.float32)
    y = vector.softmax(x)
    assert vector.reduce_sum(y) == pytest.approx(1.0, abs=1e-6)
    assert np.allclose(vector.softmax(x + 100.0), y, atol=1e-6)


def test_softmax_handles_large_inputs():
    y = vector.softmax([1000.0, 1000.0])
    assert np.allclose(y, [0.5, 0.5])


def test_sigmoid_derivative_identity(rng):
    x = rng.normal(size=20)
    s = vector.sigmoid(x)
    assert np.allclose(vector.sigmoid_deriv(s), s * (1 - s))


def test_tanh_derivative_identity(rng):
    y = vector.tanh(rng.normal(size=20))
    assert np.allclose(vector.tanh_deriv(y), 1 - y * y)


def test_relu_derivative_is_exactly_zero_or_one():
    d = vector.relu_deriv([-2.0, 0.0, 0.25, 1.0, 3.0])
    assert d.tolist() == [0.0, 0.0, 1.0, 1.0, 1.0]


def test_softmax_derivative_is_not_available():
    with pytest.raises(UnsupportedConfigurationError):
        vector.softmax_deriv([0.5, 0.5])


def test_copysign_and_power():
    assert vector.copysign([1.0, 2.0], [-1.0, 1.0]).tolist() == [-1.0, 2.0]
    assert np.allclose(vector.power([2.0, 3.0], 2.0), [4.0, 9.0])


def test_unary_ops():
    a = np.array([1.0, 4.0, 9.0])
    assert np.allclose(vector.sqrt(a), [1.0, 2.0, 3.0])
    assert np.allclose(vector.negate(a), [-1.0, -4.0, -9.0])
    assert np.allclose(vector.exp([0.0, 1.0]), [1.0, np.e])
    assert np.allclose(vector.log(vector.exp(a)), a, atol=1e-5)
    assert vector.exp(a).dtype == np.float32
