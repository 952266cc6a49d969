import numpy as np
import pytest

from ffnet.errors import ShapeMismatchError
from ffnet.tensor import Matrix, Shape, Volume


def test_product_shape(rng):
    a = Matrix.from_rows(rng.normal(size=(3, 4)))  # 3 rows, 4 columns
    b = Matrix.from_rows(rng.normal(size=(4, 5)))
    product = a @ b
    assert (product.height, product.width) == (3, 5)
    assert np.allclose(product.to_array(), a.to_array() @ b.to_array(), atol=1e-5)


def test_identity_product(rng):
    a = Matrix.from_rows(rng.normal(size=(4, 4)))
    identity = Matrix.from_rows(np.eye(4))
    assert a @ identity == a


def test_multiply_rejects_inner_dimension_mismatch():
    with pytest.raises(ShapeMismatchError):
        Matrix.zeros(3, 2) @ Matrix.zeros(3, 2)


def test_multiply_with_transposition_and_scale(rng):
    a = Matrix.from_rows(rng.normal(size=(3, 2)))
    b = Matrix.from_rows(rng.normal(size=(3, 4)))
    product = Matrix.multiply(a, b, transpose_first=True, scale=2.0)
    assert np.allclose(product.to_array(), 2.0 * a.to_array().T @ b.to_array(), atol=1e-5)


def test_transpose_twice_is_identity(rng):
    a = Matrix.from_rows(rng.normal(size=(2, 5)))
    assert a.transposed.transposed == a
    assert (a.transposed.width, a.transposed.height) == (2, 5)


def test_out_of_range_reads_are_zero_and_writes_ignored():
    m = Matrix.from_rows([[1.0, 2.0], [3.0, 4.0]])
    assert m[1, 0] == 2.0
    assert m[-1, 0] == 0.0
    assert m[0, 2] == 0.0
    m[5, 5] = 9.0
    assert m == Matrix.from_rows([[1.0, 2.0], [3.0, 4.0]])


def test_window_is_zero_padded():
    m = Matrix.from_rows([[1.0, 2.0], [3.0, 4.0]])
    w = m.window(-1, 0, 3, 2)
    assert w.to_array().tolist() == [[0.0, 1.0, 2.0], [0.0, 3.0, 4.0]]


def test_value_semantics():
    values = np.array([1.0, 2.0, 3.0, 4.0], dtype=np.float32)
    m = Matrix(values, 2, 2)
    values[0] = 100.0
    copy = m.copy()
    copy[0, 0] = -1.0
    assert m[0, 0] == 1.0


def test_convolution_of_ones():
    image = Matrix.filled(1.0, 5, 5)
    kernel = Matrix.filled(1.0, 3, 3)
    out = image.convolved(kernel)
    assert (out.width, out.height) == (3, 3)
    assert np.all(out.values == 9.0)


def test_convolution_stride_and_inset():
    image = Matrix.from_rows(np.arange(36, dtype=np.float32).reshape(6, 6))
    kernel = Matrix.from_rows([[1.0]])
    strided = image.convolved(kernel, stride=(2, 2))
    assert strided.to_array().tolist() == [[0.0, 2.0, 4.0], [12.0, 14.0, 16.0], [24.0, 26.0, 28.0]]
    inset = image.convolved(kernel, inset=(1, 1))
    assert np.array_equal(inset.to_array(), image.to_array()[1:5, 1:5])


def test_negative_inset_reads_zero_padding():
    image = Matrix.filled(1.0, 3, 3)
    kernel = Matrix.filled(1.0, 3, 3)
    full = image.convolved(kernel, inset=(-2, -2))
    assert (full.width, full.height) == (5, 5)
    assert full[0, 0] == 1.0
    assert full[2, 2] == 9.0


def test_correlation_is_adjoint_of_convolution(rng):
    x = Matrix.from_rows(rng.normal(size=(6, 6)))
    k = Matrix.from_rows(rng.normal(size=(3, 3)))
    y = Matrix.from_rows(rng.normal(size=(4, 4)))
    # <conv(x, k), y> == <x, corr(y, reversed(k))>
    lhs = float(np.dot(x.convolved(k).values, y.values))
    rhs = float(np.dot(x.values, y.correlated(k.reversed()).values))
    assert lhs == pytest.approx(rhs, rel=1e-4, abs=1e-4)


def test_correlation_output_size():
    out = Matrix.filled(1.0, 4, 4).correlated(Matrix.filled(1.0, 3, 3))
    assert (out.width, out.height) == (6, 6)
    assert out[0, 0] == 1.0
    assert out[2, 2] == 9.0


def test_reversed_reverses_flat_buffer():
    m = Matrix.from_rows([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    assert m.reversed().to_array().tolist() == [[6.0, 5.0, 4.0], [3.0, 2.0, 1.0]]


def test_reshaped_requires_same_size():
    m = Matrix.zeros(3, 2)
    assert m.reshaped(6, 1).width == 6
    with pytest.raises(ShapeMismatchError):
        m.reshaped(4, 2)


def test_add_and_in_place_helpers():
    a = Matrix.filled(1.0, 2, 2)
    b = Matrix.filled(2.0, 2, 2)
    assert Matrix.add(a, b, second_scale=0.5) == Matrix.filled(2.0, 2, 2)
    a += b
    assert a == Matrix.filled(3.0, 2, 2)
    a.add_multiplied_(Matrix.filled(1.0, 1, 2), Matrix.filled(1.0, 2, 1), factor=2.0, destination_factor=0.0)
    assert a == Matrix.filled(2.0, 2, 2)
    with pytest.raises(ShapeMismatchError):
        a + Matrix.zeros(3, 2)


def test_volume_indexing_layout():
    v = Volume.from_array(np.arange(24, dtype=np.float32).reshape(2, 3, 4))
    assert v.shape == Shape(4, 3, 2)
    assert v[1, 2, 1] == 1 + 4 * (2 + 3 * 1)
    assert v.slice(1)[0, 0] == 12.0
    assert v[0, 0, 5] == 0.0


def test_volume_convolution_sums_over_depth():
    v = Volume.filled(1.0, 4, 4, 3)
    k = Volume.filled(1.0, 2, 2, 3)
    out = v.convolved(k)
    assert (out.width, out.height) == (3, 3)
    assert np.all(out.values == 12.0)
    with pytest.raises(ShapeMismatchError):
        v.convolved(Volume.filled(1.0, 2, 2, 2))


def test_volume_reversed_slice_order():
    v = Volume.from_array(np.arange(8, dtype=np.float32).reshape(2, 2, 2))
    r = v.reversed()
    assert r.slice(0).to_array().tolist() == [[7.0, 6.0], [5.0, 4.0]]


def test_stack_and_map():
    v = Volume.stack([Matrix.filled(1.0, 2, 2), Matrix.filled(-2.0, 2, 2)])
    assert v.depth == 2
    assert v.map(abs).slice(1) == Matrix.filled(2.0, 2, 2)
    assert v.mapv(np.negative).slice(0) == Matrix.filled(-1.0, 2, 2)


def test_multiply_vector(rng):
    m = Matrix.from_rows(rng.normal(size=(3, 4)))
    v = rng.normal(size=4)
    assert np.allclose(Matrix.multiply_vector(m, v), m.to_array() @ v, atol=1e-5)
    w = rng.normal(size=3)
    assert np.allclose(Matrix.multiply_vector(m, w, transpose=True, scale=0.5),
                       0.5 * m.to_array().T @ w, atol=1e-5)
    with pytest.raises(ShapeMismatchError):
        Matrix.multiply_vector(m, w)


def test_multiply_with_second_transposed(rng):
    a = Matrix.from_rows(rng.normal(size=(2, 3)))
    b = Matrix.from_rows(rng.normal(size=(4, 3)))
    product = Matrix.multiply(a, b, transpose_second=True)
    assert (product.width, product.height) == (4, 2)
    assert np.allclose(product.to_array(), a.to_array() @ b.to_array().T, atol=1e-5)
    with pytest.raises(ShapeMismatchError):
        Matrix.multiply(a, a, transpose_second=False)


def test_rows_and_columns():
    m = Matrix.from_rows([[1, 2, 3], [4, 5, 6]])
    assert m.row(1).tolist() == [4.0, 5.0, 6.0]
    assert m.column(2).tolist() == [3.0, 6.0]
    assert m.row(2).tolist() == [0.0, 0.0, 0.0]
    assert m.row(-1).tolist() == [0.0, 0.0, 0.0]
    assert m.column(3).tolist() == [0.0, 0.0]
    row = m.row(0)
    row[0] = 42.0
    assert m[0, 0] == 1.0


def test_set_window_clips_to_matrix():
    m = Matrix.zeros(3, 3)
    m.set_window(2, 1, Matrix.filled(1.0, 2, 3))
    assert m.to_array().tolist() == [[0, 0, 0], [0, 0, 1], [0, 0, 1]]
    m.set_window(-1, -1, Matrix.filled(2.0, 2, 2))
    assert m.to_array().tolist() == [[2, 0, 0], [0, 0, 1], [0, 0, 1]]


def test_volume_set_window():
    v = Volume.zeros(3, 3, 2)
    v.set_window(1, 1, Volume.filled(5.0, 2, 2, 2))
    assert v[1, 1, 0] == 5.0 and v[2, 2, 1] == 5.0
    assert v[0, 0, 0] == 0.0 and v[0, 2, 1] == 0.0
    with pytest.raises(ShapeMismatchError):
        v.set_window(0, 0, Volume.filled(1.0, 2, 2, 1))


def test_matrix_from_volume():
    volume = Volume.from_array([[[1, 2], [3, 4]]])
    assert Matrix.from_volume(volume) == Matrix.from_rows([[1, 2], [3, 4]])
    with pytest.raises(ShapeMismatchError):
        Matrix.from_volume(Volume.zeros(2, 2, 2))
