"""Rank-2 and rank-3 float32 tensors.

Both tensor types store their elements in one flat, contiguous ``float32``
buffer. A :class:`Matrix` is row-major (``values[y * width + x]``), a
:class:`Volume` stacks matrices along depth (``values[x + width * (y + height * z)]``).
Element reads outside the tensor return 0 and writes outside it are ignored,
which gives convolutions an implicit zero padding.
"""
from __future__ import annotations
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from typing import Callable, Iterable, NamedTuple, Sequence, Tuple

from . import vector
from .errors import ShapeMismatchError


class Shape(NamedTuple):
    width: int
    height: int
    depth: int = 1

    @property
    def volume(self) -> int:
        return self.width * self.height * self.depth

    def __str__(self):
        return f"{self.width}x{self.height}x{self.depth}"


# Helpers operating on (..., height, width) numpy arrays

def _region(grid: np.ndarray, column: int, row: int, width: int, height: int) -> np.ndarray:
    """Zero padded copy of ``grid[..., row:row+height, column:column+width]``."""
    out = np.zeros(grid.shape[:-2] + (height, width), dtype=np.float32)
    gh, gw = grid.shape[-2:]
    x0, y0 = max(column, 0), max(row, 0)
    x1, y1 = min(column + width, gw), min(row + height, gh)
    if x0 < x1 and y0 < y1:
        out[..., y0 - row:y1 - row, x0 - column:x1 - column] = grid[..., y0:y1, x0:x1]
    return out


def _assign_region(grid: np.ndarray, column: int, row: int, values: np.ndarray):
    """Write ``values`` into ``grid`` at (column, row), clipped to the grid."""
    height, width = values.shape[-2:]
    gh, gw = grid.shape[-2:]
    x0, y0 = max(column, 0), max(row, 0)
    x1, y1 = min(column + width, gw), min(row + height, gh)
    if x0 < x1 and y0 < y1:
        grid[..., y0:y1, x0:x1] = values[..., y0 - row:y1 - row, x0 - column:x1 - column]


def _sliding_sum(source: np.ndarray, kernel: np.ndarray, stride: Tuple[int, int], inset: Tuple[int, int]) -> np.ndarray:
    """Depth-summed sliding window reduction of (D, H, W) ``source`` with (D, kh, kw) ``kernel``."""
    sx, sy = stride
    ix, iy = inset
    _, height, width = source.shape
    _, kh, kw = kernel.shape
    out_w = width // sx - kw + 1 - 2 * ix
    out_h = height // sy - kh + 1 - 2 * iy
    if out_w <= 0 or out_h <= 0:
        raise ShapeMismatchError(
            f"Kernel {kw}x{kh} with stride {stride} and inset {inset} does not fit a {width}x{height} input"
        )
    region = _region(source, ix, iy, (out_w - 1) * sx + kw, (out_h - 1) * sy + kh)
    windows = sliding_window_view(region, (kh, kw), axis=(1, 2))[:, ::sy, ::sx]
    return np.einsum('dyxij,dij->yx', windows, kernel).astype(np.float32)


def _scatter(source: np.ndarray, kernel: np.ndarray, stride: Tuple[int, int], inset: Tuple[int, int]) -> np.ndarray:
    """Adjoint of :func:`_sliding_sum` for a single (H, W) source and (kh, kw) kernel."""
    sx, sy = stride
    ix, iy = inset
    height, width = source.shape
    kh, kw = kernel.shape
    out_w = width * sx + kw - 1 + 2 * ix
    out_h = height * sy + kh - 1 + 2 * iy
    if out_w <= 0 or out_h <= 0:
        raise ShapeMismatchError(f"Inset {inset} leaves no room for the correlation output")
    ox, oy = max(0, -ix), max(0, -iy)
    canvas = np.zeros((
        oy + max(out_h, iy + (height - 1) * sy + kh),
        ox + max(out_w, ix + (width - 1) * sx + kw),
    ), dtype=np.float32)
    flipped = kernel.reshape(-1)[::-1].reshape(kh, kw)
    for ky in range(kh):
        for kx in range(kw):
            y0, x0 = oy + iy + ky, ox + ix + kx
            canvas[y0:y0 + (height - 1) * sy + 1:sy, x0:x0 + (width - 1) * sx + 1:sx] += source * flipped[ky, kx]
    return canvas[oy:oy + out_h, ox:ox + out_w]


class Matrix:
    """Two dimensional float32 tensor with value semantics."""

    def __init__(self, values, width: int, height: int):
        values = vector.as_vector(values)
        if width < 0 or height < 0 or values.size != width * height:
            raise ShapeMismatchError(f"{values.size} values cannot form a {width}x{height} matrix")
        self.values = values
        self.width = width
        self.height = height

    @classmethod
    def filled(cls, value: float, width: int, height: int) -> Matrix:
        return cls(np.full(width * height, value, dtype=np.float32), width, height)

    @classmethod
    def zeros(cls, width: int, height: int) -> Matrix:
        return cls.filled(0.0, width, height)

    @classmethod
    def from_rows(cls, rows) -> Matrix:
        """Build a matrix from a nested sequence or 2-D array of rows."""
        arr = np.asarray(rows, dtype=np.float32)
        if arr.ndim != 2:
            raise ShapeMismatchError(f"Expected 2 dimensional rows, got {arr.ndim} dimensions")
        return cls(arr.reshape(-1), arr.shape[1], arr.shape[0])

    from_array = from_rows

    @classmethod
    def from_volume(cls, volume: Volume) -> Matrix:
        if volume.depth != 1:
            raise ShapeMismatchError(f"Cannot convert a volume of depth {volume.depth} to a matrix")
        return cls(volume.values, volume.width, volume.height)

    @property
    def shape(self) -> Shape:
        return Shape(self.width, self.height, 1)

    def _grid(self) -> np.ndarray:
        return self.values.reshape(self.height, self.width)

    def to_array(self) -> np.ndarray:
        return self._grid().copy()

    def copy(self) -> Matrix:
        return Matrix(self.values, self.width, self.height)

    # Element and sub-matrix access

    def _contains(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def __getitem__(self, key: Tuple[int, int]) -> float:
        x, y = key
        if not self._contains(x, y):
            return 0.0
        return float(self.values[y * self.width + x])

    def __setitem__(self, key: Tuple[int, int], value: float):
        x, y = key
        if self._contains(x, y):
            self.values[y * self.width + x] = value

    def row(self, index: int) -> np.ndarray:
        if not 0 <= index < self.height:
            return np.zeros(self.width, dtype=np.float32)
        return self._grid()[index].copy()

    def column(self, index: int) -> np.ndarray:
        if not 0 <= index < self.width:
            return np.zeros(self.height, dtype=np.float32)
        return self._grid()[:, index].copy()

    def window(self, column: int, row: int, width: int, height: int) -> Matrix:
        return Matrix.from_array(_region(self._grid(), column, row, width, height))

    def set_window(self, column: int, row: int, matrix: Matrix):
        _assign_region(self._grid(), column, row, matrix._grid())

    # Linear algebra

    @property
    def transposed(self) -> Matrix:
        return Matrix.from_array(self._grid().T)

    @staticmethod
    def multiply(lhs: Matrix, rhs: Matrix, transpose_first: bool = False,
                 transpose_second: bool = False, scale: float = 1.0) -> Matrix:
        a = lhs._grid().T if transpose_first else lhs._grid()
        b = rhs._grid().T if transpose_second else rhs._grid()
        if a.shape[1] != b.shape[0]:
            raise ShapeMismatchError(
                f"Cannot multiply {a.shape[0]}x{a.shape[1]} by {b.shape[0]}x{b.shape[1]} (rows x columns)"
            )
        return Matrix.from_array((a @ b) * np.float32(scale))

    @staticmethod
    def multiply_vector(matrix: Matrix, values, transpose: bool = False, scale: float = 1.0) -> np.ndarray:
        grid = matrix._grid().T if transpose else matrix._grid()
        values = vector.as_vector(values)
        if grid.shape[1] != values.size:
            raise ShapeMismatchError(f"Cannot multiply {grid.shape[0]}x{grid.shape[1]} matrix by vector of {values.size}")
        return ((grid @ values) * np.float32(scale)).astype(np.float32)

    @staticmethod
    def add(lhs: Matrix, rhs: Matrix, second_scale: float = 1.0) -> Matrix:
        lhs._check_same_shape(rhs)
        return Matrix(lhs.values + rhs.values * np.float32(second_scale), lhs.width, lhs.height)

    def add_(self, other: Matrix, factor: float = 1.0) -> Matrix:
        self._check_same_shape(other)
        self.values += other.values * np.float32(factor)
        return self

    def add_multiplied_(self, first: Matrix, second: Matrix, transpose_first: bool = False,
                        transpose_second: bool = False, factor: float = 1.0,
                        destination_factor: float = 1.0) -> Matrix:
        """In place ``self = destination_factor * self + factor * (first x second)``."""
        product = Matrix.multiply(first, second, transpose_first, transpose_second, factor)
        self._check_same_shape(product)
        self.values *= np.float32(destination_factor)
        self.values += product.values
        return self

    def _check_same_shape(self, other: Matrix):
        if (self.width, self.height) != (other.width, other.height):
            raise ShapeMismatchError(
                f"Matrix shapes differ: {self.width}x{self.height} != {other.width}x{other.height}"
            )

    def __matmul__(self, other: Matrix) -> Matrix:
        return Matrix.multiply(self, other)

    def __add__(self, other: Matrix) -> Matrix:
        return Matrix.add(self, other)

    def __iadd__(self, other: Matrix) -> Matrix:
        return self.add_(other)

    def __sub__(self, other: Matrix) -> Matrix:
        return Matrix.add(self, other, -1.0)

    def __neg__(self) -> Matrix:
        return Matrix(vector.negate(self.values), self.width, self.height)

    def __mul__(self, scale: float) -> Matrix:
        return Matrix(self.values * np.float32(scale), self.width, self.height)

    __rmul__ = __mul__

    def __imul__(self, scale: float) -> Matrix:
        self.values *= np.float32(scale)
        return self

    def __eq__(self, other) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return (self.width, self.height) == (other.width, other.height) and np.array_equal(self.values, other.values)

    def __repr__(self):
        return f"Matrix(width={self.width}, height={self.height}, values={self.to_array().tolist()})"

    # Convolution

    def convolved(self, kernel: Matrix, stride: Tuple[int, int] = (1, 1), inset: Tuple[int, int] = (0, 0)) -> Matrix:
        """Slide ``kernel`` over the matrix and sum the element-wise products.

        The window of output cell (x, y) starts at
        ``(x * stride[0] + inset[0], y * stride[1] + inset[1])``; the output is
        ``dim // stride - kernel_dim + 1 - 2 * inset`` wide and high. A negative
        inset grows the output and reads the zero padding.
        """
        return Matrix.from_array(_sliding_sum(self._grid()[None], kernel._grid()[None], stride, inset))

    def correlated(self, kernel: Matrix, stride: Tuple[int, int] = (1, 1), inset: Tuple[int, int] = (0, 0)) -> Matrix:
        """Scatter ``value * kernel.reversed()`` for every element.

        This is the transposed counterpart of :meth:`convolved`; the output is
        ``dim * stride + kernel_dim - 1 + 2 * inset`` wide and high.
        """
        return Matrix.from_array(_scatter(self._grid(), kernel._grid(), stride, inset))

    # Element-wise transforms

    def reversed(self) -> Matrix:
        return Matrix(self.values[::-1], self.width, self.height)

    def map(self, fn: Callable[[float], float]) -> Matrix:
        return Matrix([fn(float(v)) for v in self.values], self.width, self.height)

    def mapv(self, fn: Callable[[np.ndarray], np.ndarray]) -> Matrix:
        return Matrix(fn(self.values.copy()), self.width, self.height)

    def reshaped(self, width: int, height: int) -> Matrix:
        if width * height != self.values.size:
            raise ShapeMismatchError(f"Cannot reshape {self.width}x{self.height} to {width}x{height}")
        return Matrix(self.values, width, height)


class Volume:
    """Three dimensional float32 tensor with value semantics."""

    def __init__(self, values, width: int, height: int, depth: int):
        values = vector.as_vector(values)
        if min(width, height, depth) < 0 or values.size != width * height * depth:
            raise ShapeMismatchError(f"{values.size} values cannot form a {width}x{height}x{depth} volume")
        self.values = values
        self.width = width
        self.height = height
        self.depth = depth

    @classmethod
    def filled(cls, value: float, width: int, height: int, depth: int) -> Volume:
        return cls(np.full(width * height * depth, value, dtype=np.float32), width, height, depth)

    @classmethod
    def zeros(cls, width: int, height: int, depth: int) -> Volume:
        return cls.filled(0.0, width, height, depth)

    @classmethod
    def with_shape(cls, values, shape: Shape) -> Volume:
        return cls(values, shape.width, shape.height, shape.depth)

    @classmethod
    def from_array(cls, arr) -> Volume:
        """Build a volume from an array indexed ``[depth, height, width]``."""
        arr = np.asarray(arr, dtype=np.float32)
        if arr.ndim == 2:
            arr = arr[None]
        if arr.ndim != 3:
            raise ShapeMismatchError(f"Expected a 3 dimensional array, got {arr.ndim} dimensions")
        depth, height, width = arr.shape
        return cls(arr.reshape(-1), width, height, depth)

    @classmethod
    def from_vector(cls, values) -> Volume:
        """A 1x1xN volume, the layout fully connected layers consume."""
        values = vector.as_vector(values)
        return cls(values, 1, 1, values.size)

    @classmethod
    def stack(cls, matrices: Sequence[Matrix]) -> Volume:
        if not matrices:
            raise ShapeMismatchError("Cannot stack an empty list of matrices")
        first = matrices[0]
        for m in matrices:
            first._check_same_shape(m)
        return cls(np.concatenate([m.values for m in matrices]), first.width, first.height, len(matrices))

    @property
    def shape(self) -> Shape:
        return Shape(self.width, self.height, self.depth)

    def _grid(self) -> np.ndarray:
        return self.values.reshape(self.depth, self.height, self.width)

    def to_array(self) -> np.ndarray:
        return self._grid().copy()

    def copy(self) -> Volume:
        return Volume(self.values, self.width, self.height, self.depth)

    def _contains(self, x: int, y: int, z: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height and 0 <= z < self.depth

    def __getitem__(self, key: Tuple[int, int, int]) -> float:
        x, y, z = key
        if not self._contains(x, y, z):
            return 0.0
        return float(self.values[x + self.width * (y + self.height * z)])

    def __setitem__(self, key: Tuple[int, int, int], value: float):
        x, y, z = key
        if self._contains(x, y, z):
            self.values[x + self.width * (y + self.height * z)] = value

    def slice(self, z: int) -> Matrix:
        if not 0 <= z < self.depth:
            return Matrix.zeros(self.width, self.height)
        return Matrix.from_array(self._grid()[z])

    def slices(self) -> Iterable[Matrix]:
        return [self.slice(z) for z in range(self.depth)]

    def window(self, column: int, row: int, width: int, height: int) -> Volume:
        return Volume.from_array(_region(self._grid(), column, row, width, height))

    def set_window(self, column: int, row: int, volume: Volume):
        if volume.depth != self.depth:
            raise ShapeMismatchError(f"Window depth {volume.depth} != volume depth {self.depth}")
        _assign_region(self._grid(), column, row, volume._grid())

    def convolved(self, kernel: Volume, stride: Tuple[int, int] = (1, 1), inset: Tuple[int, int] = (0, 0)) -> Matrix:
        """Depth-summed sliding window reduction, see :meth:`Matrix.convolved`."""
        if kernel.depth != self.depth:
            raise ShapeMismatchError(f"Kernel depth {kernel.depth} != volume depth {self.depth}")
        return Matrix.from_array(_sliding_sum(self._grid(), kernel._grid(), stride, inset))

    def reversed(self) -> Volume:
        """Element (x, y, z) moves to (width-1-x, height-1-y, depth-1-z)."""
        return Volume(self.values[::-1], self.width, self.height, self.depth)

    def map(self, fn: Callable[[float], float]) -> Volume:
        return Volume([fn(float(v)) for v in self.values], self.width, self.height, self.depth)

    def mapv(self, fn: Callable[[np.ndarray], np.ndarray]) -> Volume:
        return Volume(fn(self.values.copy()), self.width, self.height, self.depth)

    def reshaped(self, width: int, height: int, depth: int) -> Volume:
        if width * height * depth != self.values.size:
            raise ShapeMismatchError(f"Cannot reshape {self.shape} to {width}x{height}x{depth}")
        return Volume(self.values, width, height, depth)

    def _check_same_shape(self, other: Volume):
        if self.shape != other.shape:
            raise ShapeMismatchError(f"Volume shapes differ: {self.shape} != {other.shape}")

    def __add__(self, other: Volume) -> Volume:
        self._check_same_shape(other)
        return Volume(self.values + other.values, self.width, self.height, self.depth)

    def __sub__(self, other: Volume) -> Volume:
        self._check_same_shape(other)
        return Volume(self.values - other.values, self.width, self.height, self.depth)

    def __mul__(self, scale: float) -> Volume:
        return Volume(self.values * np.float32(scale), self.width, self.height, self.depth)

    __rmul__ = __mul__

    def __neg__(self) -> Volume:
        return Volume(vector.negate(self.values), self.width, self.height, self.depth)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Volume):
            return NotImplemented
        return self.shape == other.shape and np.array_equal(self.values, other.values)

    def __repr__(self):
        return f"Volume(width={self.width}, height={self.height}, depth={self.depth})"
