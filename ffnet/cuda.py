"""
CUDA support for the GPU backend, built on numba.cuda.

A :class:`DeviceContext` owns the device, the single stream every kernel is
encoded on and the thread-group limits used to shape dispatches. Work for one
forward pass or one training step is encoded inside a :class:`CommandBatch`,
which waits for the stream exactly once when it closes.

Set ``NUMBA_ENABLE_CUDASIM=1`` before importing ffnet to run the kernels on
numba's CUDA simulator; ``FFNET_MAX_THREADS_PER_GROUP`` lowers the
thread-group ceiling.
"""
from __future__ import annotations
import os
import numpy as np
from typing import List, Optional, Sequence, Tuple

from numba import cuda

from .errors import DeviceError, ShapeMismatchError
from .tensor import Shape, Volume

DEFAULT_MAX_BLOCK = (1024, 1024, 64)


def dispatch_shape(work_size: Sequence[int], max_threads: int,
                   max_block: Sequence[int] = DEFAULT_MAX_BLOCK) -> Tuple[Tuple[int, int, int], Tuple[int, int, int]]:
    """Split a (width, height, depth) work size into thread groups.

    Each axis is clamped to the per-axis limit. While the group holds more
    than ``max_threads`` threads the strictly largest axis is halved (depth
    wins, then height, then width); without a strictly largest axis the first
    of depth, height, width that can still be halved is halved.

    Returns:
        ``(groups, threads)``, each a 3-tuple ordered (width, height, depth).
    """
    work = tuple(int(v) for v in work_size) + (1,) * (3 - len(work_size))
    if len(work) != 3 or min(work) <= 0:
        raise ValueError(f"Work size must have 1 to 3 positive dimensions, got {tuple(work_size)}")
    w, h, d = (min(n, limit) for n, limit in zip(work, max_block))
    while w * h * d > max_threads:
        if d > w and d > h:
            d //= 2
        elif h > w and h > d:
            h //= 2
        elif w > h and w > d:
            w //= 2
        elif d >= 2:
            d //= 2
        elif h >= 2:
            h //= 2
        elif w >= 2:
            w //= 2
        else:
            raise DeviceError(f"Cannot fit work size {work} into {max_threads} threads per group")
    threads = (w, h, d)
    groups = tuple((n + t - 1) // t for n, t in zip(work, threads))
    return groups, threads


class DeviceContext:
    """Device, stream and dispatch limits shared by GPU layers and networks."""

    def __init__(self, device, stream, max_threads_per_group: int,
                 max_block_dims: Tuple[int, int, int] = DEFAULT_MAX_BLOCK):
        if max_threads_per_group < 1:
            raise DeviceError(f"max_threads_per_group must be positive, got {max_threads_per_group}")
        self.device = device
        self.stream = stream
        self.max_threads_per_group = int(max_threads_per_group)
        self.max_block_dims = tuple(int(v) for v in max_block_dims)
        self.active_batch: Optional[CommandBatch] = None
        self.synchronizations = 0

    @classmethod
    def create(cls, max_threads_per_group: Optional[int] = None) -> DeviceContext:
        if not cuda.is_available():
            raise DeviceError(
                "No CUDA device available. Set NUMBA_ENABLE_CUDASIM=1 to run on the numba CUDA simulator."
            )
        device = cuda.current_context().device
        if max_threads_per_group is None and os.environ.get('FFNET_MAX_THREADS_PER_GROUP'):
            max_threads_per_group = int(os.environ['FFNET_MAX_THREADS_PER_GROUP'])
        device_limit = int(getattr(device, 'MAX_THREADS_PER_BLOCK', 1024))
        limit = min(max_threads_per_group or device_limit, device_limit)
        max_block = (
            int(getattr(device, 'MAX_BLOCK_DIM_X', DEFAULT_MAX_BLOCK[0])),
            int(getattr(device, 'MAX_BLOCK_DIM_Y', DEFAULT_MAX_BLOCK[1])),
            int(getattr(device, 'MAX_BLOCK_DIM_Z', DEFAULT_MAX_BLOCK[2])),
        )
        return cls(device, cuda.stream(), limit, max_block)

    @property
    def name(self) -> str:
        name = getattr(self.device, 'name', None)
        if name is None:
            return "CUDA simulator"
        return name.decode() if isinstance(name, bytes) else str(name)

    def make_pipeline(self, name: str) -> ComputePipeline:
        from .kernels import KERNELS
        if name not in KERNELS:
            raise DeviceError(f"Unknown kernel {name!r}")
        return ComputePipeline(self, name, KERNELS[name])

    def batch(self) -> CommandBatch:
        return CommandBatch(self)

    def to_device(self, values) -> object:
        """Copy host values into a new flat float32 device buffer."""
        return cuda.to_device(np.ascontiguousarray(values, dtype=np.float32).reshape(-1))

    def zeros(self, shape: Shape) -> DeviceVolume:
        return DeviceVolume(self, self.to_device(np.zeros(Shape(*shape).volume, dtype=np.float32)), shape)

    def upload(self, volume: Volume) -> DeviceVolume:
        return DeviceVolume(self, self.to_device(volume.values), volume.shape)

    def __repr__(self):
        return f"DeviceContext({self.name}, max_threads_per_group={self.max_threads_per_group})"


class ComputePipeline:
    """A named kernel bound to a device context."""

    def __init__(self, context: DeviceContext, name: str, kernel):
        self.context = context
        self.name = name
        self.kernel = kernel

    def dispatch(self, batch: CommandBatch, work_size: Sequence[int], *args):
        if self.context.active_batch is not batch:
            raise DeviceError(f"Kernel {self.name!r} must be dispatched into the open batch of its context")
        groups, threads = dispatch_shape(work_size, self.context.max_threads_per_group, self.context.max_block_dims)
        self.kernel[groups, threads, self.context.stream](*args)
        batch.dispatched.append(self.name)


class CommandBatch:
    """All kernels of one forward pass or training step.

    Kernels run in encoding order on the context stream; leaving the ``with``
    block waits for them once. Device buffers cannot be read while the batch
    is open.
    """

    def __init__(self, context: DeviceContext):
        self.context = context
        self.dispatched: List[str] = []
        self.completed = False
        self._staged: List[np.ndarray] = []

    def __enter__(self) -> CommandBatch:
        if self.context.active_batch is not None:
            raise DeviceError("Another command batch is still in flight")
        self.context.active_batch = self
        return self

    def __exit__(self, exc_type, exc, tb):
        self.context.active_batch = None
        self.context.stream.synchronize()
        self.context.synchronizations += 1
        self.completed = True
        self._staged.clear()
        return False

    def upload(self, volume: Volume) -> DeviceVolume:
        """Copy a host volume to the device, ordered with the batch's kernels."""
        host = np.ascontiguousarray(volume.values, dtype=np.float32)
        self._staged.append(host)
        return DeviceVolume(self.context, cuda.to_device(host, stream=self.context.stream), volume.shape)


class DeviceVolume:
    """Flat float32 device buffer interpreted with a volume shape."""

    def __init__(self, context: DeviceContext, array, shape: Shape):
        shape = Shape(*shape)
        if array.size != shape.volume:
            raise ShapeMismatchError(f"Device buffer of {array.size} values cannot hold {shape}")
        self.context = context
        self.array = array
        self.shape = shape

    def reshaped(self, shape: Shape) -> DeviceVolume:
        """Same buffer, new shape."""
        return DeviceVolume(self.context, self.array, shape)

    def to_array(self) -> np.ndarray:
        if self.context.active_batch is not None:
            raise DeviceError("Cannot read a device buffer while its command batch is in flight")
        return self.array.copy_to_host().reshape(-1)

    def to_volume(self) -> Volume:
        return Volume.with_shape(self.to_array(), self.shape)

    def __repr__(self):
        return f"DeviceVolume({self.shape})"
