"""Training samples and IDX (MNIST-like) dataset loading."""
from __future__ import annotations
import gzip
import os
import struct
import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Tuple

from . import vector
from .tensor import Volume
from .utils import one_hot

_IDX_DTYPES = {
    0x08: np.uint8,
    0x09: np.int8,
    0x0B: np.dtype('>i2'),
    0x0C: np.dtype('>i4'),
    0x0D: np.dtype('>f4'),
    0x0E: np.dtype('>f8'),
}


@dataclass
class TrainingSample:
    values: Volume
    expected: Volume

    @classmethod
    def one_hot(cls, values: Volume, output_count: int, target_index: int,
                base_value: float = 0.0, hot_value: float = 1.0) -> TrainingSample:
        """Sample whose expected output is ``hot_value`` at ``target_index`` and ``base_value`` elsewhere."""
        return cls(values, Volume.from_vector(one_hot(target_index, output_count, base_value, hot_value)))

    @property
    def target_index(self) -> int:
        return vector.argmax(self.expected.values)[1]


def read_idx(path: str) -> np.ndarray:
    """Read an IDX file, gzip compressed (``.gz``) or raw."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"IDX file not found: {path}")
    opener = gzip.open if path.endswith('.gz') else open
    with opener(path, 'rb') as f:
        zero, data_type, dims = struct.unpack('>HBB', f.read(4))
        if zero != 0 or data_type not in _IDX_DTYPES:
            raise ValueError(f"{path} is not an IDX file (magic {zero:#06x}, type {data_type:#04x})")
        shape = tuple(struct.unpack('>I', f.read(4))[0] for _ in range(dims))
        data = np.frombuffer(f.read(), dtype=_IDX_DTYPES[data_type])
    expected = int(np.prod(shape)) if shape else 0
    if data.size != expected:
        raise ValueError(f"{path} declares {expected} values but holds {data.size}")
    return data.reshape(shape)


def samples_from_arrays(images: np.ndarray, labels: np.ndarray, output_count: int = 10,
                        scale: float = 1.0 / 256.0, base_value: float = 0.0,
                        hot_value: float = 1.0) -> List[TrainingSample]:
    """Turn ``(N, H, W)`` images and ``(N,)`` labels into one-hot training samples."""
    images = np.asarray(images)
    labels = np.asarray(labels)
    if images.ndim == 2:
        images = images[:, None, :]
    if images.ndim != 3 or images.shape[0] != labels.shape[0]:
        raise ValueError(f"Cannot pair images {images.shape} with labels {labels.shape}")
    samples = []
    for image, label in zip(images, labels):
        values = Volume.from_array(image.astype(np.float32) * np.float32(scale))
        samples.append(TrainingSample.one_hot(values, output_count, int(label), base_value, hot_value))
    return samples


def load_idx_samples(images_path: str, labels_path: str, count: Optional[int] = None,
                     output_count: int = 10, base_value: float = 0.0,
                     hot_value: float = 1.0) -> List[TrainingSample]:
    images = read_idx(images_path)
    labels = read_idx(labels_path)
    if count is not None:
        images, labels = images[:count], labels[:count]
    return samples_from_arrays(images, labels, output_count, base_value=base_value, hot_value=hot_value)


def _find(folder: str, name: str) -> str:
    for candidate in (name + '.gz', name):
        path = os.path.join(folder, candidate)
        if os.path.exists(path):
            return path
    raise FileNotFoundError(f"Neither {name} nor {name}.gz found in {folder}")


def load_mnist(folder: str, train_count: Optional[int] = None, test_count: Optional[int] = None,
               base_value: float = 0.0, hot_value: float = 1.0) -> Tuple[List[TrainingSample], List[TrainingSample]]:
    train = load_idx_samples(_find(folder, 'train-images-idx3-ubyte'), _find(folder, 'train-labels-idx1-ubyte'),
                             train_count, base_value=base_value, hot_value=hot_value)
    test = load_idx_samples(_find(folder, 't10k-images-idx3-ubyte'), _find(folder, 't10k-labels-idx1-ubyte'),
                            test_count, base_value=base_value, hot_value=hot_value)
    return train, test
