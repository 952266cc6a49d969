"""ffnet - Small feed-forward neural network engine with a NumPy host backend
and a numba.cuda GPU backend that agree numerically.

Provides:
- Matrix / Volume tensors with zero padded access, convolution and correlation
- Layers (fully connected, convolution, max pooling, reshaping, nonlinearity)
- FeedForwardNetwork (host) and GPUFeedForwardNetwork (CUDA) with per-sample training
- Momentum / weight decay / learning rate annealing update rule
- Training samples and IDX (MNIST) loading

Set NUMBA_ENABLE_CUDASIM=1 before import to run the GPU backend on numba's simulator.
"""
import os as _os


def _auto_configure_threads():
    """Set BLAS / OpenMP thread counts to all available CPU cores if user
    hasn't specified them. Must run before NumPy loads heavy backends.

    Environment vars respected (won't override if already set):
    OMP_NUM_THREADS, OPENBLAS_NUM_THREADS, MKL_NUM_THREADS, NUMEXPR_NUM_THREADS.
    Disable by setting FFNET_DISABLE_AUTO_THREADS=1.
    """
    if _os.environ.get('FFNET_DISABLE_AUTO_THREADS') == '1':
        return
    cores = _os.cpu_count() or 1
    for var in [
        'OMP_NUM_THREADS', 'OPENBLAS_NUM_THREADS', 'MKL_NUM_THREADS', 'NUMEXPR_NUM_THREADS'
    ]:
        if var not in _os.environ:
            _os.environ[var] = str(cores)


_auto_configure_threads()

from . import vector, tensor, activations, optim, losses, layers, data, utils, cuda, kernels, gpu_layers, model  # noqa: E402
from .activations import Activation  # noqa: E402
from .cuda import CommandBatch, DeviceContext, DeviceVolume, dispatch_shape  # noqa: E402
from .data import TrainingSample  # noqa: E402
from .errors import (ConfigurationError, DeviceError, FFNetError, ShapeMismatchError,  # noqa: E402
                     UnsupportedConfigurationError)
from .gpu_layers import (GPUConvolutionLayer, GPUFullyConnectedLayer, GPUNonlinearityLayer,  # noqa: E402
                         GPUPoolingLayer, GPUReshapingLayer)
from .layers import (ConvolutionLayer, FullyConnectedLayer, NonlinearityLayer, PoolingLayer,  # noqa: E402
                     ReshapingLayer)
from .model import FeedForwardNetwork, GPUFeedForwardNetwork  # noqa: E402
from .optim import TrainingParameters  # noqa: E402
from .tensor import Matrix, Shape, Volume  # noqa: E402

__all__ = [
    'vector', 'tensor', 'activations', 'optim', 'losses', 'layers', 'data', 'utils', 'cuda', 'kernels',
    'gpu_layers', 'model', 'Activation', 'CommandBatch', 'DeviceContext', 'DeviceVolume', 'dispatch_shape',
    'TrainingSample', 'FFNetError', 'ConfigurationError', 'ShapeMismatchError', 'UnsupportedConfigurationError',
    'DeviceError', 'FullyConnectedLayer', 'ConvolutionLayer', 'PoolingLayer', 'ReshapingLayer', 'NonlinearityLayer',
    'GPUFullyConnectedLayer', 'GPUConvolutionLayer', 'GPUPoolingLayer', 'GPUReshapingLayer',
    'GPUNonlinearityLayer', 'FeedForwardNetwork', 'GPUFeedForwardNetwork', 'TrainingParameters',
    'Matrix', 'Shape', 'Volume', '_auto_configure_threads',
]
