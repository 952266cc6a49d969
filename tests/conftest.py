import os

# Kernels run on numba's CUDA simulator; must be set before numba is imported.
os.environ.setdefault('NUMBA_ENABLE_CUDASIM', '1')
os.environ.setdefault('FFNET_DISABLE_AUTO_THREADS', '1')

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from ffnet.cuda import DeviceContext  # noqa: E402


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def context():
    # a small thread group keeps the simulator fast and exercises group splitting
    return DeviceContext.create(max_threads_per_group=64)
