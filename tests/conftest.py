import numpy as np
import pytest

from LunarNorm.core import precision_scope
from LunarNorm.nn.layers import BatchNorm4D


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def make_layer():
    """Build an initialized float64 BatchNorm4D."""
    def _make(kernels=2, width=3, height=3, **kwargs):
        with precision_scope("float64"):
            layer = BatchNorm4D(**kwargs)
            layer.init_layer(kernels, width, height)
        return layer
    return _make
