from . import core
from . import nn
from . import callbacks

from .core import ops
from .nn import TrainingContext
from .nn.layers import BatchNorm4D
from .nn.optim.optimizers import SGD

__all__ = [
    "core",
    "nn",
    "callbacks",
    "ops",
    "TrainingContext",
    "BatchNorm4D",
    "SGD"
]
