from .base_layer import BaseLayer

from .batchnorm4d import BatchNorm4D

__all__ = [
    "BaseLayer",
    "BatchNorm4D"
]
