from . import ops
from .ops import BatchNormCache

from .backend.backend import gpu_available
from .backend.backend import is_gpu
from .backend.backend import device_name
from .backend.backend import get_device
from .backend.backend import synchronize
from .backend.backend import to_numpy
from .backend.backend import use_gpu
from .backend.backend import use_cpu
from .backend.backend import set_seed
from .backend.backend import set_dtype
from .backend.context import gpu_scope
from .backend.context import precision_scope

__all__ = [
    "ops",
    "BatchNormCache",
    "gpu_available",
    "is_gpu",
    "device_name",
    "get_device",
    "synchronize",
    "to_numpy",
    "use_gpu",
    "use_cpu",
    "set_seed",
    "set_dtype",
    "gpu_scope",
    "precision_scope"
]
