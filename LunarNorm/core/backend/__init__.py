from .context import gpu_scope
from .context import precision_scope

__all__ = [
    "gpu_scope",
    "precision_scope"
]
