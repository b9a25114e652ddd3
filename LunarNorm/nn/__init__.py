from .stateful import Stateful
from .training_context import TrainingContext

from . import layers
from . import optim

__all__ = [
    "Stateful",
    "TrainingContext",
    "layers",
    "optim"
]
