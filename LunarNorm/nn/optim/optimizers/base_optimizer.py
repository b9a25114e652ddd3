import LunarNorm.core.backend.backend as backend
from LunarNorm.nn import Stateful

xp = backend.xp
DTYPE = backend.DTYPE

class BaseOptimizer(Stateful):
    """
    Base class for optimizers consuming gradients from training contexts.

    `step` takes an iterable of `(layer, context)` pairs: the layer owns the
    `W`/`b` arrays to update and the context holds `w_grad`/`b_grad` from
    the last `compute_gradients` call.
    """
    def __init__(self, learning_rate, weight_decay=0.0):
        self.learning_rate = xp.array(learning_rate, dtype=DTYPE)

        self.weight_decay = weight_decay
        self.enable_weight_decay = weight_decay > 0.0

    def state_dict(self):
        return {
            "learning_rate": self.learning_rate,
            "weight_decay": self.weight_decay,
            "enable_weight_decay": self.enable_weight_decay
        }

    def load_state_dict(self, state):
        if "learning_rate" in state:
            self.learning_rate = xp.array(state["learning_rate"], dtype=self.learning_rate.dtype)
        if "weight_decay" in state:
            self.weight_decay = state["weight_decay"]
        if "enable_weight_decay" in state:
            self.enable_weight_decay = state["enable_weight_decay"]

    def _iter_layers(self, pairs):
        """Yield (layer, context) pairs that should be updated."""
        for layer, context in pairs:
            if not getattr(layer, "trainable", False):
                continue
            # Skip frozen layers
            if getattr(layer, "frozen", False):
                continue
            yield layer, context

    def _get_lr(self, layer):
        """
        Compute the effective learning rate for a layer.

        Priority: layer.base_lr > global LR, then scaled by layer.lr_scale.
        """
        if getattr(layer, "base_lr", None) is not None:
            lr = layer.base_lr
        else:
            lr = self.learning_rate

        return lr * getattr(layer, "lr_scale", 1.0)

    def _apply_weight_decay(self, layer, lr=None):
        """
        Applies decoupled weight decay to the layer's W if configured.
        Priority: layer.weight_decay > optimizer.weight_decay
        """
        if not self.enable_weight_decay:
            return
        if getattr(layer, "decay_exempt", False):
            return

        if getattr(layer, "weight_decay", None) is not None:
            wd = layer.weight_decay
        else:
            wd = self.weight_decay

        # If no weight decay, bail out
        if wd == 0.0:
            return

        wd *= getattr(layer, "weight_decay_scale", 1.0)

        # Resolve LR if not passed
        if lr is None:
            lr = self._get_lr(layer)

        # Decoupled weight decay update
        layer.W -= lr * wd * layer.W

    def step(self, pairs):
        """Update layer parameters from the gradients held by their contexts."""
        raise NotImplementedError

    def zero_grad(self, contexts):
        """Set context gradients to zero."""
        for context in contexts:
            context.zero_grad()
