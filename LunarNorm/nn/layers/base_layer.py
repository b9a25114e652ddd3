from LunarNorm.nn import Stateful

class BaseLayer(Stateful):
    """
    Layer contract consumed by a graph engine.

    A layer reports its shape (`input_size`, `output_size`), its parameter
    count (`parameters`) and a short name (`to_short_string`), and evaluates
    batches in two modes: `train_forward`, whose result feeds `backward` and
    `compute_gradients`, and `inference_forward`, which has no backward.
    Learnable state lives in `W` and `b`, which is what optimizers update.
    """

    def __init__(self, trainable: bool = False):
        self.trainable = trainable
        self.training = True

        # Parameters
        self.W, self.b = None, None

        # Shape
        self.input_shape, self.output_shape = None, None

        # LR tricks
        self.lr_scale = 1.0
        self.base_lr = None

        self.frozen = False

        self.weight_decay = None
        self.weight_decay_scale = 1.0
        self.decay_exempt = False

        # Weight backups
        self._bak_W, self._bak_b = None, None

        self._state_fields = [
            "training",
            "lr_scale",
            "base_lr",
            "frozen",
            "weight_decay",
            "weight_decay_scale",
            "decay_exempt"
        ]

    def is_initialized(self):
        return self.W is not None

    def state_dict(self):
        out = {"_type": self.__class__.__name__}
        for name in self._state_fields:
            val = getattr(self, name, None)
            if val is not None:
                out[name] = val
        return out

    def load_state_dict(self, state):
        if not self.is_initialized():
            self._pending_state = state
            return

        for name in self._state_fields:
            if name in state:
                setattr(self, name, state[name])

    def apply_pending_state_if_any(self):
        ps = getattr(self, "_pending_state", None)
        if ps is None:
            return
        del self._pending_state
        self.load_state_dict(ps)

    def __call__(self, x, *args, **kwargs):
        return self.forward(x, *args, **kwargs)

    def __repr__(self):
        class_name = self.__class__.__name__
        extra = self.extra_repr()
        if extra:
            return f"{class_name}({extra})"
        shape_str = f"in={self.input_shape}, out={self.output_shape}"
        return f"{class_name}({shape_str}, params={self.parameters()})"

    def extra_repr(self) -> str:
        """
        Override in subclasses to provide custom layer-specific
        information for __repr__. By default, shows input/output shape.
        """
        if self.input_shape and self.output_shape:
            return f"in={self.input_shape}, out={self.output_shape}"
        return ""

    def train(self):
        """
        Set this layer to training mode.

        `forward` then evaluates with batch statistics (`train_forward`).
        """
        self.training = True

    def eval(self):
        """
        Set this layer to evaluation mode.

        `forward` then evaluates with stored statistics (`inference_forward`).
        """
        self.training = False

    def freeze(self):
        """Exclude this layer from optimizer updates."""
        self.frozen = True

    def unfreeze(self):
        """Include this layer in optimizer updates again."""
        self.frozen = False

    def backup_weights(self):
        """Keep a copy of `W` and `b` that `restore_weights` can roll back to."""
        if self.W is not None:
            self._bak_W = self.W.copy()
        if self.b is not None:
            self._bak_b = self.b.copy()

    def restore_weights(self):
        """Copy the last backup of `W` and `b` back in place."""
        if self._bak_W is None and self._bak_b is None:
            raise RuntimeError("restore_weights() called before backup_weights()")
        if self._bak_W is not None:
            self.W[...] = self._bak_W
        if self._bak_b is not None:
            self.b[...] = self._bak_b

    def forward(self, x):
        if self.training:
            output, _ = self.train_forward(x)
            return output
        return self.inference_forward(x)

    def adapt_errors(self, context):
        """
        Adapt the errors before they are backpropagated.

        Only layers fusing an activation function need this; the default
        leaves `context.errors` as is.
        """
        return None

    # -------------------------------
    # Abstracts (implemented in child)
    # -------------------------------
    @staticmethod
    def to_short_string() -> str:
        raise NotImplementedError

    def initialize(self, input_shape):
        raise NotImplementedError

    def parameters(self) -> int:
        raise NotImplementedError

    def input_size(self) -> int:
        raise NotImplementedError

    def output_size(self) -> int:
        raise NotImplementedError

    def train_forward(self, x, out=None):
        raise NotImplementedError

    def inference_forward(self, x, out=None):
        raise NotImplementedError

    def backward(self, context, out=None):
        raise NotImplementedError

    def compute_gradients(self, context):
        raise NotImplementedError
