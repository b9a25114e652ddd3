import LunarNorm.core.backend.backend as backend

xp = backend.xp

class TrainingContext:
    """
    Per-layer batch buffers owned by one layer slot of one network.

    Created once when a layer is attached and overwritten every mini-batch.
    A training forward pass stores its result on `cache`; `backward` and
    `compute_gradients` read it from there.

    Args:
        layer: An initialized layer exposing `kernels`, `width`, `height` and `dtype`.
        batch_size (int): Number of samples per mini-batch.

    Attributes:
        input, output, errors (array): Buffers of shape (batch_size, K, W, H).
        input_pre (array): Whitened activations of the last training batch.
        w_grad, b_grad (array): Gradients w.r.t. gamma and beta, shape (K,).
        cache (BatchNormCache or None): Result of the last training forward pass.
    """
    def __init__(self, layer, batch_size):
        if not layer.is_initialized():
            raise ValueError("layer must be initialized before building its training context")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        self.dtype = layer.dtype
        self.dims = (layer.kernels, layer.width, layer.height)
        self.batch_size = batch_size

        shape = self.shape
        self.input = xp.zeros(shape, dtype=self.dtype)
        self.output = xp.zeros(shape, dtype=self.dtype)
        self.errors = xp.zeros(shape, dtype=self.dtype)
        self.input_pre = xp.zeros(shape, dtype=self.dtype)

        self.w_grad = xp.zeros(layer.kernels, dtype=self.dtype)
        self.b_grad = xp.zeros(layer.kernels, dtype=self.dtype)

        self.cache = None

    @property
    def shape(self):
        return (self.batch_size, *self.dims)

    def ensure_buffer(self, name, batch_size):
        """Return buffer `name`, reallocating it only if the batch size changed."""
        buf = getattr(self, name)
        if buf.shape[0] != batch_size:
            buf = xp.zeros((batch_size, *self.dims), dtype=self.dtype)
            setattr(self, name, buf)
        return buf

    def ensure_input_pre(self, batch_size):
        return self.ensure_buffer("input_pre", batch_size)

    def require_cache(self):
        if self.cache is None:
            raise RuntimeError("no training forward pass recorded on this context; call train_batch() first")
        return self.cache

    def zero_grad(self):
        self.w_grad[...] = 0
        self.b_grad[...] = 0

    def __repr__(self):
        return f"TrainingContext(shape={self.shape}, cached={self.cache is not None})"
