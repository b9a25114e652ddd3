import numbers
import LunarNorm.core.backend.backend as backend
from LunarNorm.core.backend.config import CONFIG
from LunarNorm.nn.layers import BaseLayer
from LunarNorm.core import ops

xp = backend.xp

class BatchNorm4D(BaseLayer):
    """
    Batch Normalization layer for (batch, channel, width, height) data.

    Statistics are computed per channel over the batch and spatial axes.
    Training passes normalize with the mini-batch statistics and blend them
    into running statistics; inference passes normalize with the running
    statistics only.

    Parameters
    ----------
    momentum : float, optional
        Blend rate of the running statistics, in the range (0, 1).
        Defaults to the configured `bn_momentum` (0.9).
    epsilon : float, optional
        Added to the variance before the square root. Defaults to the
        configured `bn_epsilon` (1e-8).
    dtype : dtype, optional
        Dtype of the layer state. Defaults to `backend.GLOBAL_DTYPE` at
        initialization time.

    Attributes
    ----------
    W : array
        Learnable scale (gamma) of shape (K,), initialized to 1.
    b : array
        Learnable shift (beta) of shape (K,), initialized to 0.
    running_mean : array
        Running mean of shape (K,), initialized to 0.
    running_var : array
        Running variance of shape (K,), initialized to 0.

    Methods
    -------
    init_layer(kernels, width, height)
        Allocates parameters and running statistics.
    train_forward(x) -> (output, BatchNormCache)
        Normalizes with batch statistics and updates the running statistics.
    inference_forward(x) -> output
        Normalizes with the running statistics.
    backward(context) -> gradient w.r.t. the input
    compute_gradients(context)
        Writes the gamma and beta gradients into the context.
    """
    def __init__(self, momentum=None, epsilon=None, dtype=None):
        momentum = CONFIG.get("bn_momentum", 0.9) if momentum is None else momentum
        epsilon = CONFIG.get("bn_epsilon", 1e-8) if epsilon is None else epsilon

        # Validate momentum
        if not isinstance(momentum, numbers.Real) or isinstance(momentum, bool):
            raise ValueError("momentum must be a float")
        if not (0 < momentum < 1):
            raise ValueError("momentum must be in the range (0, 1)")

        # Validate epsilon
        if not isinstance(epsilon, numbers.Real) or isinstance(epsilon, bool):
            raise ValueError("epsilon must be a float")
        if epsilon <= 0:
            raise ValueError("epsilon must be > 0")

        super().__init__(trainable=True)

        self.momentum = float(momentum)
        self.epsilon = float(epsilon)
        self.dtype = dtype

        self.kernels, self.width, self.height = 0, 0, 0
        self.running_mean, self.running_var = None, None

        self._state_fields += ["momentum", "epsilon"]

    @staticmethod
    def to_short_string():
        return "batch_norm"

    def initialize(self, input_shape):

        # Validate input_shape
        if input_shape is None:
            raise ValueError("input_shape must be provided to initialize the layer")
        if len(input_shape) != 3:
            raise ValueError(f"input_shape must be (channels, width, height), got {input_shape}")

        self.init_layer(*input_shape)

    def init_layer(self, kernels, width, height):
        if min(kernels, width, height) < 1:
            raise ValueError(f"dimensions must be positive, got ({kernels}, {width}, {height})")

        self.kernels, self.width, self.height = kernels, width, height
        if self.dtype is None:
            self.dtype = backend.GLOBAL_DTYPE

        self.W = xp.ones(kernels, dtype=self.dtype)
        self.b = xp.zeros(kernels, dtype=self.dtype)

        self.running_mean = xp.zeros(kernels, dtype=self.dtype)
        self.running_var = xp.zeros(kernels, dtype=self.dtype)

        self.input_shape = (kernels, width, height)
        self.output_shape = self.input_shape

        self.apply_pending_state_if_any()

    # gamma/beta and mean/var are the textbook names for W/b and the running statistics
    @property
    def gamma(self):
        return self.W

    @property
    def beta(self):
        return self.b

    @property
    def mean(self):
        return self.running_mean

    @property
    def var(self):
        return self.running_var

    def parameters(self):
        # gamma, beta and both running statistics
        return 4 * self.kernels

    def input_size(self):
        return self.kernels * self.width * self.height

    def output_size(self):
        return self.kernels * self.width * self.height

    def extra_repr(self):
        return (f"kernels={self.kernels}, width={self.width}, height={self.height}, "
                f"momentum={self.momentum}, epsilon={self.epsilon}")

    def _check_input(self, x):
        if x.ndim != 4:
            raise ValueError(f"expected a 4D (batch, channel, width, height) input, got {x.ndim}D")
        if tuple(x.shape[1:]) != self.input_shape:
            raise ValueError(f"expected input of shape (B, {self.kernels}, {self.width}, {self.height}), "
                             f"got {tuple(x.shape)}")

    def train_forward(self, x, out=None, x_hat=None):
        """
        Normalize a batch with its own statistics and update the running statistics.

        Parameters
        ----------
        x : array
            Input of shape (B, K, W, H) with B * W * H > 1.
        out : array, optional
            Buffer receiving the output.
        x_hat : array, optional
            Buffer receiving the whitened activations; reused across batches
            of the same size.

        Returns
        -------
        tuple
            (output, BatchNormCache). The cache is what `backward` and
            `compute_gradients` need for this batch.
        """
        self._check_input(x)
        if ops.observations(x) < 2:
            raise ValueError("batch norm needs more than one observation per channel (B * W * H > 1)")

        out, cache = ops.batch_norm_train(x, self.W, self.b, self.epsilon, out=out, x_hat=x_hat)
        ops.update_running_stats(self.running_mean, self.running_var, cache, self.momentum)
        return out, cache

    def inference_forward(self, x, out=None):
        self._check_input(x)
        return ops.batch_norm_inference(x, self.W, self.b, self.running_mean, self.running_var,
                                        self.epsilon, out=out)

    def train_batch(self, context):
        """Run a training forward pass on `context.input`, recording its result on the context."""
        B = context.input.shape[0]
        output = context.ensure_buffer("output", B)
        x_hat = context.ensure_input_pre(B)
        context.output, context.cache = self.train_forward(context.input, out=output, x_hat=x_hat)
        return context.output

    def inference_batch(self, context):
        B = context.input.shape[0]
        output = context.ensure_buffer("output", B)
        context.output = self.inference_forward(context.input, out=output)
        return context.output

    def backward(self, context, out=None):
        """
        Backpropagate `context.errors` through the last training forward pass.

        Uses the whitened activations and inverse standard deviation cached
        by that pass, never the running statistics.
        """
        cache = context.require_cache()
        return ops.batch_norm_backward(context.errors, self.W, cache, out=out)

    def compute_gradients(self, context):
        cache = context.require_cache()
        w_grad, b_grad = ops.batch_norm_param_grads(context.errors, cache)
        context.w_grad[...] = w_grad
        context.b_grad[...] = b_grad

    def state_dict(self):
        out = super().state_dict()
        if self.is_initialized():
            out["W"] = self.W.copy()
            out["b"] = self.b.copy()
            out["running_mean"] = self.running_mean.copy()
            out["running_var"] = self.running_var.copy()
        return out

    def load_state_dict(self, state):
        if not self.is_initialized():
            self._pending_state = state
            return

        super().load_state_dict(state)
        for name in ("W", "b", "running_mean", "running_var"):
            if name in state:
                getattr(self, name)[...] = xp.asarray(state[name])

    def get_config(self):
        return {"momentum": self.momentum, "epsilon": self.epsilon}
