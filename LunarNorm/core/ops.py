import LunarNorm.core.backend.backend as backend

xp = backend.xp

# Reduction axes for (B, K, W, H) data: everything except the channel axis
CHANNEL_AXES = (0, 2, 3)


class BatchNormCache:
    """
    Result of a training forward pass, needed by the backward pass.

    Attributes:
        mean (array): Mini-batch mean per channel, shape (K,).
        var (array): Biased mini-batch variance per channel, shape (K,).
        inv_var (array): 1 / sqrt(var + epsilon), shape (K,).
        x_hat (array): Whitened activations, shape (B, K, W, H).
        size (int): Number of observations per channel, B * W * H.
    """
    __slots__ = ("mean", "var", "inv_var", "x_hat", "size")

    def __init__(self, mean, var, inv_var, x_hat, size):
        self.mean = mean
        self.var = var
        self.inv_var = inv_var
        self.x_hat = x_hat
        self.size = size

    @property
    def batch_size(self):
        return self.x_hat.shape[0]

    def __repr__(self):
        return f"BatchNormCache(shape={tuple(self.x_hat.shape)}, size={self.size})"


def channel_view(v):
    """Reshape a per-channel vector (K,) to (1, K, 1, 1) for broadcasting."""
    return v.reshape(1, -1, 1, 1)


def observations(x) -> int:
    """Number of scalars contributing to one channel's statistics: B * W * H."""
    B, _, W, H = x.shape
    return B * W * H


def _write(out, value):
    if out is None:
        return value
    out[...] = value
    return out


def batch_norm_train(x, gamma, beta, epsilon, out=None, x_hat=None):
    """
    Batch normalization forward pass with mini-batch statistics.

    Args:
        x (array): Input of shape (B, K, W, H).
        gamma (array): Scale per channel, shape (K,).
        beta (array): Shift per channel, shape (K,).
        epsilon (float): Added to the variance before the square root.
        out (array, optional): Buffer receiving the output.
        x_hat (array, optional): Buffer receiving the whitened activations.

    Returns:
        tuple: (output, BatchNormCache)
    """
    S = observations(x)

    mean = xp.mean(x, axis=CHANNEL_AXES)
    centered = x - channel_view(mean)
    var = xp.sum(centered * centered, axis=CHANNEL_AXES) / S
    inv_var = 1.0 / xp.sqrt(var + epsilon)

    x_hat = _write(x_hat, centered * channel_view(inv_var))
    out = _write(out, channel_view(gamma) * x_hat + channel_view(beta))

    return out, BatchNormCache(mean, var, inv_var, x_hat, S)


def batch_norm_inference(x, gamma, beta, running_mean, running_var, epsilon, out=None):
    """
    Batch normalization forward pass with running statistics.

    The inverse standard deviation is recomputed from `running_var` on every
    call. Nothing is cached and no state is mutated.

    Args:
        x (array): Input of shape (B, K, W, H).
        gamma (array): Scale per channel, shape (K,).
        beta (array): Shift per channel, shape (K,).
        running_mean (array): Running mean per channel, shape (K,).
        running_var (array): Running variance per channel, shape (K,).
        epsilon (float): Added to the variance before the square root.
        out (array, optional): Buffer receiving the output.

    Returns:
        array: Output of shape (B, K, W, H).
    """
    inv_var = 1.0 / xp.sqrt(running_var + epsilon)
    x_hat = (x - channel_view(running_mean)) * channel_view(inv_var)
    return _write(out, channel_view(gamma) * x_hat + channel_view(beta))


def update_running_stats(running_mean, running_var, cache, momentum):
    """
    Blend the mini-batch statistics of `cache` into the running statistics, in place.

    The batch variance is Bessel-corrected (S / (S - 1)) before blending, so
    `cache.size` must be greater than one.
    """
    S = cache.size
    running_mean *= momentum
    running_mean += (1.0 - momentum) * cache.mean
    running_var *= momentum
    running_var += (1.0 - momentum) * (S / (S - 1) * cache.var)


def batch_norm_backward(errors, gamma, cache, out=None):
    """
    Gradient of the loss w.r.t. the batch norm input.

    Args:
        errors (array): Upstream gradient dL/d(output), shape (B, K, W, H).
        gamma (array): Scale per channel used in the forward pass, shape (K,).
        cache (BatchNormCache): Result of the matching training forward pass.
        out (array, optional): Buffer receiving the gradient.

    Returns:
        array: dL/d(input), shape (B, K, W, H).
    """
    S = cache.size
    x_hat = cache.x_hat

    dxhat = errors * channel_view(gamma)
    dxhat_sum = xp.sum(dxhat, axis=CHANNEL_AXES)
    dxhat_xhat_sum = xp.sum(dxhat * x_hat, axis=CHANNEL_AXES)

    scale = channel_view(cache.inv_var / S)
    grad = scale * (S * dxhat - channel_view(dxhat_sum) - x_hat * channel_view(dxhat_xhat_sum))
    return _write(out, grad)


def batch_norm_param_grads(errors, cache):
    """
    Gradients of the loss w.r.t. gamma and beta.

    Returns:
        tuple: (w_grad, b_grad), each of shape (K,).
    """
    w_grad = xp.sum(cache.x_hat * errors, axis=CHANNEL_AXES)
    b_grad = xp.sum(errors, axis=CHANNEL_AXES)
    return w_grad, b_grad
