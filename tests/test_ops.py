import numpy as np

from LunarNorm.core import ops


def _reference_forward(x, gamma, beta, epsilon):
    mean = x.mean(axis=(0, 2, 3), keepdims=True)
    var = x.var(axis=(0, 2, 3), keepdims=True)
    x_hat = (x - mean) / np.sqrt(var + epsilon)
    return gamma.reshape(1, -1, 1, 1) * x_hat + beta.reshape(1, -1, 1, 1), x_hat


def test_channel_view_shape():
    assert ops.channel_view(np.arange(5.0)).shape == (1, 5, 1, 1)


def test_observations_counts_batch_and_spatial_axes():
    assert ops.observations(np.zeros((3, 7, 4, 5))) == 60


def test_train_kernel_matches_reference(rng):
    x = rng.normal(size=(4, 3, 2, 5))
    gamma = rng.uniform(0.5, 2.0, size=3)
    beta = rng.normal(size=3)

    out, cache = ops.batch_norm_train(x, gamma, beta, 1e-8)
    expected, x_hat = _reference_forward(x, gamma, beta, 1e-8)

    np.testing.assert_allclose(out, expected)
    np.testing.assert_allclose(cache.x_hat, x_hat)
    np.testing.assert_allclose(cache.var, x.var(axis=(0, 2, 3)))
    np.testing.assert_allclose(cache.inv_var, 1.0 / np.sqrt(x.var(axis=(0, 2, 3)) + 1e-8))
    assert cache.size == 40


def test_train_kernel_writes_into_buffers(rng):
    x = rng.normal(size=(2, 2, 3, 3))
    out = np.empty_like(x)
    x_hat = np.empty_like(x)

    result, cache = ops.batch_norm_train(x, np.ones(2), np.zeros(2), 1e-8, out=out, x_hat=x_hat)

    assert result is out
    assert cache.x_hat is x_hat
    np.testing.assert_allclose(out, x_hat)


def test_inference_kernel_with_unit_statistics_is_affine(rng):
    x = rng.normal(size=(2, 2, 2, 2))
    gamma = np.array([2.0, 3.0])
    beta = np.array([-1.0, 1.0])

    out = ops.batch_norm_inference(x, gamma, beta, np.zeros(2), np.ones(2), 0.0)

    np.testing.assert_allclose(out, gamma.reshape(1, 2, 1, 1) * x + beta.reshape(1, 2, 1, 1))


def test_update_running_stats_is_in_place(rng):
    x = rng.normal(size=(3, 2, 2, 2))
    _, cache = ops.batch_norm_train(x, np.ones(2), np.zeros(2), 1e-8)
    running_mean = np.full(2, 1.0)
    running_var = np.full(2, 2.0)

    ops.update_running_stats(running_mean, running_var, cache, 0.5)

    np.testing.assert_allclose(running_mean, 0.5 + 0.5 * x.mean(axis=(0, 2, 3)))
    np.testing.assert_allclose(running_var, 1.0 + 0.5 * x.var(axis=(0, 2, 3), ddof=1))


def test_backward_kernel_matches_chain_rule(rng):
    x = rng.normal(size=(3, 2, 2, 2))
    gamma = np.array([1.2, -0.4])
    errors = rng.normal(size=x.shape)
    epsilon = 1e-8
    _, cache = ops.batch_norm_train(x, gamma, np.zeros(2), epsilon)

    grad = ops.batch_norm_backward(errors, gamma, cache)

    # Explicit chain rule through the batch mean and variance
    axes = (0, 2, 3)
    N = 12
    mean = x.mean(axis=axes, keepdims=True)
    var = x.var(axis=axes, keepdims=True)
    std_inv = 1.0 / np.sqrt(var + epsilon)
    dx_hat = errors * gamma.reshape(1, 2, 1, 1)
    d_var = np.sum(dx_hat * (x - mean), axis=axes, keepdims=True) * -0.5 * std_inv ** 3
    d_mean = (np.sum(-dx_hat * std_inv, axis=axes, keepdims=True)
              + d_var * np.mean(-2.0 * (x - mean), axis=axes, keepdims=True))
    expected = dx_hat * std_inv + d_var * 2.0 * (x - mean) / N + d_mean / N

    np.testing.assert_allclose(grad, expected, atol=1e-10)


def test_param_grads(rng):
    x = rng.normal(size=(2, 3, 2, 2))
    errors = rng.normal(size=x.shape)
    _, cache = ops.batch_norm_train(x, np.ones(3), np.zeros(3), 1e-8)

    w_grad, b_grad = ops.batch_norm_param_grads(errors, cache)

    np.testing.assert_allclose(w_grad, np.sum(cache.x_hat * errors, axis=(0, 2, 3)))
    np.testing.assert_allclose(b_grad, np.sum(errors, axis=(0, 2, 3)))
