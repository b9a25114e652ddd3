import numpy as np
import LunarNorm.core.backend.backend as backend
from LunarNorm.nn import TrainingContext

xp = backend.xp

def _loss(layer, x, errors):
    output, _ = layer.train_forward(x)
    return float(xp.sum(output * errors))

def gradient_check(layer, x, errors=None, epsilon=1e-5, tolerance=1e-4, num_checks=10):
    """
    Gradient checker for LunarNorm layers.

    The scalar loss is sum(output * errors), so `errors` is exactly the
    upstream gradient fed to the analytic backward pass. With the default
    (all ones) the loss is the sum of outputs.

    Args:
        layer: Initialized layer with train_forward(), backward(), compute_gradients() and W, b
        x: input batch of shape (B, K, W, H)
        errors: upstream gradient, same shape as x (default: ones)
        epsilon: small step for finite differences
        tolerance: maximum allowed absolute error
        num_checks: how many random entries to test per quantity

    Returns:
        True if gradients are correct, False otherwise
    """
    x = x.copy()
    if errors is None:
        errors = xp.ones_like(x)

    # Finite differences re-run the training forward pass; keep the running statistics intact
    running_mean = layer.running_mean.copy()
    running_var = layer.running_var.copy()
    layer.backup_weights()

    try:
        # Forward + backward to compute analytical grads
        context = TrainingContext(layer, x.shape[0])
        context.input = x
        context.errors = errors
        layer.train_batch(context)
        grad_input = layer.backward(context)
        layer.compute_gradients(context)

        print(f"Initial loss: {_loss(layer, x, errors):.6f}")

        passed = True
        for name, target, grad in [
            ("input", x, grad_input),
            ("W", layer.W, context.w_grad),
            ("b", layer.b, context.b_grad),
        ]:
            # Pick random indices to check
            for _ in range(num_checks):
                idx = tuple(int(np.random.randint(s)) for s in target.shape)
                old_val = target[idx].copy()

                # Numerical gradient; the step is what the array's dtype actually stored
                target[idx] = old_val + epsilon
                plus_val = float(target[idx])
                loss_plus = _loss(layer, x, errors)

                target[idx] = old_val - epsilon
                minus_val = float(target[idx])
                loss_minus = _loss(layer, x, errors)

                target[idx] = old_val  # restore

                g_num = (loss_plus - loss_minus) / (plus_val - minus_val)
                g_anal = float(grad[idx])
                err = abs(g_num - g_anal)

                print(f"[{layer.__class__.__name__}.{name}{idx}] "
                      f"anal={g_anal:.6e}, num={g_num:.6e}, err={err:.2e}")

                if err > tolerance:
                    passed = False
    finally:
        layer.restore_weights()
        layer.running_mean[...] = running_mean
        layer.running_var[...] = running_var

    if passed:
        print("All gradients check out!")
    else:
        print("Gradient check FAILED!")
    return passed
