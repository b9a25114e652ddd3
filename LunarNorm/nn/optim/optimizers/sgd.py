from LunarNorm.nn.optim.optimizers import BaseOptimizer

class SGD(BaseOptimizer):
    def __init__(self, learning_rate=0.01, weight_decay=0.0):
        super().__init__(learning_rate, weight_decay=weight_decay)

    def step(self, pairs):
        for layer, context in self._iter_layers(pairs):
            lr = self._get_lr(layer)
            layer.W -= lr * context.w_grad
            layer.b -= lr * context.b_grad
            self._apply_weight_decay(layer, lr)
