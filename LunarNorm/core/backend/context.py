class gpu_scope:
    """Context manager to temporarily switch computations to GPU."""
    def __enter__(self):
        import LunarNorm.core.backend.backend as backend
        self.prev_using = backend.USING

        if not backend.gpu_available():
            raise RuntimeError("GPU not available.")
        backend.use_gpu()
        return backend.xp

    def __exit__(self, exc_type, exc_value, tb):
        import LunarNorm.core.backend.backend as backend
        if self.prev_using == "gpu":
            backend.synchronize()
        else:
            backend.use_cpu()


class precision_scope:
    """
    Temporarily change the global floating-point precision (dtype) inside a `with` block.

    This affects the dtype layers allocate their state with when they are
    initialized inside the block (gamma, beta, running statistics) and the
    buffers of training contexts built for those layers.

    Args:
        dtype (str or dtype): Precision to use ("float32", "float64", xp.float64, etc.)
    """
    def __init__(self, dtype="float32"):
        import LunarNorm.core.backend.backend as backend
        # Support both string and actual dtype
        if isinstance(dtype, str):
            dtype_map = {
                "float32": backend.xp.float32,
                "float64": backend.xp.float64,
            }
            if dtype not in dtype_map:
                raise ValueError(f"Unsupported dtype '{dtype}'. Use one of: {list(dtype_map.keys())}")
            self.new_dtype = dtype_map[dtype]
        else:
            self.new_dtype = dtype

    def __enter__(self):
        import LunarNorm.core.backend.backend as backend
        self.prev_dtype = backend.GLOBAL_DTYPE
        backend.GLOBAL_DTYPE = self.new_dtype
        return backend.GLOBAL_DTYPE

    def __exit__(self, exc_type, exc_value, tb):
        import LunarNorm.core.backend.backend as backend
        backend.GLOBAL_DTYPE = self.prev_dtype
