import numpy as np
import pytest

import LunarNorm.core.backend.backend as backend
from LunarNorm.core.backend import config
from LunarNorm.core import gpu_scope, precision_scope
from LunarNorm.nn import TrainingContext
from LunarNorm.nn.layers import BatchNorm4D


def test_missing_config_file_falls_back_to_defaults(tmp_path, capsys):
    cfg = config.load_yaml_config(str(tmp_path / "missing.yaml"))

    assert cfg == {}
    assert "No config found" in capsys.readouterr().out


def test_yaml_config_and_cli_overrides(tmp_path, monkeypatch):
    path = tmp_path / "lunarnorm_config.yaml"
    path.write_text("bn_momentum: 0.8\nbn_epsilon: 1.0e-5\ndtype: float64\n")
    monkeypatch.setenv("LUNARNORM_CONFIG", str(path))

    cfg = config.load_config(["--bn_momentum", "0.5", "--unrelated-flag"])

    assert cfg["bn_momentum"] == 0.5
    assert cfg["bn_epsilon"] == pytest.approx(1e-5)
    assert cfg["dtype"] == "float64"
    assert cfg["device"] == "cpu"


def test_defaults_without_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("LUNARNORM_CONFIG", str(tmp_path / "missing.yaml"))

    cfg = config.load_config([])

    assert cfg == config.DEFAULTS


def test_yaml_exponents_without_dot_are_numbers(tmp_path, monkeypatch):
    path = tmp_path / "lunarnorm_config.yaml"
    path.write_text("bn_epsilon: 1e-8\nbn_momentum: 9e-1\nseed: 42\n")
    monkeypatch.setenv("LUNARNORM_CONFIG", str(path))

    cfg = config.load_config([])

    assert isinstance(cfg["bn_epsilon"], float)
    assert cfg["bn_epsilon"] == pytest.approx(1e-8)
    assert cfg["bn_momentum"] == pytest.approx(0.9)
    assert cfg["seed"] == 42

    monkeypatch.setitem(config.CONFIG, "bn_epsilon", cfg["bn_epsilon"])
    monkeypatch.setitem(config.CONFIG, "bn_momentum", cfg["bn_momentum"])
    layer = BatchNorm4D()

    assert layer.epsilon == pytest.approx(1e-8)
    assert layer.momentum == pytest.approx(0.9)


def test_non_numeric_yaml_value_is_rejected(tmp_path, monkeypatch):
    path = tmp_path / "lunarnorm_config.yaml"
    path.write_text("bn_epsilon: tiny\n")
    monkeypatch.setenv("LUNARNORM_CONFIG", str(path))

    with pytest.raises(ValueError, match="bn_epsilon"):
        config.load_config([])


def test_layer_defaults_come_from_config(monkeypatch):
    monkeypatch.setitem(config.CONFIG, "bn_momentum", 0.75)
    monkeypatch.setitem(config.CONFIG, "bn_epsilon", 1e-3)

    layer = BatchNorm4D()

    assert layer.momentum == 0.75
    assert layer.epsilon == 1e-3


def test_precision_scope_sets_layer_and_context_dtype():
    previous = backend.GLOBAL_DTYPE

    with precision_scope("float64"):
        layer = BatchNorm4D()
        layer.init_layer(2, 2, 2)
    context = TrainingContext(layer, 3)

    assert backend.GLOBAL_DTYPE == previous
    assert layer.W.dtype == np.float64
    assert layer.running_var.dtype == np.float64
    assert context.input.dtype == np.float64
    assert context.w_grad.dtype == np.float64


def test_explicit_dtype_wins_over_global():
    layer = BatchNorm4D(dtype=np.float64)
    layer.init_layer(1, 2, 2)

    assert layer.W.dtype == np.float64


def test_invalid_dtypes_are_rejected():
    with pytest.raises(ValueError):
        precision_scope("int8")
    with pytest.raises(ValueError):
        backend.set_dtype("float16")


def test_set_dtype_round_trip():
    previous = backend.GLOBAL_DTYPE
    try:
        backend.set_dtype("float64")
        assert backend.GLOBAL_DTYPE == np.float64
        assert backend.DTYPE == np.float64
    finally:
        backend.set_dtype("float32" if previous == np.float32 else "float64")


def test_cpu_backend_by_default():
    assert backend.get_device() == "cpu"
    assert backend.device_name() == "CPU (NumPy)"
    assert isinstance(backend.to_numpy(backend.xp.zeros(2)), np.ndarray)


def test_context_requires_initialized_layer():
    with pytest.raises(ValueError):
        TrainingContext(BatchNorm4D(), 4)


def test_gpu_scope_without_cupy():
    if backend.gpu_available():
        pytest.skip("CuPy is installed")

    with pytest.raises(RuntimeError):
        with gpu_scope():
            pass
    with pytest.raises(ImportError):
        backend.use_gpu()
