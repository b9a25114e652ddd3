import os
import yaml
import argparse
from pathlib import Path

DEFAULT_CONFIG_PATH = Path(os.getenv("LUNARNORM_CONFIG", "lunarnorm_config.yaml"))

NUMERIC_KEYS = {"seed": int, "bn_momentum": float, "bn_epsilon": float}

DEFAULTS = {
    "device": "cpu",
    "dtype": "float32",
    "seed": 997,
    "bn_momentum": 0.9,
    "bn_epsilon": 1e-8,
}

def load_yaml_config(path: str = None) -> dict:
    """Load configuration from a YAML file."""
    cfg_path = Path(path or os.getenv("LUNARNORM_CONFIG", DEFAULT_CONFIG_PATH))
    if not cfg_path.exists():
        print(f"[LunarNorm] No config found at {cfg_path}. Using defaults.")
        return {}
    with open(cfg_path, "r") as f:
        return yaml.safe_load(f) or {}

def parse_cli_args(argv=None) -> dict:
    """Parse CLI overrides (used for runtime config tweaking)."""
    parser = argparse.ArgumentParser(description="LunarNorm Config Override",
                                     add_help=False, allow_abbrev=False)

    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument("--device", type=str, choices=["cpu", "gpu"], help="Device to use")
    parser.add_argument("--dtype", type=str, choices=["float32", "float64"], help="Floating point precision")
    parser.add_argument("--seed", type=int, help="Random seed")
    parser.add_argument("--bn_momentum", type=float, help="Default batch norm momentum")
    parser.add_argument("--bn_epsilon", type=float, help="Default batch norm epsilon")

    args, _ = parser.parse_known_args(argv)

    return {key: value for key, value in vars(args).items() if value is not None}

def merge_configs(base: dict, override: dict) -> dict:
    """Merge CLI overrides into YAML base config (CLI wins)."""
    final = base.copy()
    final.update(override)
    return final

def coerce_numeric(cfg: dict) -> dict:
    """Cast numeric keys; YAML reads exponents without a dot (1e-8) as strings."""
    for key, cast in NUMERIC_KEYS.items():
        if key in cfg and not isinstance(cfg[key], bool):
            try:
                cfg[key] = cast(cfg[key])
            except (TypeError, ValueError):
                raise ValueError(f"config key '{key}' must be a number, got {cfg[key]!r}") from None
    return cfg

def load_config(argv=None) -> dict:
    """Main config loader: defaults + YAML + CLI overrides."""
    cli = parse_cli_args(argv)
    yaml_cfg = load_yaml_config(cli.get("config"))
    return coerce_numeric(merge_configs(merge_configs(DEFAULTS, yaml_cfg), cli))

# === The global CONFIG dict you import elsewhere ===
CONFIG = load_config()
