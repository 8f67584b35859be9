"""
Configuration for tfdyn.

Values come from ``config.toml`` (searched upwards from the working directory,
then from this package) merged over the built-in defaults below.
"""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from tfdyn.utils import deep_merge

CONFIG_ENV = "TFDYN_CONFIG"

DEFAULTS: dict[str, Any] = {
    "general": {
        "output_directory": "results",
        "log_directory": "results/logs",
    },
    "model": {
        "tao": 0.0,
        "tslot": [],
        "r1": 200.0,
        "r3": 1.0,
        "r4": 1000.0,
        "r5": 1.0,
        "inner_scale": 100.0,
        "outer_scale": -100.0,
    },
    "optimization": {
        "iterations": 3,
        "alpha_lower": 1e-5,
        "alpha_upper": 1e-3,
        "alpha_guess": 1e-4,
        "h_max": 0.01,
        "h_min_percent": 0.01,
        "seed": "random",
        "cores": 1,
        "scheme": "forward",
        "backend": "process",
        "timeout": 0,
    },
    "bounds": {},
}


@dataclass(frozen=True)
class TFDynConfig:
    output_directory: str | Path
    log_directory: str | Path

    tao: float
    tslot: np.ndarray | None
    r1: float
    r3: float
    r4: float
    r5: float
    inner_scale: float
    outer_scale: float

    iterations: int
    alpha_lower: float
    alpha_upper: float
    alpha_guess: float
    h_max: float
    h_min_percent: float
    seed: int | float | None
    cores: int
    scheme: str
    backend: str
    timeout: float | None

    bounds_config: dict[str, tuple[float, float]]


def find_config(name: str = "config.toml") -> Path | None:
    """
    Locate the configuration file.

    ``$TFDYN_CONFIG`` wins; otherwise walk upwards from the working directory,
    then from this file, until ``config.toml`` is found.
    """
    env = os.environ.get(CONFIG_ENV)
    if env:
        return Path(env)
    for start in (Path.cwd(), Path(__file__).resolve().parent):
        for p in [start, *start.parents]:
            if (p / name).is_file():
                return p / name
    return None


def parse_seed(value: Any) -> int | float | None:
    """
    Seed from config or command line: 'random' (or None) gives None, integral
    values stay int, anything else is kept as a float (e.g. ``0.4823``).
    """
    if value is None or (isinstance(value, str) and value.strip().lower() == "random"):
        return None
    if isinstance(value, str):
        value = value.strip()
        try:
            return int(value)
        except ValueError:
            value = float(value)
    if isinstance(value, bool):
        raise ValueError(f"seed must be numeric or 'random', got: {value}")
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    return int(value)


def _parse_bounds(b: dict[str, Any]) -> dict[str, tuple[float, float]]:
    bounds_config: dict[str, tuple[float, float]] = {}
    for k, v in b.items():
        if not (isinstance(v, list) and len(v) == 2):
            raise ValueError(f"bounds.{k} must be a 2-element array [min, max], got: {v}")
        lo, hi = float(v[0]), float(v[1])
        if lo > hi:
            raise ValueError(f"bounds.{k} invalid: min > max ({lo} > {hi})")
        bounds_config[k] = (lo, hi)
    return bounds_config


def config_from_dict(raw: dict[str, Any]) -> TFDynConfig:
    cfg = deep_merge(DEFAULTS, raw)
    gen, mod, opt = cfg["general"], cfg["model"], cfg["optimization"]

    seed = parse_seed(opt["seed"])

    tslot = mod["tslot"]
    tslot = np.asarray(tslot, dtype=float) if len(tslot) else None

    timeout = float(opt["timeout"])

    scheme = str(opt["scheme"]).lower()
    if scheme not in ("forward", "central"):
        raise ValueError(f"optimization.scheme must be 'forward' or 'central', got: {scheme}")
    backend = str(opt["backend"]).lower()
    if backend not in ("process", "thread"):
        raise ValueError(f"optimization.backend must be 'process' or 'thread', got: {backend}")

    return TFDynConfig(
        output_directory=gen["output_directory"],
        log_directory=gen["log_directory"],
        tao=float(mod["tao"]),
        tslot=tslot,
        r1=float(mod["r1"]),
        r3=float(mod["r3"]),
        r4=float(mod["r4"]),
        r5=float(mod["r5"]),
        inner_scale=float(mod["inner_scale"]),
        outer_scale=float(mod["outer_scale"]),
        iterations=int(opt["iterations"]),
        alpha_lower=float(opt["alpha_lower"]),
        alpha_upper=float(opt["alpha_upper"]),
        alpha_guess=float(opt["alpha_guess"]),
        h_max=float(opt["h_max"]),
        h_min_percent=float(opt["h_min_percent"]),
        seed=seed,
        cores=int(opt["cores"]),
        scheme=scheme,
        backend=backend,
        timeout=timeout if timeout > 0 else None,
        bounds_config=_parse_bounds(cfg["bounds"] or {}),
    )


def load_config_toml(path: str | Path | None = None) -> TFDynConfig:
    """
    Load a TOML configuration, falling back to the defaults when no file exists.

    Args:
        path: Explicit file; if None, ``find_config()`` is used.
    Returns:
        TFDynConfig
    """
    path = find_config() if path is None else Path(path)
    if path is None:
        return config_from_dict({})
    with Path(path).open("rb") as f:
        raw = tomllib.load(f)
    return config_from_dict(raw)


cfg = load_config_toml()

LOG_DIR = cfg.log_directory
