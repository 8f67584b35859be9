import time

import numpy as np
import pandas as pd
import pytest

from tfdyn.objfn import Context, ObjectiveEvaluator


@pytest.fixture
def train_frame():
    # Two pairs sharing TF T1, three pseudotime points
    return pd.DataFrame(
        {
            "TFE_1": [1.0, 0.0], "TFE_2": [2.0, 0.0], "TFE_3": [4.0, 0.0],
            "TGA_1": [0.0, 1.0], "TGA_2": [1.0, 0.0], "TGA_3": [1.0, 2.0],
            "TGE_1": [2.0, 1.0], "TGE_2": [2.0, 1.0], "TGE_3": [3.0, 1.0],
            "theta_s": [0.5, -0.5],
        },
        index=["b1_G1~T1_x", "b1_G2~T1_y"],
    )


@pytest.fixture
def tslot():
    return np.ones(3)


@pytest.fixture
def role_bounds():
    return {g: (-10.0, 10.0) for g in ("r", "alpha", "beta", "s", "u", "v", "E~")}


@pytest.fixture
def context(train_frame, tslot, role_bounds):
    return Context.from_frames(train_frame, tslot, tao=0.0, role_bounds=role_bounds)


@pytest.fixture
def evaluator(context):
    return ObjectiveEvaluator(context)


class ConstantEvaluator:
    """Objective that ignores its argument."""

    def __init__(self, registry, bounds, value=0.0):
        self.registry = registry
        self.bounds = bounds
        self.value = value
        self.n_calls = 0

    def __call__(self, theta):
        self.n_calls += 1
        return self.value


class RecordingEvaluator:
    """Wraps an evaluator and keeps a copy of every evaluated point."""

    def __init__(self, inner):
        self.inner = inner
        self.points = []

    @property
    def registry(self):
        return self.inner.registry

    @property
    def bounds(self):
        return self.inner.bounds

    def __call__(self, theta):
        self.points.append(np.array(theta, dtype=float, copy=True))
        return self.inner(theta)


class FailingEvaluator:
    """Raises whenever coordinate ``target`` moves away from zero."""

    def __init__(self, inner, target):
        self.inner = inner
        self.target = target

    @property
    def registry(self):
        return self.inner.registry

    @property
    def bounds(self):
        return self.inner.bounds

    def __call__(self, theta):
        if theta[self.target] != 0:
            raise FloatingPointError("boom")
        return self.inner(theta)


class SlowEvaluator:
    """Sleeps ``delay`` seconds on every point except the all-zero start."""

    def __init__(self, inner, delay):
        self.inner = inner
        self.delay = delay

    @property
    def registry(self):
        return self.inner.registry

    @property
    def bounds(self):
        return self.inner.bounds

    def __call__(self, theta):
        if np.any(theta):
            time.sleep(self.delay)
        return self.inner(theta)
