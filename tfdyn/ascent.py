from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np
import pandas as pd

from tfdyn.gradient import NumericGradient
from tfdyn.linesearch import bounded_step, line_search
from tfdyn.logconf import setup_logger
from tfdyn.utils import format_duration

_logger = setup_logger()

EARLY_STOPPED = "early_stopped"
MAX_ITER = "max_iter"


@dataclass(frozen=True)
class IterationEvent:
    iteration: int
    value: float
    learning_rate: float
    ncores: int
    accepted: bool


@dataclass
class AscentResult:
    parameters: pd.Series
    objective_value: float
    initial_value: float
    iterations: int
    status: str
    history: pd.DataFrame = field(repr=False)

    def __getitem__(self, key):
        if key in ("parameters", "objective_value"):
            return getattr(self, key)
        raise KeyError(key)


class GradientAscent:
    """
    Local refinement of a branch model by numeric-gradient ascent.

    Each iteration estimates the gradient, picks a learning rate by bounded line
    search and moves the active coordinates inside the bounds. The run stops at
    the first iteration that fails to strictly improve the objective, keeping
    the previous point.

    Args:
        evaluator (ObjectiveEvaluator): Objective to maximise.
        gradient (callable | None): Gradient estimator with the NumericGradient call
            signature; built from the evaluator when omitted.
        callback (callable | None): Called with an IterationEvent once per iteration.
        logger (logging.Logger | None): Progress logger; the package logger when omitted.
    """

    def __init__(self, evaluator, gradient=None, callback: Optional[Callable[[IterationEvent], None]] = None,
                 logger=None):
        self.evaluator = evaluator
        self.gradient = gradient if gradient is not None else NumericGradient(evaluator)
        self.callback = callback
        self.logger = logger if logger is not None else _logger

    def _emit(self, event):
        self.logger.info(f"Grad | iter = {event.iteration} | Best = {event.value:.6f} | "
                    f"learning_rate = {event.learning_rate:.6f} | ncores = {event.ncores}")
        if self.callback is not None:
            self.callback(event)

    def run(self, iterations, alpha_lower=1e-5, alpha_upper=1e-3, alpha_guess=1e-4, init_theta=None,
            h_max=0.01, h_min_percent=0.01, seed=None, ncores=1):
        """
        Run the ascent.

        Args:
            iterations (int): Maximum number of iterations (>= 1).
            alpha_lower, alpha_upper, alpha_guess (float): Learning-rate search interval and guess.
            init_theta: Starting vector (dense or name-indexed); zeros when None.
            h_max (float): Finite-difference step ceiling.
            h_min_percent (float): Finite-difference step as a fraction of each bound range.
            seed: Passed unchanged to every gradient call of this run; drawn once when None.
            ncores (int): Workers for the gradient.
        Returns:
            AscentResult
        Raises:
            BoundsInfeasible: some lower bound exceeds its upper bound.
            MissingParameterKey: init_theta does not cover the model.
            WorkerFailure: a gradient task failed.
        """
        if int(iterations) != iterations or iterations < 1:
            raise ValueError(f"iterations must be a positive integer, got {iterations}")
        if not 0 < alpha_lower < alpha_upper:
            raise ValueError(f"Need 0 < alpha_lower < alpha_upper, got [{alpha_lower}, {alpha_upper}]")
        if not alpha_lower < alpha_guess < alpha_upper:
            raise ValueError(f"alpha_guess={alpha_guess} must lie strictly inside ({alpha_lower}, {alpha_upper})")
        if int(ncores) < 1:
            raise ValueError(f"ncores must be >= 1, got {ncores}")

        registry = self.evaluator.registry
        bounds = self.evaluator.bounds
        bounds.validate(registry.names)
        lower, upper = bounds.lower, bounds.upper

        if seed is None:
            seed = int(np.random.default_rng().integers(0, 2 ** 31 - 1))

        t0 = time.time()
        if init_theta is None:
            probe = self.gradient(np.array([]), h_max=h_max, h_min_percent=h_min_percent, seed=seed,
                                  ncores=ncores)
            theta = np.zeros(len(probe))
        else:
            theta = registry.densify(init_theta).copy()

        outside = np.flatnonzero((theta < lower) | (theta > upper))
        if outside.size:
            self.logger.warning(f"[Grad] {outside.size} starting value(s) lie outside their bounds, "
                           f"e.g. {registry.names[outside[0]]} = {theta[outside[0]]}; "
                           f"they move inside only once their gradient is nonzero.")

        f0 = self.evaluator(theta)
        initial_value = f0
        self.logger.info(f"[Grad] Start | n_params = {theta.size} | f0 = {f0:.6f} | seed = {seed}")

        rows = [{"iteration": 0, "value": f0, "learning_rate": np.nan, "accepted": True}]
        status = MAX_ITER
        done = 0
        for i in range(1, int(iterations) + 1):
            grad = self.gradient(theta, h_max=h_max, h_min_percent=h_min_percent, seed=seed, ncores=ncores)
            ls = line_search(self.evaluator, theta, grad, lower, upper,
                             alpha_lower=alpha_lower, alpha_upper=alpha_upper, alpha_guess=alpha_guess)
            done = i

            if ls.value <= f0:
                rows.append({"iteration": i, "value": f0, "learning_rate": ls.alpha, "accepted": False})
                self._emit(IterationEvent(i, f0, ls.alpha, int(ncores), False))
                status = EARLY_STOPPED
                break

            theta = bounded_step(theta, grad, ls.alpha, lower, upper)
            f0 = ls.value
            rows.append({"iteration": i, "value": f0, "learning_rate": ls.alpha, "accepted": True})
            self._emit(IterationEvent(i, f0, ls.alpha, int(ncores), True))

        self.logger.info(f"[Grad] Done | status = {status} | iterations = {done} | "
                    f"objective = {f0:.6f} | {format_duration(time.time() - t0)}")

        return AscentResult(
            parameters=registry.to_series(theta),
            objective_value=float(f0),
            initial_value=float(initial_value),
            iterations=done,
            status=status,
            history=pd.DataFrame(rows),
        )
