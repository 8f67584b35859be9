from dataclasses import dataclass

import numpy as np
from scipy.optimize import minimize_scalar


@dataclass(frozen=True)
class LineSearchResult:
    alpha: float
    value: float
    nfev: int


def bounded_step(theta, grad, alpha, lower, upper):
    """
    Ascent step restricted to active coordinates (grad != 0), clipped to the box.

    Inactive coordinates are copied through untouched.
    """
    theta = np.asarray(theta, dtype=np.float64)
    grad = np.asarray(grad, dtype=np.float64)
    active = grad != 0
    out = theta.copy()
    out[active] = np.minimum(np.maximum(theta[active] + alpha * grad[active], lower[active]), upper[active])
    return out


def line_search(evaluator, theta, grad, lower, upper, alpha_lower=1e-5, alpha_upper=1e-3, alpha_guess=1e-4,
                xatol=None, maxiter=500):
    """
    Learning rate in [alpha_lower, alpha_upper] maximising the objective along grad.

    Uses scipy's bounded Brent method (golden section with parabolic
    interpolation) on the negated objective. The starting guess is evaluated as
    well and kept if it beats the optimiser's answer.

    Args:
        evaluator: Callable objective (larger is better).
        theta, grad (np.ndarray): Current point and ascent direction.
        lower, upper (np.ndarray): Box constraints.
        alpha_lower, alpha_upper (float): Search interval, 0 < alpha_lower < alpha_upper.
        alpha_guess (float): Starting guess strictly inside the interval.
        xatol (float | None): Absolute tolerance on alpha; defaults to 1e-5 of the interval width.
        maxiter (int): Maximum optimiser iterations.
    Returns:
        LineSearchResult: best alpha, objective there and number of evaluations.
    """
    if not 0 < alpha_lower < alpha_upper:
        raise ValueError(f"Need 0 < alpha_lower < alpha_upper, got [{alpha_lower}, {alpha_upper}]")
    if not alpha_lower < alpha_guess < alpha_upper:
        raise ValueError(f"alpha_guess={alpha_guess} must lie strictly inside ({alpha_lower}, {alpha_upper})")
    if xatol is None:
        xatol = 1e-5 * (alpha_upper - alpha_lower)

    def neg_objective(alpha):
        return -evaluator(bounded_step(theta, grad, alpha, lower, upper))

    res = minimize_scalar(
        neg_objective,
        bounds=(alpha_lower, alpha_upper),
        method="bounded",
        options={"xatol": xatol, "maxiter": maxiter},
    )
    best_alpha, best_value = float(res.x), -float(res.fun)

    guess_value = -neg_objective(alpha_guess)
    if guess_value > best_value:
        best_alpha, best_value = float(alpha_guess), guess_value

    return LineSearchResult(alpha=best_alpha, value=best_value, nfev=int(res.nfev) + 1)
