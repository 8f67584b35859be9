import numpy as np
from numba import njit

EPS = 1e-9
EXP_CLIP = 700.0


@njit(cache=False, fastmath=False, nogil=True)
def hill(x, kd, n):
    """
    Saturating Hill response x^n / (kd^n + x^n).

    Written as 1 / (1 + (kd / x)^n) with x and kd floored at EPS so that the
    response stays finite for any bounded (x, kd, n), including n == 0 (-> 0.5).

    Args:
        x (float): Signal.
        kd (float): Dissociation constant.
        n (float): Hill (sensitivity) coefficient.
    Returns:
        float: Response in [0, 1].
    """
    xs = x if x > EPS else EPS
    ks = kd if kd > EPS else EPS
    return 1.0 / (1.0 + (ks / xs) ** n)


@njit(cache=False, fastmath=False, nogil=True)
def coupling_rate(theta_s, tao, r1, r2, r3, r4, r5):
    """
    Regulation rate of a TF-TG pair from its prior regulatory strength.

    Generalised logistic centred at tao:
        R = r2 * r3 / (1 + r1 * exp(-r4 * (theta_s - tao))) ** (1 / r5)
    """
    z = -r4 * (theta_s - tao)
    if z > EXP_CLIP:
        z = EXP_CLIP
    elif z < -EXP_CLIP:
        z = -EXP_CLIP
    return r2 * r3 / (1.0 + r1 * np.exp(z)) ** (1.0 / r5)


@njit(cache=False, fastmath=False, nogil=True)
def bounded_response(s, u, u_tilde):
    """tanh(s * (u - u_tilde)), bounded in [-1, 1]."""
    return np.tanh(s * (u - u_tilde))


@njit(cache=False, fastmath=False, nogil=True)
def sample_var(x):
    # ddof=1; a single sample has no spread
    n = x.size
    if n < 2:
        return 0.0
    mean = 0.0
    for i in range(n):
        mean += x[i]
    mean /= n
    acc = 0.0
    for i in range(n):
        d = x[i] - mean
        acc += d * d
    return acc / (n - 1)
