from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from numba import njit

from tfdyn.cache import (R2_TG, R2_TF, S1_TG, S1_TF, S2_TG, S2_TF, U11, U12, U21, U22, U311, U312, U321, U322,
                         U331, U332, V1, V2, V3, A1_TG, A1_TF, A2_TG, A2_TF, B1_TG, B1_TF, B2_TG, B2_TF, B3_TG,
                         EG_TG, EF_TF, prepare_index_arrays)
from tfdyn.config import cfg
from tfdyn.errors import DegenerateSeriesError, MissingParameterKey
from tfdyn.io import parse_pair_key, split_channels
from tfdyn.kinetics import bounded_response, coupling_rate, hill, sample_var
from tfdyn.params import Bounds, ParameterRegistry


# -------------------------------
# Per-pair objective kernel
# -------------------------------
@njit(cache=False, fastmath=False, nogil=True)
def pair_terms(theta, tfe, tga, tge, theta_s, scalar_idx, slot_idx, tslot,
               tao, r1, r3, r4, r5, inner_scale):
    """
    Weighted squared one-step prediction error plus variance penalties, per TF-TG pair.

    Parameters:
      theta        : Dense parameter vector.
      tfe, tga, tge: (n_pairs x L) observed TF expression, TG activity, TG expression.
      theta_s      : (n_pairs,) prior regulatory strength.
      scalar_idx   : (n_pairs x N_SCALAR) registry indices of per-entity scalars.
      slot_idx     : (n_pairs x N_SLOT x L-1) registry indices of per-slot parameters.
      tslot        : (L,) per-timepoint weights of the TG expression drive.
      tao, r1, r3, r4, r5 : fixed constants of the coupling rate.
      inner_scale  : multiplier of the averaged one-step error.

    Returns:
      (n_pairs,) array of pair contributions (before the outer scaling).
    """
    n_pairs = tfe.shape[0]
    m = tfe.shape[1] - 1
    out = np.empty(n_pairs)
    beta1 = np.empty(m)
    beta2 = np.empty(m)
    beta3 = np.empty(m)
    e_tg = np.empty(m)
    e_tf = np.empty(m)

    for p in range(n_pairs):
        si = scalar_idx[p]
        sl = slot_idx[p]

        r2 = (theta[si[R2_TG]] + theta[si[R2_TF]]) / 2
        R = coupling_rate(theta_s[p], tao, r1, r2, r3, r4, r5)
        s1 = (theta[si[S1_TG]] + theta[si[S1_TF]]) / 2
        s2 = (theta[si[S2_TG]] + theta[si[S2_TF]]) / 2

        u11 = theta[si[U11]]
        u12 = theta[si[U12]]
        u21 = theta[si[U21]]
        u22 = theta[si[U22]]
        u311 = theta[si[U311]]
        u312 = theta[si[U312]]
        u321 = theta[si[U321]]
        u322 = theta[si[U322]]
        u331 = theta[si[U331]]
        u332 = theta[si[U332]]
        v1 = theta[si[V1]]
        v2 = theta[si[V2]]
        v3 = theta[si[V3]]

        err = 0.0
        for j in range(m):
            alpha1 = (theta[sl[A1_TG, j]] + theta[sl[A1_TF, j]]) / 2
            alpha2 = (theta[sl[A2_TG, j]] + theta[sl[A2_TF, j]]) / 2
            b1 = (theta[sl[B1_TG, j]] + theta[sl[B1_TF, j]]) / 2
            b2 = (theta[sl[B2_TG, j]] + theta[sl[B2_TF, j]]) / 2
            b3 = theta[sl[B3_TG, j]]
            eg = theta[sl[EG_TG, j]]
            ef = theta[sl[EF_TF, j]]
            beta1[j] = b1
            beta2[j] = b2
            beta3[j] = b3
            e_tg[j] = eg
            e_tf[j] = ef

            U1_tilde = hill(eg, u11, u12)
            U2_tilde = hill(ef, u21, u22)
            U1 = hill(tge[p, j], u11, u12)
            U2 = hill(tfe[p, j], u21, u22)
            U31 = hill(tga[p, j], u311, u312)
            U32 = hill(tge[p, j], u321, u322)
            U33 = hill(eg, u331, u332)

            d_tfe = tfe[p, j] + alpha1 * R * bounded_response(s1, U1, U1_tilde) + b1 - tfe[p, j + 1]
            d_tga = tga[p, j] + alpha2 * R * bounded_response(s2, U2, U2_tilde) + b2 - tga[p, j + 1]
            d_tge = tge[p, j] + R * (v1 * U31 - v2 * U32 - v3 * U33) * tslot[j + 1] + b3 - tge[p, j + 1]

            err += 2 * d_tfe ** 2 + 2 * d_tga ** 2 + d_tge ** 2

        out[p] = (inner_scale * (err / m)
                  + sample_var(beta1) + sample_var(beta2) + sample_var(beta3)
                  + sample_var(e_tg) + sample_var(e_tf))
    return out


@njit(cache=False, fastmath=False, nogil=True)
def objective_(theta, tfe, tga, tge, theta_s, scalar_idx, slot_idx, tslot,
               tao, r1, r3, r4, r5, inner_scale, outer_scale):
    terms = pair_terms(theta, tfe, tga, tge, theta_s, scalar_idx, slot_idx, tslot,
                       tao, r1, r3, r4, r5, inner_scale)
    total = 0.0
    for p in range(terms.size):
        total += terms[p]
    return outer_scale * total


def _readonly(a):
    a = np.ascontiguousarray(a)
    a.flags.writeable = False
    return a


@dataclass(frozen=True, eq=False)
class Context:
    """
    Everything the objective needs besides the parameter vector, fixed for one branch.

    Pairs are stored sorted by key, so the objective does not depend on the
    row order of the training table.
    """
    registry: ParameterRegistry
    bounds: Bounds
    pair_keys: tuple
    pairs: tuple
    tfe: np.ndarray
    tga: np.ndarray
    tge: np.ndarray
    theta_s: np.ndarray
    scalar_idx: np.ndarray
    slot_idx: np.ndarray
    tslot: np.ndarray
    tao: float
    r1: float = 200.0
    r3: float = 1.0
    r4: float = 1000.0
    r5: float = 1.0
    inner_scale: float = 100.0
    outer_scale: float = -100.0

    @property
    def n_pairs(self):
        return len(self.pair_keys)

    @property
    def n_timepoints(self):
        return self.tfe.shape[1]

    @classmethod
    def from_frames(cls, train, tslot, tao=None, lower=None, upper=None, role_bounds=None, **constants):
        """
        Build a context from a training table and bounds.

        Args:
            train (pd.DataFrame): One row per pair (index ``..._TG~TF_...``), channel and ``theta_s`` columns.
            tslot (array-like): Per-timepoint weights, one per pseudotime point.
            tao (float): Centre of the coupling-rate logistic; defaults to the configured value.
            lower, upper (mapping): Name-keyed bounds covering every model parameter.
            role_bounds (dict): Alternative to lower/upper, ``{"alpha": (lo, hi), ...}`` per role or group.
            **constants: Overrides of r1, r3, r4, r5, inner_scale, outer_scale.
        Raises:
            DegenerateSeriesError: fewer than two pseudotime points, or unusable series.
            MissingParameterKey: bounds do not cover the model.
        """
        if train.index.has_duplicates:
            raise ValueError("Training data has duplicate pair keys.")
        if len(train) == 0:
            raise DegenerateSeriesError("Training data has no pairs.")
        train = train.sort_index()

        keys = tuple(str(k) for k in train.index)
        pairs = tuple(parse_pair_key(k) for k in keys)
        tfe, tga, tge, theta_s = split_channels(train)
        L = tfe.shape[1]

        tslot = np.asarray(tslot, dtype=np.float64)
        if tslot.shape != (L,):
            raise ValueError(f"tslot must hold one weight per pseudotime point ({L}), got shape {tslot.shape}.")

        registry = ParameterRegistry([tg for tg, _ in pairs], [tf for _, tf in pairs], n_slots=L - 1)
        if role_bounds is not None:
            bounds = Bounds.from_roles(registry, role_bounds)
        elif lower is not None and upper is not None:
            bounds = Bounds.from_mapping(registry, lower, upper)
        else:
            raise MissingParameterKey("No bounds given: pass lower/upper mappings or role_bounds.")

        scalar_idx, slot_idx = prepare_index_arrays(registry, pairs)

        model = {
            "r1": cfg.r1, "r3": cfg.r3, "r4": cfg.r4, "r5": cfg.r5,
            "inner_scale": cfg.inner_scale, "outer_scale": cfg.outer_scale,
        }
        unknown = set(constants) - set(model)
        if unknown:
            raise TypeError(f"Unknown model constants: {sorted(unknown)}")
        model.update({k: float(v) for k, v in constants.items()})

        return cls(
            registry=registry,
            bounds=bounds,
            pair_keys=keys,
            pairs=pairs,
            tfe=_readonly(tfe),
            tga=_readonly(tga),
            tge=_readonly(tge),
            theta_s=_readonly(theta_s),
            scalar_idx=_readonly(scalar_idx),
            slot_idx=_readonly(slot_idx),
            tslot=_readonly(tslot),
            tao=float(cfg.tao if tao is None else tao),
            **model,
        )


class ObjectiveEvaluator:
    """
    Fitness of a parameter vector on one branch; larger is better.

    Instances are picklable and safe to share read-only across worker processes.
    """

    def __init__(self, context):
        self.context = context

    @property
    def registry(self):
        return self.context.registry

    @property
    def bounds(self):
        return self.context.bounds

    def _args(self):
        c = self.context
        return (c.tfe, c.tga, c.tge, c.theta_s, c.scalar_idx, c.slot_idx, c.tslot,
                c.tao, c.r1, c.r3, c.r4, c.r5, c.inner_scale)

    def __call__(self, theta):
        """
        Args:
            theta: Dense vector in registry order, or a name-indexed Series/dict.
        Returns:
            float: outer_scale * sum over pairs of the pair contributions.
        Raises:
            MissingParameterKey: vector does not cover the model.
        """
        x = self.registry.densify(theta)
        return float(objective_(x, *self._args(), self.context.outer_scale))

    def pair_contributions(self, theta):
        """Per-pair contributions (before the outer scaling), indexed by pair key."""
        x = self.registry.densify(theta)
        terms = pair_terms(x, *self._args())
        return pd.Series(terms, index=list(self.context.pair_keys), name="contribution")
