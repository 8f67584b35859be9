import re

import numpy as np
import pandas as pd

from tfdyn.errors import BoundsInfeasible, MissingParameterKey

TG = "TG"
TF = "TF"

# (role, per-slot) in canonical order; per-slot roles carry one value per transition K-1 -> K
TG_LAYOUT = (
    ("r2", False),
    ("alpha1", True), ("alpha2", True),
    ("beta1", True), ("beta2", True), ("beta3", True),
    ("s1", False), ("s2", False),
    ("u11", False), ("u12", False), ("u21", False), ("u22", False),
    ("u311", False), ("u312", False), ("u321", False), ("u322", False), ("u331", False), ("u332", False),
    ("v1", False), ("v2", False), ("v3", False),
    ("E~", True),
)
TF_LAYOUT = (
    ("r2", False),
    ("alpha1", True), ("alpha2", True),
    ("beta1", True), ("beta2", True),
    ("s1", False), ("s2", False),
    ("E~", True),
)

_SCALAR_RE = re.compile(r"^(?P<group>[^.]+)\.(?P<role>[^_.]+)_(?P<kind>TG|TF)\.(?P<entity>.+)$")
_SLOT_RE = re.compile(r"^(?P<group>[^.]+)\.(?P<role>[^_.]+)_(?P<kind>TG|TF)_K-1\.(?P<entity>.+)\.(?P<slot>\d+)$")


def role_group(role):
    """'alpha1' -> 'alpha', 'u311' -> 'u', 'E~' -> 'E~'."""
    return re.sub(r"\d+$", "", role)


def param_name(role, kind, entity, slot=None):
    """
    Format a parameter name.

    Scalars read ``<group>.<role>_<kind>.<entity>`` (e.g. ``r.r2_TG.SOX2``);
    per-slot parameters read ``<group>.<role>_<kind>_K-1.<entity>.<slot>`` with
    1-based slots (e.g. ``beta.beta1_TF_K-1.PAX6.3``).
    """
    group = role_group(role)
    if slot is None:
        return f"{group}.{role}_{kind}.{entity}"
    return f"{group}.{role}_{kind}_K-1.{entity}.{int(slot)}"


def parse_param_name(name):
    """
    Split a parameter name into its parts.

    Returns:
        tuple: (group, role, kind, entity, slot) with slot None for scalar parameters.
    Raises:
        ValueError: if the name does not follow the naming convention.
    """
    m = _SLOT_RE.match(name)
    if m:
        return m["group"], m["role"], m["kind"], m["entity"], int(m["slot"])
    m = _SCALAR_RE.match(name)
    if m:
        return m["group"], m["role"], m["kind"], m["entity"], None
    raise ValueError(f"Unrecognised parameter name: {name!r}")


class ParameterRegistry:
    """
    Dense layout of every parameter of one branch model.

    All (role, entity kind, entity id, slot) combinations are enumerated once:
    TG blocks first (sorted TG ids), then TF blocks (sorted TF ids). Lookups go
    through a precomputed name -> index map.
    """

    def __init__(self, tgs, tfs, n_slots):
        if n_slots < 1:
            raise ValueError(f"n_slots must be >= 1, got {n_slots}")
        self.tgs = sorted(set(tgs))
        self.tfs = sorted(set(tfs))
        self.n_slots = int(n_slots)

        names = []
        for kind, entities, layout in ((TG, self.tgs, TG_LAYOUT), (TF, self.tfs, TF_LAYOUT)):
            for entity in entities:
                for role, per_slot in layout:
                    if per_slot:
                        names.extend(param_name(role, kind, entity, k) for k in range(1, self.n_slots + 1))
                    else:
                        names.append(param_name(role, kind, entity))

        self.names = tuple(names)
        self.index = {n: i for i, n in enumerate(self.names)}
        if len(self.index) != len(self.names):
            raise ValueError("Duplicate parameter names in registry layout.")
        self.size = len(self.names)

    def __len__(self):
        return self.size

    def __contains__(self, name):
        return name in self.index

    def __repr__(self):
        return (f"ParameterRegistry(n_tg={len(self.tgs)}, n_tf={len(self.tfs)}, "
                f"n_slots={self.n_slots}, size={self.size})")

    def idx(self, name):
        try:
            return self.index[name]
        except KeyError:
            raise MissingParameterKey(f"Parameter '{name}' is not part of the model.") from None

    def scalar(self, role, kind, entity):
        return self.idx(param_name(role, kind, entity))

    def slots(self, role, kind, entity):
        """Indices of a per-slot parameter, slots 1..n_slots in order."""
        return np.array([self.idx(param_name(role, kind, entity, k)) for k in range(1, self.n_slots + 1)],
                        dtype=np.int64)

    def to_series(self, theta):
        theta = np.asarray(theta, dtype=np.float64)
        if theta.shape != (self.size,):
            raise MissingParameterKey(
                f"Parameter vector has {theta.size} entries, the model expects {self.size}."
            )
        return pd.Series(theta, index=list(self.names), name="value")

    def densify(self, values):
        """
        Coerce a parameter vector to a dense float64 array in registry order.

        Accepts a plain sequence/array (taken positionally) or a name-indexed
        mapping / pandas Series (reordered by name; extra names are ignored).

        Raises:
            MissingParameterKey: wrong length, or a model parameter without a value.
        """
        if isinstance(values, (pd.Series, dict)):
            values = pd.Series(values, dtype=np.float64)
            missing = [n for n in self.names if n not in values.index]
            if missing:
                head = ", ".join(missing[:5])
                raise MissingParameterKey(
                    f"{len(missing)} parameter(s) missing from vector, e.g. {head}"
                )
            return values.reindex(list(self.names)).to_numpy(dtype=np.float64, copy=True)

        theta = np.asarray(values, dtype=np.float64)
        if theta.ndim != 1 or theta.size != self.size:
            raise MissingParameterKey(
                f"Parameter vector has {theta.size} entries, the model expects {self.size}."
            )
        return theta


class Bounds:
    """
    Lower / upper box constraints co-indexed with a ParameterRegistry.

    Feasibility (lower <= upper) is not enforced here; call ``validate`` before optimising.
    """

    def __init__(self, lower, upper):
        self.lower = np.asarray(lower, dtype=np.float64).copy()
        self.upper = np.asarray(upper, dtype=np.float64).copy()
        if self.lower.shape != self.upper.shape or self.lower.ndim != 1:
            raise ValueError(
                f"lower/upper must be 1-D arrays of equal length, got {self.lower.shape} and {self.upper.shape}"
            )
        self.lower.flags.writeable = False
        self.upper.flags.writeable = False

    def __len__(self):
        return self.lower.size

    @property
    def span(self):
        return self.upper - self.lower

    @classmethod
    def from_mapping(cls, registry, lower, upper):
        """
        Build bounds from name-keyed lower/upper mappings (dict or pandas Series).

        Raises:
            MissingParameterKey: if any registry name lacks a lower or upper bound.
        """
        lo = pd.Series(lower, dtype=np.float64)
        hi = pd.Series(upper, dtype=np.float64)
        for label, s in (("lower", lo), ("upper", hi)):
            missing = [n for n in registry.names if n not in s.index]
            if missing:
                raise MissingParameterKey(
                    f"{len(missing)} parameter(s) missing from {label} bounds, e.g. {', '.join(missing[:5])}"
                )
        names = list(registry.names)
        return cls(lo.reindex(names).to_numpy(), hi.reindex(names).to_numpy())

    @classmethod
    def from_roles(cls, registry, role_bounds):
        """
        Build bounds from per-group defaults, e.g. ``{"alpha": (-10, 10), "u": (0, 10)}``.

        A role key ("alpha1") takes precedence over its group key ("alpha").
        """
        lower = np.empty(registry.size)
        upper = np.empty(registry.size)
        for i, name in enumerate(registry.names):
            _, role, _, _, _ = parse_param_name(name)
            key = role if role in role_bounds else role_group(role)
            if key not in role_bounds:
                raise MissingParameterKey(f"No default bounds configured for '{name}' (role '{role}').")
            lower[i], upper[i] = role_bounds[key]
        return cls(lower, upper)

    def infeasible(self):
        """Indices where lower > upper (or either side is NaN)."""
        bad = ~(self.lower <= self.upper)
        return np.flatnonzero(bad)

    def validate(self, names=None):
        bad = self.infeasible()
        if bad.size:
            i = int(bad[0])
            label = names[i] if names is not None else f"#{i}"
            raise BoundsInfeasible(
                f"{bad.size} infeasible bound(s); first: {label} has lower={self.lower[i]} > upper={self.upper[i]}"
            )

    def clip(self, theta):
        return np.minimum(np.maximum(theta, self.lower), self.upper)
