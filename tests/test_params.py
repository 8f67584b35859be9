import numpy as np
import pandas as pd
import pytest

from tfdyn.errors import BoundsInfeasible, MissingParameterKey
from tfdyn.params import Bounds, ParameterRegistry, param_name, parse_param_name, role_group


@pytest.fixture
def registry():
    return ParameterRegistry(["G2", "G1", "G1"], ["T1"], n_slots=2)


def test_param_names():
    assert param_name("r2", "TG", "SOX2") == "r.r2_TG.SOX2"
    assert param_name("beta1", "TF", "PAX6", 3) == "beta.beta1_TF_K-1.PAX6.3"
    assert param_name("E~", "TG", "G1", 1) == "E~.E~_TG_K-1.G1.1"
    assert role_group("u311") == "u"


@pytest.mark.parametrize("name, parts", [
    ("r.r2_TG.SOX2", ("r", "r2", "TG", "SOX2", None)),
    ("u.u332_TG.G1", ("u", "u332", "TG", "G1", None)),
    ("alpha.alpha2_TF_K-1.PAX6.12", ("alpha", "alpha2", "TF", "PAX6", 12)),
    ("E~.E~_TF_K-1.T1.1", ("E~", "E~", "TF", "T1", 1)),
])
def test_parse_param_name(name, parts):
    assert parse_param_name(name) == parts


def test_parse_param_name_rejects_garbage():
    with pytest.raises(ValueError):
        parse_param_name("alpha1")


def test_registry_layout(registry):
    # 16 scalars + 6 per-slot roles per TG, 3 scalars + 5 per-slot roles per TF
    assert registry.tgs == ["G1", "G2"]
    assert registry.size == 2 * (16 + 6 * 2) + (3 + 5 * 2) == 69
    assert registry.names[0] == "r.r2_TG.G1"
    assert registry.names[1:3] == ("alpha.alpha1_TG_K-1.G1.1", "alpha.alpha1_TG_K-1.G1.2")
    assert registry.names[28] == "r.r2_TG.G2"
    assert registry.names[56] == "r.r2_TF.T1"
    assert registry.names[-1] == "E~.E~_TF_K-1.T1.2"
    assert all(registry.idx(n) == i for i, n in enumerate(registry.names))


def test_registry_has_no_tf_saturation(registry):
    assert "u.u11_TF.T1" not in registry
    assert "beta.beta3_TF_K-1.T1.1" not in registry
    assert "u.u11_TG.G1" in registry


def test_registry_missing_key(registry):
    with pytest.raises(MissingParameterKey) as exc:
        registry.idx("r.r2_TG.NOPE")
    assert isinstance(exc.value, KeyError)
    assert "NOPE" in str(exc.value)


def test_registry_slots(registry):
    idx = registry.slots("beta3", "TG", "G2")
    assert [registry.names[i] for i in idx] == ["beta.beta3_TG_K-1.G2.1", "beta.beta3_TG_K-1.G2.2"]


def test_densify_reorders_named_vector(registry):
    values = pd.Series(np.arange(registry.size, dtype=float), index=list(registry.names))
    shuffled = values.sample(frac=1.0, random_state=0)
    shuffled["extra.name"] = 99.0
    np.testing.assert_array_equal(registry.densify(shuffled), values.to_numpy())
    np.testing.assert_array_equal(registry.densify(dict(values)), values.to_numpy())


def test_densify_errors(registry):
    with pytest.raises(MissingParameterKey):
        registry.densify(np.zeros(registry.size - 1))
    values = pd.Series(0.0, index=list(registry.names)).drop("v.v2_TG.G1")
    with pytest.raises(MissingParameterKey):
        registry.densify(values)


def test_to_series_roundtrip(registry):
    theta = np.linspace(-1, 1, registry.size)
    s = registry.to_series(theta)
    assert list(s.index) == list(registry.names)
    np.testing.assert_array_equal(registry.densify(s), theta)


def test_bounds_from_mapping(registry):
    lower = {n: -1.0 for n in registry.names}
    upper = {n: 1.0 for n in registry.names}
    upper["s.s1_TF.T1"] = 4.0
    b = Bounds.from_mapping(registry, lower, upper)
    assert b.upper[registry.idx("s.s1_TF.T1")] == 4.0
    assert not b.lower.flags.writeable
    b.validate(registry.names)

    del upper["s.s1_TF.T1"]
    with pytest.raises(MissingParameterKey):
        Bounds.from_mapping(registry, lower, upper)


def test_bounds_from_roles_precedence(registry):
    roles = {g: (0.0, 1.0) for g in ("r", "alpha", "beta", "s", "u", "v", "E~")}
    roles["alpha2"] = (-5.0, 5.0)
    b = Bounds.from_roles(registry, roles)
    assert b.lower[registry.idx("alpha.alpha2_TF_K-1.T1.1")] == -5.0
    assert b.lower[registry.idx("alpha.alpha1_TF_K-1.T1.1")] == 0.0

    del roles["v"]
    with pytest.raises(MissingParameterKey):
        Bounds.from_roles(registry, roles)


def test_bounds_validate(registry):
    lower = np.zeros(registry.size)
    upper = np.ones(registry.size)
    upper[5] = -1.0
    b = Bounds(lower, upper)
    assert b.infeasible().tolist() == [5]
    with pytest.raises(BoundsInfeasible, match=registry.names[5].replace(".", r"\.")):
        b.validate(registry.names)


def test_bounds_clip():
    b = Bounds([0.0, -1.0], [1.0, 1.0])
    np.testing.assert_array_equal(b.clip(np.array([2.0, -3.0])), [1.0, -1.0])
    np.testing.assert_array_equal(b.span, [1.0, 2.0])
