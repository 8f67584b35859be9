import logging

import numpy as np
import pytest

from conftest import ConstantEvaluator
from tfdyn.ascent import EARLY_STOPPED, MAX_ITER, GradientAscent
from tfdyn.errors import BoundsInfeasible, MissingParameterKey
from tfdyn.gradient import NumericGradient
from tfdyn.objfn import Context, ObjectiveEvaluator


class SpyGradient(NumericGradient):
    def __init__(self, evaluator, **kwargs):
        super().__init__(evaluator, **kwargs)
        self.seeds = []

    def __call__(self, theta, **kwargs):
        self.seeds.append(kwargs.get("seed"))
        return super().__call__(theta, **kwargs)


def test_constant_objective_stops_after_first_iteration(context):
    const = ConstantEvaluator(context.registry, context.bounds, value=-3.0)
    init = np.linspace(-1, 1, context.registry.size)
    result = GradientAscent(const).run(iterations=5, init_theta=init, seed=0)

    assert result.status == EARLY_STOPPED
    assert result.iterations == 1
    assert result.objective_value == -3.0
    np.testing.assert_array_equal(result.parameters.to_numpy(), init)
    assert result.history["accepted"].tolist() == [True, False]


def test_zero_init_uses_single_probe(evaluator):
    spy = SpyGradient(evaluator)
    result = GradientAscent(evaluator, gradient=spy).run(iterations=2, seed=11)
    assert spy.n_probe_calls == 1
    assert spy.n_calls == 1 + result.iterations
    # one seed for the whole run
    assert set(spy.seeds) == {11}


def test_explicit_init_skips_probe(evaluator):
    spy = SpyGradient(evaluator)
    GradientAscent(evaluator, gradient=spy).run(iterations=1, init_theta=np.zeros(evaluator.registry.size))
    assert spy.n_probe_calls == 0
    assert len(set(spy.seeds)) == 1 and spy.seeds[0] is not None


def test_end_to_end(evaluator):
    events = []
    result = GradientAscent(evaluator, callback=events.append).run(iterations=3, seed=0)

    assert result.initial_value == pytest.approx(-115000.0)
    assert result.objective_value >= result.initial_value
    assert result.objective_value == pytest.approx(evaluator(result.parameters), rel=1e-9, abs=1e-9)
    assert result["objective_value"] == result.objective_value
    assert list(result["parameters"].index) == list(evaluator.registry.names)

    theta = result.parameters.to_numpy()
    assert np.all(theta >= evaluator.bounds.lower) and np.all(theta <= evaluator.bounds.upper)

    assert len(events) == result.iterations
    accepted = [e.value for e in events if e.accepted]
    assert accepted == sorted(accepted)
    assert all(b > a for a, b in zip([result.initial_value] + accepted, accepted))
    if result.status == EARLY_STOPPED:
        assert not events[-1].accepted
        assert events[-1].value == result.objective_value
    else:
        assert result.status == MAX_ITER
        assert result.iterations == 3


def test_first_iteration_improves(evaluator):
    result = GradientAscent(evaluator).run(iterations=1, seed=0)
    assert result.status == MAX_ITER
    assert result.objective_value > result.initial_value
    assert 1e-5 <= result.history["learning_rate"].iloc[-1] <= 1e-3


def test_runs_are_reproducible(evaluator):
    a = GradientAscent(evaluator).run(iterations=2, seed=3)
    b = GradientAscent(evaluator, gradient=NumericGradient(evaluator, ncores=3, backend="thread")).run(
        iterations=2, seed=3, ncores=3)
    np.testing.assert_array_equal(a.parameters.to_numpy(), b.parameters.to_numpy())
    assert a.objective_value == b.objective_value


def test_infeasible_bounds(train_frame, tslot, role_bounds):
    role_bounds = dict(role_bounds, alpha=(5.0, -5.0))
    ev = ObjectiveEvaluator(Context.from_frames(train_frame, tslot, tao=0.0, role_bounds=role_bounds))
    spy = SpyGradient(ev)
    with pytest.raises(BoundsInfeasible):
        GradientAscent(ev, gradient=spy).run(iterations=1)
    assert spy.n_calls == 0


def test_init_theta_must_cover_model(evaluator):
    with pytest.raises(MissingParameterKey):
        GradientAscent(evaluator).run(iterations=1, init_theta=np.zeros(4))


def test_out_of_bounds_start_is_kept_when_flat(context):
    const = ConstantEvaluator(context.registry, context.bounds)
    init = np.full(context.registry.size, 50.0)
    result = GradientAscent(const).run(iterations=1, init_theta=init)
    np.testing.assert_array_equal(result.parameters.to_numpy(), init)


@pytest.mark.parametrize("kwargs", [
    {"iterations": 0},
    {"iterations": 1, "alpha_lower": 0.0},
    {"iterations": 1, "alpha_guess": 1.0},
    {"iterations": 1, "ncores": 0},
])
def test_rejects_bad_arguments(evaluator, kwargs):
    with pytest.raises(ValueError):
        GradientAscent(evaluator).run(**kwargs)


def test_progress_lines_go_to_given_logger(evaluator, caplog):
    log = logging.getLogger("tfdyn.test.progress")
    with caplog.at_level(logging.INFO, logger="tfdyn.test.progress"):
        result = GradientAscent(evaluator, logger=log).run(iterations=1, seed=0, ncores=1)
    lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Grad |")]
    assert len(lines) == result.iterations == 1
    assert lines[0].startswith("Grad | iter = 1 | Best = ")
    assert lines[0].endswith("| ncores = 1")
    assert "learning_rate = " in lines[0]


def test_fractional_seed_is_passed_through(evaluator):
    spy = SpyGradient(evaluator)
    result = GradientAscent(evaluator, gradient=spy).run(iterations=1, seed=0.123)
    assert result.iterations == 1
    assert set(spy.seeds) == {0.123}
