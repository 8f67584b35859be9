import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed

import numpy as np
from tqdm import tqdm

from tfdyn.errors import WorkerFailure
from tfdyn.logconf import TqdmToLogger, setup_logger
from tfdyn.utils import format_duration

logger = setup_logger()

# Per-worker read-only state, installed by the pool initializer.
_WORKER = {}


def step_sizes(lower, upper, h_max, h_min_percent):
    """
    Finite-difference step per coordinate.

    h_i = min(h_max, h_min_percent * (upper_i - lower_i)); a coordinate with a
    degenerate interval gets h_i = 0 and is treated as fixed.
    """
    span = np.asarray(upper, dtype=np.float64) - np.asarray(lower, dtype=np.float64)
    h = np.minimum(h_max, h_min_percent * span)
    h[~np.isfinite(h)] = h_max
    return np.where(span > 0, np.maximum(h, 0.0), 0.0)


def partial_derivative(evaluator, theta, f_base, i, h, lo, hi, scheme="forward"):
    """
    One-coordinate difference quotient with every evaluation point inside [lo, hi].

    The forward point is clipped to the box; when clipping leaves no room the
    backward point is used instead. ``central`` uses both sides when both move.

    Returns:
        tuple[int, float]: (i, estimated partial derivative)
    """
    xi = theta[i]
    up = min(max(xi + h, lo), hi)
    dn = min(max(xi - h, lo), hi)
    x = theta.copy()

    if scheme == "central" and up != xi and dn != xi:
        x[i] = up
        f_up = evaluator(x)
        x[i] = dn
        f_dn = evaluator(x)
        return i, (f_up - f_dn) / (up - dn)
    if up != xi:
        x[i] = up
        return i, (evaluator(x) - f_base) / (up - xi)
    if dn != xi:
        x[i] = dn
        return i, (evaluator(x) - f_base) / (dn - xi)
    return i, 0.0


def seed_entropy(seed):
    """
    Entropy for ``np.random.default_rng`` from any numeric seed.

    Integers pass through; a fractional seed such as ``0.123`` contributes the
    32-bit words of its float64 representation.
    """
    if seed is None:
        return None
    if isinstance(seed, (int, np.integer)):
        return int(seed)
    value = float(seed)
    if value.is_integer():
        return int(value)
    return [int(w) for w in np.frombuffer(np.float64(value).tobytes(), dtype=np.uint32)]


def _terminate_workers(executor):
    """Stop pool processes that are still running a task."""
    terminate = getattr(executor, "terminate_workers", None)
    if terminate is not None:
        terminate()
        return
    for proc in list((getattr(executor, "_processes", None) or {}).values()):
        if proc.is_alive():
            proc.terminate()


def _init_worker(evaluator, theta, f_base, scheme):
    _WORKER["evaluator"] = evaluator
    _WORKER["theta"] = theta
    _WORKER["f_base"] = f_base
    _WORKER["scheme"] = scheme


def _worker_partial(i, h, lo, hi):
    return partial_derivative(_WORKER["evaluator"], _WORKER["theta"], _WORKER["f_base"],
                              i, h, lo, hi, _WORKER["scheme"])


class NumericGradient:
    """
    Parallel finite-difference gradient of an ObjectiveEvaluator.

    Each coordinate is an independent task; tasks are spread over ``ncores``
    workers and written back into their own slot, so the result does not depend
    on completion order. Any failing task fails the whole call with a single
    WorkerFailure listing every failed coordinate.

    Args:
        evaluator (ObjectiveEvaluator): Objective; must be picklable for the process backend.
        ncores (int): Default worker count.
        scheme (str): "forward" (one extra evaluation per coordinate) or "central".
        backend (str): "process" or "thread".
        timeout (float | None): Seconds allowed for all coordinate tasks of one call; None or <= 0
            means no limit. The serial path checks the deadline between coordinates.
        show_progress (bool): Route a tqdm bar over finished coordinates to the logger.
    """

    def __init__(self, evaluator, ncores=1, scheme="forward", backend="process", timeout=None,
                 show_progress=False):
        if scheme not in ("forward", "central"):
            raise ValueError(f"scheme must be 'forward' or 'central', got {scheme!r}")
        if backend not in ("process", "thread"):
            raise ValueError(f"backend must be 'process' or 'thread', got {backend!r}")
        self.evaluator = evaluator
        self.ncores = int(ncores)
        self.scheme = scheme
        self.backend = backend
        self.timeout = timeout if timeout is not None and timeout > 0 else None
        self.show_progress = show_progress
        self.n_calls = 0
        self.n_probe_calls = 0

    @property
    def size(self):
        return self.evaluator.registry.size

    def __call__(self, theta, h_max=0.01, h_min_percent=0.01, seed=None, ncores=None):
        """
        Estimate the gradient at theta.

        A zero-length theta is a probe: nothing is evaluated and a zero vector of
        the model's canonical length is returned.

        Args:
            theta: Parameter vector (dense or name-indexed).
            h_max (float): Step ceiling.
            h_min_percent (float): Step as a fraction of each bound range, in (0, 1].
            seed: Seeds the task dispatch order.
            ncores (int | None): Overrides the default worker count.
        Returns:
            np.ndarray: Gradient in registry order.
        Raises:
            WorkerFailure: any coordinate task failed or the timeout expired.
        """
        self.n_calls += 1
        if not isinstance(theta, dict) and np.size(theta) == 0:
            self.n_probe_calls += 1
            return np.zeros(self.size)

        if not h_max > 0:
            raise ValueError(f"h_max must be positive, got {h_max}")
        if not 0 < h_min_percent <= 1:
            raise ValueError(f"h_min_percent must be in (0, 1], got {h_min_percent}")
        ncores = self.ncores if ncores is None else int(ncores)
        if ncores < 1:
            raise ValueError(f"ncores must be >= 1, got {ncores}")

        registry = self.evaluator.registry
        bounds = self.evaluator.bounds
        x = registry.densify(theta).copy()
        x.flags.writeable = False

        h = step_sizes(bounds.lower, bounds.upper, h_max, h_min_percent)
        order = np.random.default_rng(seed_entropy(seed)).permutation(np.flatnonzero(h > 0))
        grad = np.zeros(registry.size)
        if order.size == 0:
            return grad

        t0 = time.time()
        f_base = self.evaluator(x)
        tasks = [(int(i), float(h[i]), float(bounds.lower[i]), float(bounds.upper[i])) for i in order]

        if ncores == 1:
            failures = self._run_serial(x, f_base, tasks, grad)
        else:
            failures = self._run_pool(x, f_base, tasks, grad, min(ncores, len(tasks)))

        if failures:
            name, first = failures[0]
            raise WorkerFailure(
                f"{len(failures)} of {len(tasks)} gradient task(s) failed; first at '{name}': {first!r}",
                [(n, repr(e)) for n, e in failures],
            ) from first

        logger.debug(f"[Grad] {len(tasks)} coordinates | ncores = {ncores} | "
                     f"{format_duration(time.time() - t0)}")
        return grad

    def _progress(self, iterable, total):
        return tqdm(iterable, total=total, desc="Gradient", ncols=90, disable=not self.show_progress,
                    file=TqdmToLogger(logger), mininterval=1.0)

    def _run_serial(self, x, f_base, tasks, grad):
        names = self.evaluator.registry.names
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        for k, (i, h, lo, hi) in enumerate(self._progress(tasks, len(tasks))):
            if deadline is not None and time.monotonic() > deadline:
                e = TimeoutError(f"gradient exceeded {self.timeout} s after {k} of {len(tasks)} coordinates")
                return [(f"<{len(tasks) - k} pending>", e)]
            try:
                _, g = partial_derivative(self.evaluator, x, f_base, i, h, lo, hi, self.scheme)
            except Exception as e:
                return [(names[i], e)]
            grad[i] = g
        return []

    def _run_pool(self, x, f_base, tasks, grad, n_workers):
        names = self.evaluator.registry.names
        Executor = ProcessPoolExecutor if self.backend == "process" else ThreadPoolExecutor
        executor = Executor(max_workers=n_workers, initializer=_init_worker,
                            initargs=(self.evaluator, x, f_base, self.scheme))
        failures = []
        timed_out = False
        try:
            futures = {executor.submit(_worker_partial, *t): t[0] for t in tasks}
            try:
                for fut in self._progress(as_completed(futures, timeout=self.timeout), len(futures)):
                    i = futures[fut]
                    exc = fut.exception()
                    if exc is not None:
                        failures.append((names[i], exc))
                        continue
                    _, g = fut.result()
                    grad[i] = g
            except TimeoutError as e:
                timed_out = True
                pending = sum(not f.done() for f in futures)
                failures.append((f"<{pending} pending>", e))
        finally:
            if timed_out and self.backend == "process":
                _terminate_workers(executor)
            executor.shutdown(wait=not timed_out, cancel_futures=True)
        return failures
