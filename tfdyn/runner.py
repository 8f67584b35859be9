"""
Command-line entry point: refine one branch model by gradient ascent.

    python -m tfdyn.runner --train data/branch1_train.csv --bounds data/branch1_bounds.csv \
        --init data/branch1_ga.csv --branch branch1 --iterations 3 --cores 8
"""
import argparse
import os

import numpy as np

from tfdyn.ascent import GradientAscent
from tfdyn.config import load_config_toml, parse_seed
from tfdyn.gradient import NumericGradient
from tfdyn.io import export_results, load_bounds, load_init_theta, load_training_data, load_tslot
from tfdyn.logconf import setup_logger
from tfdyn.objfn import Context, ObjectiveEvaluator
from tfdyn.plotting import Plotter

logger = setup_logger()


def build_parser(cfg):
    parser = argparse.ArgumentParser(description="Gradient-ascent refinement of a TF-TG branch model.")
    parser.add_argument("--config", default=None, help="TOML config; defaults to the discovered config.toml")
    parser.add_argument("--train", required=True, help="Training pairs CSV (index = pair key)")
    parser.add_argument("--bounds", required=False, help="Bounds CSV (name,lower,upper); else [bounds] of config")
    parser.add_argument("--init", required=False, help="Initial vector (.npy or name,value CSV); else zeros")
    parser.add_argument("--tslot", required=False, help="Per-timepoint weights CSV; else model.tslot of config")
    parser.add_argument("--tao", type=float, default=cfg.tao)
    parser.add_argument("--branch", default="branch")
    parser.add_argument("--output-dir", default=str(cfg.output_directory))

    parser.add_argument("--iterations", type=int, default=cfg.iterations)
    parser.add_argument("--alpha-lower", type=float, default=cfg.alpha_lower)
    parser.add_argument("--alpha-upper", type=float, default=cfg.alpha_upper)
    parser.add_argument("--alpha-guess", type=float, default=cfg.alpha_guess)
    parser.add_argument("--h-max", type=float, default=cfg.h_max)
    parser.add_argument("--h-min-percent", type=float, default=cfg.h_min_percent)
    parser.add_argument("--seed", type=parse_seed, default=cfg.seed, help="integer, fractional or 'random'")
    parser.add_argument("--cores", type=int, default=cfg.cores)
    parser.add_argument("--scheme", choices=["forward", "central"], default=cfg.scheme)
    parser.add_argument("--backend", choices=["process", "thread"], default=cfg.backend)
    parser.add_argument("--timeout", type=float, default=cfg.timeout, help="seconds per gradient; 0 for no limit")
    parser.add_argument("--no-plots", action="store_true")
    return parser


def main(argv=None):
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", default=None)
    known, _ = pre.parse_known_args(argv)
    cfg = load_config_toml(known.config)

    args = build_parser(cfg).parse_args(argv)
    os.makedirs(args.output_dir, exist_ok=True)

    logger.info(f"[Args] Branch: {args.branch}")
    logger.info(f"[Args] Output directory: {args.output_dir}")
    logger.info(f"[Args] Iterations: {args.iterations}")
    logger.info(f"[Args] Learning rate: [{args.alpha_lower}, {args.alpha_upper}] guess {args.alpha_guess}")
    logger.info(f"[Args] Step: h_max = {args.h_max} | h_min_percent = {args.h_min_percent} | {args.scheme}")
    logger.info(f"[Args] Seed: {args.seed}")
    logger.info(f"[Args] Cores: {args.cores} ({args.backend})")

    # 1) Load
    train = load_training_data(args.train)
    if args.tslot:
        tslot = load_tslot(args.tslot)
    elif cfg.tslot is not None:
        tslot = cfg.tslot
    else:
        raise SystemExit("No per-timepoint weights: pass --tslot or set model.tslot in the config.")

    # 2) Context (bounds from file, else per-role defaults)
    constants = dict(r1=cfg.r1, r3=cfg.r3, r4=cfg.r4, r5=cfg.r5,
                     inner_scale=cfg.inner_scale, outer_scale=cfg.outer_scale)
    if args.bounds:
        lower, upper = load_bounds(args.bounds)
        ctx = Context.from_frames(train, tslot, tao=args.tao, lower=lower, upper=upper, **constants)
    else:
        if not cfg.bounds_config:
            raise SystemExit("No bounds: pass --bounds or fill the [bounds] section of the config.")
        ctx = Context.from_frames(train, tslot, tao=args.tao, role_bounds=cfg.bounds_config, **constants)
    logger.info(f"[Model] {ctx.n_pairs} pairs | {len(ctx.registry.tgs)} TGs | {len(ctx.registry.tfs)} TFs | "
                f"{ctx.n_timepoints} pseudotime points | {ctx.registry.size} parameters")

    evaluator = ObjectiveEvaluator(ctx)
    gradient = NumericGradient(evaluator, ncores=args.cores, scheme=args.scheme, backend=args.backend,
                               timeout=args.timeout, show_progress=True)
    init_theta = load_init_theta(args.init, ctx.registry) if args.init else None

    # 3) Optimise
    result = GradientAscent(evaluator, gradient=gradient).run(
        iterations=args.iterations,
        alpha_lower=args.alpha_lower,
        alpha_upper=args.alpha_upper,
        alpha_guess=args.alpha_guess,
        init_theta=init_theta,
        h_max=args.h_max,
        h_min_percent=args.h_min_percent,
        seed=args.seed,
        ncores=args.cores,
    )

    # 4) Save
    paths = export_results(result, args.output_dir, branch=args.branch)
    if not args.no_plots:
        plotter = Plotter(args.branch, args.output_dir)
        paths["convergence"] = plotter.plot_convergence(result.history)
        paths["learning_rate"] = plotter.plot_learning_rates(result.history)

    logger.info(f"[Fit] {args.branch}: objective {result.initial_value:.6f} -> {result.objective_value:.6f} "
                f"({result.status}, {result.iterations} iteration(s))")
    theta = result.parameters.to_numpy()
    n_out = int(np.sum((theta < ctx.bounds.lower) | (theta > ctx.bounds.upper)))
    if n_out:
        logger.warning(f"[Fit] {n_out} parameter(s) outside their bounds (kept from the starting vector).")
    return result, paths


if __name__ == "__main__":
    main()
