import json
import os
import re

import numpy as np
import pandas as pd

from tfdyn.errors import DegenerateSeriesError
from tfdyn.logconf import setup_logger

logger = setup_logger()

CHANNELS = ("TFE", "TGA", "TGE")
_PAIR_RE = re.compile(r"^.*_(?P<tg>[^~_]+)~(?P<tf>[^_]+)_.*$")


def parse_pair_key(key):
    """
    Extract (TG, TF) from a pair key of the form ``<prefix>_<TG>~<TF>_<suffix>``.

    Args:
        key (str): Row label of the training table.
    Returns:
        tuple[str, str]: TG id, TF id.
    Raises:
        ValueError: if the key does not contain the ``_TG~TF_`` pattern.
    """
    m = _PAIR_RE.match(str(key))
    if m is None:
        raise ValueError(f"Pair key {key!r} does not match '..._TG~TF_...'.")
    return m["tg"], m["tf"]


def channel_columns(df, channel):
    """Columns of one channel (``TFE_*``) in table order, which is pseudotime order."""
    return [c for c in df.columns if str(c).startswith(f"{channel}_")]


def split_channels(df):
    """
    Split a training table into aligned channel matrices.

    Args:
        df (pd.DataFrame): One row per TF-TG pair; ``TFE_*``, ``TGA_*``, ``TGE_*`` and ``theta_s`` columns.
    Returns:
        tuple: (tfe, tga, tge) float64 arrays of shape (n_pairs, L) and theta_s of shape (n_pairs,).
    Raises:
        ValueError: if ``theta_s`` is absent.
        DegenerateSeriesError: channels of unequal length, fewer than two samples, or missing samples.
    """
    if "theta_s" not in df.columns:
        raise ValueError("Training data has no 'theta_s' column.")

    cols = {ch: channel_columns(df, ch) for ch in CHANNELS}
    lengths = {ch: len(c) for ch, c in cols.items()}
    if len(set(lengths.values())) != 1:
        raise DegenerateSeriesError(f"Channel lengths differ: {lengths}")
    L = lengths["TFE"]
    if L < 2:
        raise DegenerateSeriesError(f"Each pair needs at least 2 pseudotime samples, got {L}.")

    mats = []
    for ch in CHANNELS:
        mat = df[cols[ch]].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=np.float64)
        bad = ~np.isfinite(mat).all(axis=1)
        if bad.any():
            raise DegenerateSeriesError(
                f"{int(bad.sum())} pair(s) have missing {ch} samples, e.g. {df.index[bad][0]!r}."
            )
        mats.append(np.ascontiguousarray(mat))

    theta_s = pd.to_numeric(df["theta_s"], errors="coerce").to_numpy(dtype=np.float64)
    return mats[0], mats[1], mats[2], np.ascontiguousarray(theta_s)


def load_training_data(path):
    """
    Read a training table (CSV, first column = pair key).
    """
    logger.info(f"[Data] Loading training pairs: {path}")
    df = pd.read_csv(path, index_col=0)
    df.index = df.index.astype(str)
    logger.info(f"[Data] {len(df)} TF-TG pairs, {len(channel_columns(df, 'TFE'))} pseudotime points.")
    return df


def load_tslot(path):
    """
    Per-timepoint weights from a one-column CSV (or the last column of a wider one).

    A header row is optional: a non-numeric first row is taken as the header.
    """
    col = pd.read_csv(path, header=None).iloc[:, -1]
    values = pd.to_numeric(col, errors="coerce")
    if len(values) and np.isnan(values.iloc[0]):
        values = values.iloc[1:]
    if values.empty or values.isna().any():
        raise ValueError(f"{path}: per-timepoint weights must be numeric")
    return values.to_numpy(dtype=np.float64)


def load_bounds(path):
    """
    Read bounds from a CSV with ``name,lower,upper`` columns.

    Returns:
        tuple[pd.Series, pd.Series]: name-keyed lower and upper bounds.
    """
    logger.info(f"[Data] Loading bounds: {path}")
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    df = df.set_index("name")
    return df["lower"].astype(np.float64), df["upper"].astype(np.float64)


def load_init_theta(path, registry):
    """
    Read a starting vector, either a positional ``.npy`` array or a ``name,value`` CSV.
    """
    logger.info(f"[Data] Loading initial parameters: {path}")
    if str(path).endswith(".npy"):
        return registry.densify(np.load(path))
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    return registry.densify(df.set_index("name")["value"])


def export_results(result, output_dir, branch="branch"):
    """
    Write parameters, iteration history and a JSON summary for one branch.

    Returns:
        dict[str, str]: written file paths by kind.
    """
    os.makedirs(output_dir, exist_ok=True)
    paths = {
        "parameters": os.path.join(output_dir, f"{branch}_parameters.csv"),
        "history": os.path.join(output_dir, f"{branch}_history.csv"),
        "summary": os.path.join(output_dir, f"{branch}_summary.json"),
    }

    result.parameters.rename_axis("name").to_frame("value").to_csv(paths["parameters"])
    result.history.to_csv(paths["history"], index=False)
    with open(paths["summary"], "w") as f:
        json.dump({
            "branch": branch,
            "objective_value": float(result.objective_value),
            "initial_value": float(result.initial_value),
            "iterations": int(result.iterations),
            "status": result.status,
            "n_parameters": int(result.parameters.size),
        }, f, indent=2)

    for kind, p in paths.items():
        logger.info(f"[Output] Saved {kind}: {p}")
    return paths
