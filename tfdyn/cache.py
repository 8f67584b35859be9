import numpy as np

from tfdyn.params import TF, TG

# columns of the per-pair scalar index table
R2_TG, R2_TF, S1_TG, S1_TF, S2_TG, S2_TF = 0, 1, 2, 3, 4, 5
U11, U12, U21, U22, U311, U312, U321, U322, U331, U332 = 6, 7, 8, 9, 10, 11, 12, 13, 14, 15
V1, V2, V3 = 16, 17, 18
N_SCALAR = 19

# rows of the per-pair slot index table
A1_TG, A1_TF, A2_TG, A2_TF, B1_TG, B1_TF, B2_TG, B2_TF, B3_TG, EG_TG, EF_TF = range(11)
N_SLOT = 11

_SCALAR_LAYOUT = (
    ("r2", TG), ("r2", TF), ("s1", TG), ("s1", TF), ("s2", TG), ("s2", TF),
    ("u11", TG), ("u12", TG), ("u21", TG), ("u22", TG),
    ("u311", TG), ("u312", TG), ("u321", TG), ("u322", TG), ("u331", TG), ("u332", TG),
    ("v1", TG), ("v2", TG), ("v3", TG),
)
_SLOT_LAYOUT = (
    ("alpha1", TG), ("alpha1", TF), ("alpha2", TG), ("alpha2", TF),
    ("beta1", TG), ("beta1", TF), ("beta2", TG), ("beta2", TF),
    ("beta3", TG), ("E~", TG), ("E~", TF),
)


def prepare_index_arrays(registry, pairs):
    """
    Resolve every parameter a pair touches into dense registry indices.

    Args:
        registry (ParameterRegistry): Model layout.
        pairs (list[tuple[str, str]]): (TG, TF) per pair, in kernel order.
    Returns:
        tuple[np.ndarray, np.ndarray]:
            scalar_idx of shape (n_pairs, N_SCALAR) and
            slot_idx of shape (n_pairs, N_SLOT, n_slots), both int64.
    Raises:
        MissingParameterKey: if the registry lacks a referenced parameter.
    """
    n = len(pairs)
    scalar_idx = np.empty((n, N_SCALAR), dtype=np.int64)
    slot_idx = np.empty((n, N_SLOT, registry.n_slots), dtype=np.int64)

    for p, (tg, tf) in enumerate(pairs):
        owner = {TG: tg, TF: tf}
        for c, (role, kind) in enumerate(_SCALAR_LAYOUT):
            scalar_idx[p, c] = registry.scalar(role, kind, owner[kind])
        for r, (role, kind) in enumerate(_SLOT_LAYOUT):
            slot_idx[p, r, :] = registry.slots(role, kind, owner[kind])

    return np.ascontiguousarray(scalar_idx), np.ascontiguousarray(slot_idx)
