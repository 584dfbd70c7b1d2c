"""
Module d'écriture des index kdsingle.
Sérialise l'arène en ordre préfixe avec un tableau de permutation compacté.
"""

import os
import time

import numpy as np

from kdsingle.core.arena import LEAF, NodeArena
from kdsingle.core.deletion import DeletionTracker
from kdsingle.io.format import HEADER, MAGIC, PREAMBLE, TAG_LEAF, TAG_SPLIT, VERSION, node_dtype


def compact_arena(arena: NodeArena):
    """
    Renumérote les nœuds en ordre préfixe et regroupe les plages des feuilles.

    Returns:
        (enregistrements de nœuds, permutation compactée, copie réordonnée ou None)
    """
    order = arena.preorder()
    n_nodes = len(order)
    remap = np.full(arena.n_nodes, -1, dtype=np.int64)
    remap[order] = np.arange(n_nodes)

    records = np.zeros(n_nodes, dtype=node_dtype(arena.dims))
    split_dim = arena.split_dim[order]
    is_leaf = split_dim == LEAF
    records["tag"] = np.where(is_leaf, TAG_LEAF, TAG_SPLIT)
    records["dim"] = split_dim
    records["val"] = arena.split_val[order]
    records["left"] = np.where(is_leaf, -1, remap[np.maximum(arena.left[order], 0)])
    records["right"] = np.where(is_leaf, -1, remap[np.maximum(arena.right[order], 0)])
    records["lo"] = arena.lo[order]
    records["hi"] = arena.hi[order]

    begins = arena.begin[order]
    ends = arena.end[order]
    counts = np.where(is_leaf, ends - begins, 0)
    new_ends = np.cumsum(counts)
    records["begin"] = np.where(is_leaf, new_ends - counts, 0)
    records["end"] = np.where(is_leaf, new_ends, 0)

    leaf_slices = [slice(b, e) for b, e, leaf in zip(begins, ends, is_leaf) if leaf]
    vind = np.concatenate([arena.vind[s] for s in leaf_slices]) if leaf_slices else np.zeros(0, dtype=np.int64)
    reordered = None
    if arena.reordered is not None:
        reordered = (np.concatenate([arena.reordered[s] for s in leaf_slices])
                     if leaf_slices else np.zeros((0, arena.dims), dtype=arena.dtype))
    return records, vind.astype(np.int64), reordered


def write_index(file_path: str, arena: NodeArena, tracker: DeletionTracker, leaf_size: int,
                max_depth: int, rows: int, size_at_build: int, verbose: bool = False) -> None:
    """
    Sauvegarde un arbre dans un fichier binaire.

    Args:
        file_path: Chemin du fichier de sortie
        arena: Arène de l'index
        tracker: Points supprimés
        leaf_size: Taille maximale des feuilles
        max_depth: Profondeur maximale
        rows: Nombre total de points (supprimés compris)
        size_at_build: Nombre de points vivants lors de la dernière construction
        verbose: Afficher la progression
    """
    start_time = time.time()
    if verbose:
        print(f"⏳ Sauvegarde du kd-tree vers {file_path}...")

    directory = os.path.dirname(os.path.abspath(file_path))
    os.makedirs(directory, exist_ok=True)

    records, vind, reordered = compact_arena(arena)
    dtype_code = np.dtype(arena.dtype).str.encode("ascii")

    with open(file_path, "wb") as f:
        f.write(PREAMBLE.pack(MAGIC, VERSION))
        f.write(HEADER.pack(
            arena.dims, leaf_size, max_depth, int(arena.reorder), dtype_code,
            rows, tracker.pending, size_at_build, len(records), len(vind),
        ))
        f.write(records.tobytes())
        f.write(vind.tobytes())
        if reordered is not None:
            f.write(np.ascontiguousarray(reordered, dtype=arena.dtype).tobytes())
        f.write(tracker.removed.astype(np.uint8).tobytes())

    if verbose:
        elapsed = time.time() - start_time
        print(f"✓ {len(records):,} nœuds et {len(vind):,} identifiants sauvegardés [terminé en {elapsed:.2f}s]")
