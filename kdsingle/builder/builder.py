"""
Construction du kd-tree par partitionnement récursif.

Chaque nœud calcule la boîte englobante de ses points; au-delà de leaf_size
points, il est coupé sur l'axe le plus étendu au milieu de la boîte. Si la
coupe laisse un côté vide, elle glisse vers la médiane des coordonnées puis,
au besoin, vers la plus petite valeur strictement supérieure au minimum.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from joblib import Parallel, delayed

from kdsingle.core.arena import LEAF, NodeArena
from kdsingle.core.errors import InvalidInput


@dataclass
class Fragment:
    """
    Sous-arbre construit en indices locaux, prêt à être greffé dans l'arène.
    Les plages [begin, end) des feuilles sont relatives au début du fragment.
    """

    split_dim: np.ndarray
    split_val: np.ndarray
    left: np.ndarray
    right: np.ndarray
    begin: np.ndarray
    end: np.ndarray
    lo: np.ndarray
    hi: np.ndarray
    ids: np.ndarray
    coords: np.ndarray
    # (nœud local, begin, end, profondeur) des sous-arbres à construire à part
    deferred: List[Tuple[int, int, int, int]] = field(default_factory=list)

    @property
    def n_nodes(self) -> int:
        return len(self.split_dim)


def choose_split(pts: np.ndarray, lo: np.ndarray, hi: np.ndarray) -> Optional[Tuple[int, float]]:
    """
    Choisit l'axe et la valeur de coupe (règle du point milieu glissant).

    Returns:
        (dimension, valeur) ou None si tous les points sont identiques
    """
    extent = hi - lo
    dim = int(np.argmax(extent))
    if extent[dim] <= 0:
        return None

    column = pts[:, dim]
    val = 0.5 * (lo[dim] + hi[dim])
    n_left = int(np.count_nonzero(column < val))
    if n_left == 0 or n_left == len(column):
        val = float(np.median(column))
        if val <= lo[dim]:
            val = float(column[column > lo[dim]].min())
    return dim, float(val)


def build_fragment(
    ids: np.ndarray,
    coords: np.ndarray,
    leaf_size: int,
    max_depth: int,
    base_depth: int = 0,
    defer_size: int = 0,
) -> Fragment:
    """
    Construit un sous-arbre sur `ids` en réordonnant `ids` et `coords` sur place.

    Args:
        ids: Identifiants des points couverts
        coords: Coordonnées alignées avec `ids`
        leaf_size: Nombre maximal de points par feuille
        max_depth: Profondeur au-delà de laquelle un nœud devient une feuille
        base_depth: Profondeur de la racine du fragment dans l'arbre complet
        defer_size: Si > 0, les sous-arbres d'au plus `defer_size` points (et plus
                    grands qu'une feuille) sont laissés en attente dans `deferred`

    Returns:
        Fragment: Nœuds en ordre préfixe
    """
    split_dim, split_val, left, right = [], [], [], []
    begin, end, lo_list, hi_list = [], [], [], []
    deferred = []

    # Pile explicite: (début, fin, parent, côté droit, profondeur)
    stack = [(0, len(ids), -1, False, base_depth)]
    while stack:
        b, e, parent, is_right, depth = stack.pop()
        node = len(split_dim)
        if parent >= 0:
            if is_right:
                right[parent] = node
            else:
                left[parent] = node

        pts = coords[b:e]
        lo = pts.min(axis=0).astype(np.float64)
        hi = pts.max(axis=0).astype(np.float64)
        count = e - b

        split = None
        if count > leaf_size and depth < max_depth:
            if defer_size and count <= defer_size and parent >= 0:
                deferred.append((node, b, e, depth))
            else:
                split = choose_split(pts, lo, hi)

        lo_list.append(lo)
        hi_list.append(hi)
        left.append(-1)
        right.append(-1)
        if split is None:
            split_dim.append(LEAF)
            split_val.append(0.0)
            begin.append(b)
            end.append(e)
            continue

        dim, val = split
        mask = pts[:, dim] < val
        order = np.concatenate([np.flatnonzero(mask), np.flatnonzero(~mask)])
        ids[b:e] = ids[b:e][order]
        coords[b:e] = pts[order]
        mid = b + int(np.count_nonzero(mask))

        split_dim.append(dim)
        split_val.append(val)
        begin.append(0)
        end.append(0)
        stack.append((mid, e, node, True, depth + 1))
        stack.append((b, mid, node, False, depth + 1))

    dims = coords.shape[1]
    return Fragment(
        split_dim=np.array(split_dim, dtype=np.int32),
        split_val=np.array(split_val, dtype=np.float64),
        left=np.array(left, dtype=np.int64),
        right=np.array(right, dtype=np.int64),
        begin=np.array(begin, dtype=np.int64),
        end=np.array(end, dtype=np.int64),
        lo=np.array(lo_list, dtype=np.float64).reshape(-1, dims),
        hi=np.array(hi_list, dtype=np.float64).reshape(-1, dims),
        ids=ids,
        coords=coords,
        deferred=deferred,
    )


def _build_subtree(ids, coords, leaf_size, max_depth, depth):
    """Tâche joblib: construit un sous-arbre en attente."""
    return build_fragment(ids, coords, leaf_size, max_depth, base_depth=depth)


class TreeBuilder:
    """
    Construit une arène complète à partir d'identifiants et de leurs coordonnées.
    """

    def __init__(self, leaf_size: int = 12, max_depth: int = 128, reorder: bool = False,
                 n_jobs: int = 1, parallel_threshold: int = 50000, verbose: bool = False):
        """
        Args:
            leaf_size: Nombre maximal de points par feuille
            max_depth: Profondeur maximale de l'arbre
            reorder: Conserver une copie des coordonnées dans l'ordre des feuilles
            n_jobs: Nombre de workers joblib (1 = construction séquentielle)
            parallel_threshold: Nombre de points à partir duquel la construction est parallélisée
            verbose: Afficher la progression
        """
        self.leaf_size = leaf_size
        self.max_depth = max_depth
        self.reorder = reorder
        self.n_jobs = n_jobs
        self.parallel_threshold = parallel_threshold
        self.verbose = verbose

    def build(self, ids: np.ndarray, coords: np.ndarray) -> NodeArena:
        """
        Construit l'arbre couvrant exactement `ids`.

        Args:
            ids: Identifiants des points (copiés)
            coords: Coordonnées alignées avec `ids` (copiées)

        Returns:
            NodeArena: Arène dont la racine est le nœud 0
        """
        if len(ids) == 0:
            raise InvalidInput("Impossible de construire un arbre sans aucun point")
        if coords.ndim != 2 or coords.shape[1] == 0:
            raise InvalidInput("Les points doivent avoir au moins une dimension")
        if not np.all(np.isfinite(coords)):
            raise InvalidInput("Les coordonnées doivent être finies (NaN ou infini détecté)")

        start_time = time.time()
        n, dims = coords.shape
        ids = np.array(ids, dtype=np.int64)
        coords = np.array(coords)

        parallel = self.n_jobs != 1 and n >= self.parallel_threshold
        defer_size = 0
        if parallel:
            workers = self.n_jobs if self.n_jobs > 0 else 8
            defer_size = max(self.leaf_size + 1, n // (2 * workers))

        if self.verbose:
            mode = f"parallèle, n_jobs={self.n_jobs}" if parallel else "séquentiel"
            print(f"⏳ Construction du kd-tree sur {n:,} points (dim {dims}, leaf_size={self.leaf_size}, {mode})...")

        fragment = build_fragment(ids, coords, self.leaf_size, self.max_depth, defer_size=defer_size)

        arena = NodeArena(dims, reorder=self.reorder, dtype=coords.dtype, capacity=max(16, 2 * n // max(self.leaf_size, 1)))
        base = arena.alloc_slots(n)
        mapping = arena.graft(fragment, base)

        if fragment.deferred:
            if self.verbose:
                print(f"  → Construction parallèle de {len(fragment.deferred)} sous-arbres...")
            results = Parallel(n_jobs=self.n_jobs)(
                delayed(_build_subtree)(ids[b:e].copy(), coords[b:e].copy(), self.leaf_size, self.max_depth, depth)
                for _, b, e, depth in fragment.deferred
            )
            for (node, b, e, _), sub in zip(fragment.deferred, results):
                ids[b:e] = sub.ids
                coords[b:e] = sub.coords
                arena.graft(sub, base + b, at=int(mapping[node]))

        arena.write_slots(base, ids, coords if self.reorder else None)

        if self.verbose:
            elapsed = time.time() - start_time
            n_leaves = len(arena.leaves())
            print(f"✓ Construction du kd-tree terminée en {elapsed:.2f}s")
            print(f"  → {arena.n_nodes:,} nœuds, {n_leaves:,} feuilles")
        return arena
