"""
Stockage plat des nœuds du kd-tree.

Les nœuds sont rangés colonne par colonne dans des tableaux numpy et désignés
par leur indice, jamais par référence d'objet: l'arbre entier se copie ou se
sérialise tableau par tableau. Un nœud est une feuille si split_dim == -1.
"""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:  # uniquement pour les vérificateurs de types statiques
    from kdsingle.builder.builder import Fragment

LEAF = -1
DEAD_SLOT = -1


def _grow(array: np.ndarray, capacity: int, fill=0) -> np.ndarray:
    """Réalloue `array` (1-D ou 2-D) avec une capacité de `capacity` lignes."""
    shape = (capacity,) + array.shape[1:]
    grown = np.full(shape, fill, dtype=array.dtype)
    grown[:len(array)] = array
    return grown


class NodeArena:
    """
    Nœuds du kd-tree et tableau de permutation des identifiants.

    Les feuilles référencent une plage [begin, end) du tableau `vind`, avec
    une capacité `cap` permettant de les agrandir sur place. Quand une
    feuille ne peut plus grandir, elle est déplacée en fin de tableau et ses
    anciennes cases deviennent mortes (DEAD_SLOT).
    """

    def __init__(self, dims: int, reorder: bool = False, dtype=np.float64, capacity: int = 16):
        self.dims = dims
        self.reorder = reorder
        self.dtype = np.dtype(dtype)

        # Structures pour tous les nœuds
        self.split_dim = np.full(capacity, LEAF, dtype=np.int32)       # (n_nodes,) -1 pour les feuilles
        self.split_val = np.zeros(capacity, dtype=np.float64)          # (n_nodes,)
        self.left = np.full(capacity, -1, dtype=np.int64)              # (n_nodes,)
        self.right = np.full(capacity, -1, dtype=np.int64)             # (n_nodes,)
        self.begin = np.zeros(capacity, dtype=np.int64)                # (n_nodes,) feuilles seulement
        self.end = np.zeros(capacity, dtype=np.int64)                  # (n_nodes,)
        self.cap = np.zeros(capacity, dtype=np.int64)                  # (n_nodes,)
        self.lo = np.zeros((capacity, dims), dtype=np.float64)         # (n_nodes, dims)
        self.hi = np.zeros((capacity, dims), dtype=np.float64)         # (n_nodes, dims)
        self.n_nodes = 0

        # Tableau de permutation (et copie réordonnée des coordonnées)
        self.vind = np.full(capacity, DEAD_SLOT, dtype=np.int64)
        self.reordered: Optional[np.ndarray] = (
            np.zeros((capacity, dims), dtype=self.dtype) if reorder else None
        )
        self.n_slots = 0
        self.dead_slots = 0

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------
    @property
    def root(self) -> int:
        return 0 if self.n_nodes > 0 else -1

    def _reserve_nodes(self, extra: int) -> None:
        needed = self.n_nodes + extra
        capacity = len(self.split_dim)
        if needed <= capacity:
            return
        capacity = max(needed, 2 * capacity)
        self.split_dim = _grow(self.split_dim, capacity, LEAF)
        self.split_val = _grow(self.split_val, capacity)
        self.left = _grow(self.left, capacity, -1)
        self.right = _grow(self.right, capacity, -1)
        self.begin = _grow(self.begin, capacity)
        self.end = _grow(self.end, capacity)
        self.cap = _grow(self.cap, capacity)
        self.lo = _grow(self.lo, capacity)
        self.hi = _grow(self.hi, capacity)

    def alloc_slots(self, count: int) -> int:
        """Réserve `count` cases en fin de tableau de permutation et retourne la première."""
        start = self.n_slots
        needed = start + count
        capacity = len(self.vind)
        if needed > capacity:
            capacity = max(needed, 2 * capacity)
            self.vind = _grow(self.vind, capacity, DEAD_SLOT)
            if self.reordered is not None:
                self.reordered = _grow(self.reordered, capacity)
        self.n_slots = needed
        return start

    def write_slots(self, start: int, ids: np.ndarray, coords: Optional[np.ndarray]) -> None:
        """Écrit des identifiants (et leurs coordonnées si reorder) à partir de `start`."""
        self.vind[start:start + len(ids)] = ids
        if self.reordered is not None:
            self.reordered[start:start + len(ids)] = coords

    # ------------------------------------------------------------------
    # Greffe de sous-arbres construits par TreeBuilder
    # ------------------------------------------------------------------
    def graft(self, fragment: "Fragment", base_pos: int, at: Optional[int] = None) -> np.ndarray:
        """
        Copie les nœuds d'un fragment dans l'arène.

        Args:
            fragment: Sous-arbre en indices locaux (racine locale = 0)
            base_pos: Position dans `vind` correspondant à la position locale 0
            at: Nœud existant remplacé par la racine du fragment (None = ajout)

        Returns:
            np.ndarray: Indice dans l'arène de chaque nœud local
        """
        n = fragment.n_nodes
        fresh = n if at is None else n - 1
        self._reserve_nodes(fresh)
        mapping = np.empty(n, dtype=np.int64)
        if at is None:
            mapping[:] = np.arange(self.n_nodes, self.n_nodes + n)
        else:
            mapping[0] = at
            mapping[1:] = np.arange(self.n_nodes, self.n_nodes + fresh)
        self.n_nodes += fresh

        is_leaf = fragment.split_dim == LEAF
        self.split_dim[mapping] = fragment.split_dim
        self.split_val[mapping] = fragment.split_val
        self.left[mapping] = np.where(is_leaf, -1, mapping[np.maximum(fragment.left, 0)])
        self.right[mapping] = np.where(is_leaf, -1, mapping[np.maximum(fragment.right, 0)])
        self.begin[mapping] = np.where(is_leaf, fragment.begin + base_pos, 0)
        self.end[mapping] = np.where(is_leaf, fragment.end + base_pos, 0)
        self.cap[mapping] = np.where(is_leaf, fragment.end - fragment.begin, 0)
        self.lo[mapping] = fragment.lo
        self.hi[mapping] = fragment.hi
        return mapping

    # ------------------------------------------------------------------
    # Accès
    # ------------------------------------------------------------------
    def is_leaf(self, node: int) -> bool:
        return self.split_dim[node] == LEAF

    def leaf_ids(self, node: int) -> np.ndarray:
        return self.vind[self.begin[node]:self.end[node]]

    def leaf_coords(self, node: int) -> Optional[np.ndarray]:
        if self.reordered is None:
            return None
        return self.reordered[self.begin[node]:self.end[node]]

    def leaf_count(self, node: int) -> int:
        return int(self.end[node] - self.begin[node])

    def leaves(self) -> np.ndarray:
        return np.flatnonzero(self.split_dim[:self.n_nodes] == LEAF)

    # ------------------------------------------------------------------
    # Croissance incrémentale
    # ------------------------------------------------------------------
    def expand_box(self, node: int, point: np.ndarray) -> None:
        np.minimum(self.lo[node], point, out=self.lo[node])
        np.maximum(self.hi[node], point, out=self.hi[node])

    def append_to_leaf(self, node: int, point_id: int, coords: Optional[np.ndarray], headroom: int) -> None:
        """
        Ajoute un identifiant à la plage d'une feuille.
        La plage est déplacée en fin de tableau si sa capacité est atteinte.
        """
        begin, end = int(self.begin[node]), int(self.end[node])
        count = end - begin
        if count >= self.cap[node]:
            new_cap = max(headroom, 2 * count, 1)
            if begin + self.cap[node] == self.n_slots:
                # Dernière plage du tableau: agrandissement sur place
                self.alloc_slots(new_cap - int(self.cap[node]))
            else:
                start = self.alloc_slots(new_cap)
                self.vind[start:start + count] = self.vind[begin:end]
                if self.reordered is not None:
                    self.reordered[start:start + count] = self.reordered[begin:end]
                self.vind[begin:begin + self.cap[node]] = DEAD_SLOT
                self.dead_slots += int(self.cap[node])
                begin, end = start, start + count
                self.begin[node] = begin
            self.cap[node] = new_cap
        self.vind[end] = point_id
        if self.reordered is not None:
            self.reordered[end] = coords
        self.end[node] = end + 1

    # ------------------------------------------------------------------
    # Copie, parcours, mémoire
    # ------------------------------------------------------------------
    def clone(self) -> "NodeArena":
        """Copie profonde de tous les tableaux."""
        arena = NodeArena.__new__(NodeArena)
        arena.__dict__.update(self.__dict__)
        for name in ("split_dim", "split_val", "left", "right", "begin", "end", "cap", "lo", "hi", "vind"):
            setattr(arena, name, getattr(self, name).copy())
        if self.reordered is not None:
            arena.reordered = self.reordered.copy()
        return arena

    def preorder(self) -> np.ndarray:
        """Indices des nœuds accessibles depuis la racine, en ordre préfixe."""
        order = []
        stack = [self.root] if self.n_nodes else []
        while stack:
            node = stack.pop()
            order.append(node)
            if self.split_dim[node] != LEAF:
                stack.append(int(self.right[node]))
                stack.append(int(self.left[node]))
        return np.array(order, dtype=np.int64)

    def depths(self) -> np.ndarray:
        """Profondeur de chaque nœud (0 = racine)."""
        depth = np.zeros(self.n_nodes, dtype=np.int64)
        for node in self.preorder():
            if self.split_dim[node] != LEAF:
                depth[self.left[node]] = depth[node] + 1
                depth[self.right[node]] = depth[node] + 1
        return depth

    def used_memory(self) -> int:
        """Octets occupés par les tableaux de l'arène."""
        total = sum(getattr(self, name).nbytes for name in
                    ("split_dim", "split_val", "left", "right", "begin", "end", "cap", "lo", "hi", "vind"))
        if self.reordered is not None:
            total += self.reordered.nbytes
        return int(total)
