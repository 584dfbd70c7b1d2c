"""
Fonctions communes aux tests: vérification des invariants de l'arbre.
"""

import numpy as np


def check_tree(index, leaf_size=None):
    """
    Vérifie les invariants structurels de l'arbre d'un index.

    - chaque point d'une feuille respecte les coupes de ses ancêtres
    - chaque boîte contient les points et les boîtes de ses descendants
    - les feuilles ne dépassent pas leaf_size (si fourni)

    Returns:
        np.ndarray: Identifiants rencontrés dans les feuilles, triés
    """
    arena = index.arena
    seen = []
    stack = [(arena.root, [])]
    while stack:
        node, constraints = stack.pop()
        if arena.is_leaf(node):
            ids = arena.leaf_ids(node)
            seen.extend(ids.tolist())
            if len(ids) == 0:
                continue
            pts = index.store.take(ids)
            assert np.all(pts >= arena.lo[node]) and np.all(pts <= arena.hi[node])
            for dim, val, go_left in constraints:
                if go_left:
                    assert np.all(pts[:, dim] < val)
                else:
                    assert np.all(pts[:, dim] >= val)
            if leaf_size is not None:
                assert len(ids) <= leaf_size
            if arena.reordered is not None:
                np.testing.assert_array_equal(arena.leaf_coords(node), pts)
            continue

        dim, val = int(arena.split_dim[node]), float(arena.split_val[node])
        for child, go_left in ((int(arena.left[node]), True), (int(arena.right[node]), False)):
            assert np.all(arena.lo[child] >= arena.lo[node])
            assert np.all(arena.hi[child] <= arena.hi[node])
            stack.append((child, constraints + [(dim, val, go_left)]))
    return np.sort(np.array(seen, dtype=np.int64))
