"""
Insertion incrémentale de points dans un kd-tree existant.
"""

import numpy as np

from kdsingle.builder.builder import build_fragment
from kdsingle.core.arena import LEAF, NodeArena
from kdsingle.core.point_view import PointStore


def insert_point(arena: NodeArena, store: PointStore, point_id: int, point: np.ndarray,
                 leaf_size: int, max_depth: int) -> int:
    """
    Insère un point en descendant selon les tests de coupe.

    Les boîtes englobantes du chemin sont agrandies pour contenir le point.
    Si la feuille atteinte dépasse `leaf_size`, elle est coupée sur place
    avec la même règle que la construction complète.

    Returns:
        int: Indice de la feuille atteinte avant une éventuelle coupe
    """
    node = arena.root
    depth = 0
    while arena.split_dim[node] != LEAF:
        arena.expand_box(node, point)
        if point[arena.split_dim[node]] < arena.split_val[node]:
            node = int(arena.left[node])
        else:
            node = int(arena.right[node])
        depth += 1

    arena.expand_box(node, point)
    arena.append_to_leaf(node, point_id, point if arena.reorder else None, headroom=leaf_size + 1)

    if arena.leaf_count(node) > leaf_size and depth < max_depth:
        split_leaf(arena, store, node, leaf_size, max_depth, depth)
    return node


def split_leaf(arena: NodeArena, store: PointStore, node: int, leaf_size: int, max_depth: int, depth: int) -> None:
    """
    Remplace une feuille trop pleine par un sous-arbre construit sur ses seuls points.
    """
    begin, end = int(arena.begin[node]), int(arena.end[node])
    ids = arena.vind[begin:end].copy()
    if arena.reordered is not None:
        coords = arena.reordered[begin:end].copy()
    else:
        coords = store.take(ids)

    fragment = build_fragment(ids, coords, leaf_size, max_depth, base_depth=depth)
    if fragment.n_nodes == 1:
        # Points identiques: la feuille reste surdimensionnée
        return

    arena.dead_slots += int(arena.cap[node]) - (end - begin)
    arena.write_slots(begin, fragment.ids, fragment.coords)
    arena.graft(fragment, begin, at=node)


def insert_points(arena: NodeArena, store: PointStore, ids, leaf_size: int, max_depth: int) -> None:
    """
    Insère un bloc de points, dans l'ordre, sans reconstruire l'arbre.

    Args:
        arena: Arène à faire croître
        store: Points de l'index, nouveau bloc compris
        ids: Identifiants des nouveaux points
        leaf_size: Nombre maximal de points par feuille
        max_depth: Profondeur maximale
    """
    ids = np.asarray(ids, dtype=np.int64)
    points = np.asarray(store.take(ids), dtype=np.float64)
    for point_id, point in zip(ids, points):
        insert_point(arena, store, int(point_id), point, leaf_size, max_depth)
