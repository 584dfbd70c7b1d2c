"""
Module de recherche pour kdsingle.
Parcours « meilleur d'abord » avec élagage par boîtes englobantes.
"""

import heapq
from typing import Optional, Tuple

import numpy as np

from kdsingle.core.arena import LEAF, NodeArena
from kdsingle.core.deletion import DeletionTracker
from kdsingle.core.distance import L2Distance
from kdsingle.core.point_view import PointStore
from kdsingle.search.result_set import KNNResultSet, RadiusResultSet, ResultSet


class Searcher:
    """
    Parcourt une arène pour trouver les plus proches voisins vivants.

    Les sous-arbres écartés à chaque coupe sont placés dans un tas trié par la
    distance de la requête à leur boîte englobante; un sous-arbre n'est
    exploré que si cette borne, multipliée par (1 + eps), reste inférieure à
    la pire distance retenue. Aucun état n'est partagé entre deux requêtes.
    """

    def __init__(self, arena: NodeArena, store: PointStore, tracker: DeletionTracker,
                 distance: Optional[L2Distance] = None):
        """
        Args:
            arena: Nœuds et permutation de l'arbre
            store: Points de l'index (utilisés si l'arène n'a pas de copie réordonnée)
            tracker: Points supprimés, ignorés pendant la recherche
            distance: Distance au carré (L2 par défaut)
        """
        self.arena = arena
        self.store = store
        self.tracker = tracker
        self.distance = distance or L2Distance()

    def knn(self, query: np.ndarray, k: int, checks: int = -1, eps: float = 0.0,
            sort: bool = True) -> Tuple[np.ndarray, np.ndarray]:
        """
        Les k plus proches voisins vivants d'une requête.

        Args:
            query: Vecteur requête
            k: Nombre de voisins
            checks: -1 pour une recherche exacte, sinon nombre maximal de feuilles visitées
            eps: Marge relative d'élagage
            sort: Trier par distance croissante

        Returns:
            (identifiants, distances au carré), au plus k de chaque
        """
        result = KNNResultSet(k)
        self.find_neighbors(result, query, checks, eps)
        return result.results(sort)

    def radius(self, query: np.ndarray, radius: float, checks: int = -1, eps: float = 0.0,
               sort: bool = True, max_neighbors: int = -1) -> Tuple[np.ndarray, np.ndarray]:
        """
        Les voisins vivants à distance au carré strictement inférieure à `radius`.
        """
        result = RadiusResultSet(radius, max_neighbors)
        self.find_neighbors(result, query, checks, eps)
        return result.results(sort)

    def find_neighbors(self, result: ResultSet, query: np.ndarray, checks: int = -1, eps: float = 0.0) -> int:
        """
        Remplit `result` et retourne le nombre de feuilles visitées.

        Une branche dont la borne, multipliée par (1 + eps), dépasse la pire
        distance retenue n'est pas descendue et ne compte pas dans le budget.
        En KNN, la première descente atteint toujours une feuille; ensuite, au
        plus `checks` feuilles au total sont visitées quand checks >= 0.
        """
        arena = self.arena
        if arena.n_nodes == 0:
            return 0

        query = np.asarray(query, dtype=np.float64)
        epsilon = 1.0 + eps
        budget = max(checks, 1) if checks >= 0 else None
        to_box = self.distance.to_box

        heap = [(to_box(arena.lo[0], arena.hi[0], query), 0)]
        leaves = 0
        while heap:
            bound, node = heapq.heappop(heap)
            if bound * epsilon > result.worst():
                break
            if budget is not None and leaves >= budget:
                break

            # Descente vers la feuille la plus proche
            while node >= 0 and arena.split_dim[node] != LEAF:
                dim = arena.split_dim[node]
                if query[dim] < arena.split_val[node]:
                    near, far = int(arena.left[node]), int(arena.right[node])
                else:
                    near, far = int(arena.right[node]), int(arena.left[node])
                far_bound = to_box(arena.lo[far], arena.hi[far], query)
                if far_bound * epsilon <= result.worst():
                    heapq.heappush(heap, (far_bound, far))
                near_bound = to_box(arena.lo[near], arena.hi[near], query)
                node = near if near_bound * epsilon <= result.worst() else -1
            if node < 0:
                # Branche proche élaguée: aucune feuille visitée
                continue

            leaves += 1
            self._scan_leaf(node, query, result)
        return leaves

    def _scan_leaf(self, node: int, query: np.ndarray, result: ResultSet) -> None:
        """Distances exactes aux points vivants d'une feuille."""
        arena = self.arena
        begin, end = arena.begin[node], arena.end[node]
        ids = arena.vind[begin:end]
        live = self.tracker.live_mask(ids)
        if arena.reordered is not None:
            points = arena.reordered[begin:end][live]
        else:
            points = None
        ids = ids[live]
        if len(ids) == 0:
            return
        if points is None:
            points = self.store.take(ids)
        result.add_many(ids, self.distance.to_points(points, query))
