"""
Ensembles de résultats bornés utilisés pendant la recherche.
"""

import heapq
import math
from typing import Optional, Tuple

import numpy as np


class ResultSet:
    """
    Garde les meilleurs candidats vus jusqu'ici.

    Tas max (distances négées) de taille au plus `capacity`; seuls les points
    strictement plus proches que `radius` sont acceptés. À distance égale,
    le candidat rencontré en premier est conservé.
    """

    def __init__(self, capacity: Optional[int] = None, radius: float = math.inf):
        self.capacity = capacity
        self.radius = radius
        self._heap = []
        self._seq = 0

    def __len__(self) -> int:
        return len(self._heap)

    def full(self) -> bool:
        return self.capacity is not None and len(self._heap) >= self.capacity

    def worst(self) -> float:
        """Distance à battre pour entrer dans l'ensemble."""
        if self.full():
            if not self._heap:
                return -math.inf
            return min(-self._heap[0][0], self.radius)
        return self.radius

    def add(self, point_id: int, dist: float) -> None:
        if dist >= self.worst():
            return
        self._seq += 1
        entry = (-dist, -self._seq, point_id)
        if self.full():
            heapq.heapreplace(self._heap, entry)
        else:
            heapq.heappush(self._heap, entry)

    def add_many(self, ids: np.ndarray, dists: np.ndarray) -> None:
        """Propose un lot de candidats dans l'ordre du lot."""
        keep = dists < self.worst()
        for point_id, dist in zip(ids[keep].tolist(), dists[keep].tolist()):
            self.add(point_id, dist)

    def results(self, sort: bool = True) -> Tuple[np.ndarray, np.ndarray]:
        """
        Returns:
            (identifiants, distances), par distance croissante si `sort`
        """
        entries = self._heap
        if sort:
            entries = sorted(entries, key=lambda e: (-e[0], -e[1]))
        ids = np.fromiter((e[2] for e in entries), dtype=np.int64, count=len(entries))
        dists = np.fromiter((-e[0] for e in entries), dtype=np.float64, count=len(entries))
        return ids, dists


class KNNResultSet(ResultSet):
    """Les k plus proches voisins."""

    def __init__(self, k: int):
        super().__init__(capacity=k)


class RadiusResultSet(ResultSet):
    """Les voisins à distance (au carré) inférieure à `radius`, au plus `max_neighbors`."""

    def __init__(self, radius: float, max_neighbors: int = -1):
        super().__init__(capacity=max_neighbors if max_neighbors >= 0 else None, radius=radius)
