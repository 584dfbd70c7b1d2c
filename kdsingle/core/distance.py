"""
Distance au carré utilisée par la recherche.
Toute distance fournie à l'index doit exposer les mêmes méthodes.
"""

import numpy as np


class L2Distance:
    """Distance euclidienne au carré."""

    name = "l2"

    def to_points(self, points: np.ndarray, query: np.ndarray) -> np.ndarray:
        """Distances de `query` à chaque ligne de `points`."""
        diff = np.asarray(points, dtype=np.float64) - query
        return np.einsum("ij,ij->i", diff, diff)

    def to_box(self, lo: np.ndarray, hi: np.ndarray, query: np.ndarray) -> float:
        """Borne inférieure de la distance de `query` à tout point de la boîte [lo, hi]."""
        gap = np.maximum(lo - query, 0.0) + np.maximum(query - hi, 0.0)
        return float(np.dot(gap, gap))
