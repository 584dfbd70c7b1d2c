"""
Outils d'évaluation: vérité terrain par recherche exhaustive et précision
de la recherche approchée.
"""

import time
from typing import Any, Dict, Optional

import faiss
import numpy as np

from kdsingle.core.params import SearchParams


def brute_force_knn(data: np.ndarray, queries: np.ndarray, k: int, use_faiss: bool = True):
    """
    Recherche exhaustive des k plus proches voisins (distance L2 au carré).

    Args:
        data: Matrice de points (n, d)
        queries: Matrice de requêtes (m, d)
        k: Nombre de voisins
        use_faiss: Utiliser faiss.IndexFlatL2 plutôt que numpy

    Returns:
        (indices, distances) de forme (m, k)
    """
    data = np.asarray(data)
    queries = np.atleast_2d(np.asarray(queries))
    k = min(k, len(data))

    if use_faiss:
        index = faiss.IndexFlatL2(data.shape[1])
        index.add(np.ascontiguousarray(data, dtype=np.float32))
        dists, indices = index.search(np.ascontiguousarray(queries, dtype=np.float32), k)
        return indices.astype(np.int64), dists.astype(np.float64)

    data64 = data.astype(np.float64)
    indices = np.empty((len(queries), k), dtype=np.int64)
    dists = np.empty((len(queries), k), dtype=np.float64)
    for i, query in enumerate(queries.astype(np.float64)):
        diff = data64 - query
        d = np.einsum("ij,ij->i", diff, diff)
        order = np.argsort(d, kind="stable")[:k]
        indices[i] = order
        dists[i] = d[order]
    return indices, dists


def compute_precision(match: np.ndarray, indices: np.ndarray) -> float:
    """
    Fraction des vrais voisins retrouvés.

    Args:
        match: Vrais voisins (m, k)
        indices: Voisins retournés (m, k)

    Returns:
        float: Précision moyenne entre 0 et 1
    """
    match = np.atleast_2d(match)
    indices = np.atleast_2d(indices)
    if match.size == 0:
        return 1.0
    found = sum(len(np.intersect1d(m, i)) for m, i in zip(match, indices))
    return found / match.size


def evaluate_search(index, queries: np.ndarray, k: int = 10, params: Optional[SearchParams] = None,
                    use_faiss: bool = True, verbose: bool = True) -> Dict[str, Any]:
    """
    Compare la recherche de l'index à une recherche exhaustive.

    Args:
        index: KDTreeSingleIndex construit
        queries: Vecteurs requêtes
        k: Nombre de voisins
        params: Paramètres de recherche de l'index
        use_faiss: Vérité terrain calculée avec faiss
        verbose: Afficher le rapport

    Returns:
        Dict[str, Any]: Précision et temps moyens
    """
    queries = np.atleast_2d(queries)
    live = index.tracker.live_ids()
    points = index.store.take(live)

    if verbose:
        print(f"\n⏳ Évaluation avec {len(queries)} requêtes, k={k}...")

    start_time = time.time()
    indices, _ = index.knn_search(queries, k, params)
    tree_time = time.time() - start_time

    start_time = time.time()
    truth, _ = brute_force_knn(points, queries, k, use_faiss=use_faiss)
    naive_time = time.time() - start_time
    truth = live[truth]

    precision = compute_precision(truth, indices[:, :truth.shape[1]])
    avg_tree_time = tree_time / len(queries)
    avg_naive_time = naive_time / len(queries)
    speedup = avg_naive_time / avg_tree_time if avg_tree_time > 0 else 0

    if verbose:
        print("\n✓ Résultats de l'évaluation:")
        print(f"  - Nombre de requêtes     : {len(queries)}")
        print(f"  - k (voisins demandés)   : {k}")
        print(f"  - Temps moyen (arbre)    : {avg_tree_time*1000:.2f} ms")
        print(f"  - Temps moyen (naïf)     : {avg_naive_time*1000:.2f} ms")
        print(f"  - Accélération           : {speedup:.2f}x")
        print(f"  - Précision              : {precision:.4f} ({precision*100:.2f}%)")

    return {
        "precision": precision,
        "avg_tree_time": avg_tree_time,
        "avg_naive_time": avg_naive_time,
        "speedup": speedup,
    }
