"""
Index kd-tree unique: façade regroupant construction, recherche, ajout,
suppression, sauvegarde et copie.
"""

from __future__ import annotations

import copy
import time
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
from joblib import Parallel, delayed
from tqdm.auto import tqdm

from kdsingle.builder.builder import TreeBuilder
from kdsingle.builder.insertion import insert_points
from kdsingle.core.arena import NodeArena
from kdsingle.core.deletion import DeletionTracker
from kdsingle.core.distance import L2Distance
from kdsingle.core.errors import InvalidInput, NotBuilt
from kdsingle.core.params import KDTreeSingleIndexParams, SavedIndexParams, SearchParams
from kdsingle.core.point_view import PointStore, PointView, as_point_view
from kdsingle.io.reader import read_index
from kdsingle.io.writer import write_index
from kdsingle.search.searcher import Searcher
from kdsingle.utils.config import ConfigManager

# Nombre de requêtes à partir duquel une barre de progression est affichée
PROGRESS_MIN_QUERIES = 1000


class KDTreeSingleIndex:
    """
    Index des plus proches voisins reposant sur un seul kd-tree.

    Les données de l'appelant sont référencées sans copie et ne doivent pas
    être modifiées tant que l'index les utilise. Avec `reorder`, l'index
    garde en plus une copie privée des coordonnées dans l'ordre des feuilles.
    """

    def __init__(
        self,
        data,
        params: Union[KDTreeSingleIndexParams, SavedIndexParams, None] = None,
        distance: Optional[L2Distance] = None,
        verbose: Optional[bool] = None,
        config: Optional[ConfigManager] = None,
    ):
        """
        Initialise l'index sans le construire.

        Args:
            data: Matrice de points (tableau numpy 2-D ou PointView)
            params: Paramètres de construction, ou SavedIndexParams pour recharger un index
            distance: Distance au carré (L2 par défaut)
            verbose: Afficher la progression (défaut: general.verbose de la configuration)
            config: Gestionnaire de configuration (défaut: config.yaml)
        """
        self.config = config or ConfigManager()
        self.verbose = bool(self.config.get("general", "verbose", False) if verbose is None else verbose)
        self.distance = distance or L2Distance()

        view = as_point_view(data)
        if view.cols == 0:
            raise InvalidInput("Les points doivent avoir au moins une dimension")
        self.store = PointStore(view)
        self.tracker = DeletionTracker(view.rows)
        self.arena: Optional[NodeArena] = None
        self.size_at_build = 0

        if isinstance(params, SavedIndexParams):
            self.params = KDTreeSingleIndexParams().resolved(self.config)
            self._load(params.filename)
        else:
            self.params = (params or KDTreeSingleIndexParams()).resolved(self.config)

    # ------------------------------------------------------------------
    # Propriétés
    # ------------------------------------------------------------------
    @property
    def veclen(self) -> int:
        """Dimension des points."""
        return self.store.cols

    @property
    def rows(self) -> int:
        """Nombre d'identifiants attribués (points supprimés compris)."""
        return self.store.rows

    @property
    def size(self) -> int:
        """Nombre de points vivants."""
        return self.store.rows - self.tracker.total_removed

    def __len__(self) -> int:
        return self.size

    @property
    def is_built(self) -> bool:
        return self.arena is not None

    @property
    def reorder(self) -> bool:
        return self.params.reorder

    @property
    def leaf_size(self) -> int:
        return self.params.leaf_size

    def get_point(self, point_id: int) -> np.ndarray:
        """Coordonnées d'un point par identifiant."""
        return self.store.point(int(point_id))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def _builder(self) -> TreeBuilder:
        return TreeBuilder(
            leaf_size=self.params.leaf_size,
            max_depth=self.params.max_depth,
            reorder=self.params.reorder,
            n_jobs=self.params.n_jobs,
            parallel_threshold=self.params.parallel_threshold,
            verbose=self.verbose,
        )

    def build_index(self) -> None:
        """
        Construit (ou reconstruit) l'arbre sur les points vivants.

        Les pierres tombales sont éliminées. En cas d'échec, l'arbre précédent
        est conservé tel quel.
        """
        if self.store.rows == 0:
            raise InvalidInput("Impossible de construire un index sur une matrice vide")
        ids = self.tracker.live_ids()
        if len(ids) == 0:
            raise InvalidInput("Aucun point vivant à indexer")

        arena = self._builder().build(ids, self.store.take(ids))

        self.arena = arena
        self.tracker.compact()
        self.size_at_build = len(ids)

    def add_points(self, points, rebuild_threshold: Optional[float] = None) -> range:
        """
        Ajoute un bloc de points à l'index.

        Args:
            points: Nouveaux points (même dimension que l'index)
            rebuild_threshold: Reconstruire entièrement si la taille dépasse
                size_at_build × rebuild_threshold (<= 1 pour toujours insérer
                incrémentalement; défaut: configuration)

        Returns:
            range: Identifiants attribués aux nouveaux points
        """
        view = as_point_view(points)
        if view.cols != self.veclen:
            raise InvalidInput(f"Dimension incohérente: {view.cols} au lieu de {self.veclen}")
        if not np.all(np.isfinite(view.data)):
            raise InvalidInput("Les coordonnées doivent être finies (NaN ou infini détecté)")
        if rebuild_threshold is None:
            rebuild_threshold = float(self.config.get("build_tree", "rebuild_threshold", 2.0))

        new_ids = self.store.append(view)
        self.tracker.grow(self.store.rows)
        if view.rows == 0:
            return new_ids

        if self.arena is None:
            self.build_index()
        elif rebuild_threshold > 1 and self.size_at_build * rebuild_threshold < self.size:
            if self.verbose:
                print(f"  → {self.size:,} points > {self.size_at_build:,} × {rebuild_threshold}: reconstruction complète")
            self.build_index()
        else:
            start_time = time.time()
            insert_points(self.arena, self.store, np.arange(new_ids.start, new_ids.stop),
                          self.params.leaf_size, self.params.max_depth)
            if self.verbose:
                elapsed = time.time() - start_time
                print(f"✓ {view.rows:,} points insérés en {elapsed:.2f}s")
        return new_ids

    # ------------------------------------------------------------------
    # Suppression
    # ------------------------------------------------------------------
    def remove_point(self, point_id: int) -> None:
        """
        Marque un point comme supprimé.

        Raises:
            OutOfRange: identifiant inconnu
            AlreadyRemoved: point déjà supprimé
        """
        self.tracker.mark(point_id)

    def remove_points(self, ids) -> None:
        """Supprime plusieurs points; aucun n'est supprimé si l'un d'eux est invalide."""
        self.tracker.mark_many(ids)

    # ------------------------------------------------------------------
    # Recherche
    # ------------------------------------------------------------------
    def _searcher(self) -> Searcher:
        if self.arena is None:
            raise NotBuilt("L'index doit être construit avant la recherche (build_index)")
        return Searcher(self.arena, self.store, self.tracker, self.distance)

    def _queries(self, queries) -> np.ndarray:
        queries = np.asarray(queries.data if isinstance(queries, PointView) else queries, dtype=np.float64)
        if queries.ndim == 1:
            queries = queries.reshape(1, -1)
        if queries.ndim != 2 or queries.shape[1] != self.veclen:
            raise InvalidInput(f"Les requêtes doivent être de dimension {self.veclen}")
        return queries

    def _run(self, func, queries: np.ndarray, cores: int, desc: str) -> List:
        """Applique `func` à chaque requête, éventuellement sur plusieurs threads."""
        if cores != 1 and len(queries) > 1:
            return Parallel(n_jobs=cores, prefer="threads")(delayed(func)(q) for q in queries)
        iterator = queries
        if self.verbose and len(queries) >= PROGRESS_MIN_QUERIES:
            iterator = tqdm(queries, desc=desc)
        return [func(q) for q in iterator]

    def knn_search(self, queries, k: int, params: Optional[SearchParams] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Recherche des k plus proches voisins de chaque requête.

        Args:
            queries: Une requête (1-D) ou une matrice de requêtes
            k: Nombre de voisins par requête
            params: Paramètres de recherche (checks, eps, sorted, cores)

        Returns:
            (indices, distances) de forme (n_requêtes, k); les cases non
            atteintes valent -1 et inf
        """
        searcher = self._searcher()
        if k < 0:
            raise InvalidInput(f"k doit être positif (reçu {k})")
        params = (params or SearchParams()).resolved(self.config)
        queries = self._queries(queries)

        indices = np.full((len(queries), k), -1, dtype=np.int64)
        dists = np.full((len(queries), k), np.inf, dtype=np.float64)

        def one(query):
            return searcher.knn(query, k, params.checks, params.eps, params.sorted)

        for row, (ids, d) in enumerate(self._run(one, queries, params.cores, "Recherche KNN")):
            indices[row, :len(ids)] = ids
            dists[row, :len(d)] = d
        return indices, dists

    def radius_search(self, queries, radius: float,
                      params: Optional[SearchParams] = None) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        """
        Recherche des voisins à distance au carré inférieure à `radius`.

        Returns:
            (liste d'indices, liste de distances), un tableau par requête
        """
        searcher = self._searcher()
        params = (params or SearchParams()).resolved(self.config)
        queries = self._queries(queries)

        def one(query):
            return searcher.radius(query, radius, params.checks, params.eps, params.sorted,
                                   params.max_neighbors)

        results = self._run(one, queries, params.cores, "Recherche par rayon")
        return [ids for ids, _ in results], [d for _, d in results]

    # ------------------------------------------------------------------
    # Sauvegarde / chargement
    # ------------------------------------------------------------------
    def save(self, file_path: str) -> None:
        """Sauvegarde l'arbre (pas les données) dans un fichier binaire."""
        if self.arena is None:
            raise NotBuilt("Impossible de sauvegarder un index non construit")
        write_index(file_path, self.arena, self.tracker, self.params.leaf_size, self.params.max_depth,
                    self.rows, self.size_at_build, verbose=self.verbose)

    def _load(self, file_path: str) -> None:
        loaded = read_index(file_path, self.store.blocks[0], verbose=self.verbose)
        self.params.leaf_size = loaded.leaf_size
        self.params.max_depth = loaded.max_depth
        self.params.reorder = loaded.reorder
        self.arena = loaded.arena
        self.tracker = loaded.tracker
        self.size_at_build = loaded.size_at_build

    @classmethod
    def load(cls, data, file_path: str, verbose: Optional[bool] = None,
             config: Optional[ConfigManager] = None) -> "KDTreeSingleIndex":
        """Recharge un index sauvegardé et le rattache à `data`."""
        return cls(data, SavedIndexParams(file_path), verbose=verbose, config=config)

    # ------------------------------------------------------------------
    # Copie
    # ------------------------------------------------------------------
    def copy(self) -> "KDTreeSingleIndex":
        """
        Copie indépendante: arène, permutation, suppressions et copie réordonnée
        sont dupliquées; les données de l'appelant restent partagées.
        """
        clone = KDTreeSingleIndex.__new__(KDTreeSingleIndex)
        clone.__dict__.update(self.__dict__)
        clone.params = copy.copy(self.params)
        clone.store = self.store.copy()
        clone.tracker = self.tracker.copy()
        clone.arena = self.arena.clone() if self.arena is not None else None
        return clone

    __copy__ = copy

    def __deepcopy__(self, memo) -> "KDTreeSingleIndex":
        return self.copy()

    def assign(self, other: "KDTreeSingleIndex") -> "KDTreeSingleIndex":
        """
        Remplace le contenu de cet index par une copie de `other`.
        L'objet garde son identité.
        """
        if other is not self:
            clone = other.copy()
            self.__dict__, clone.__dict__ = clone.__dict__, self.__dict__
        return self

    # ------------------------------------------------------------------
    # Statistiques
    # ------------------------------------------------------------------
    def used_memory(self) -> int:
        """Octets occupés par l'arbre et les structures de l'index (hors données de l'appelant)."""
        total = self.tracker.removed.nbytes
        if self.arena is not None:
            total += self.arena.used_memory()
        return int(total)

    def get_statistics(self) -> Dict[str, Any]:
        """
        Calcule diverses statistiques sur l'arbre.

        Returns:
            Dict: Dictionnaire de statistiques
        """
        if self.arena is None:
            return {"error": "Arbre vide"}

        arena = self.arena
        leaves = arena.leaves()
        sizes = arena.end[leaves] - arena.begin[leaves]
        depths = arena.depths()[leaves]
        return {
            "node_count": int(arena.n_nodes),
            "leaf_count": int(len(leaves)),
            "max_depth": int(depths.max()),
            "min_leaf_depth": int(depths.min()),
            "avg_leaf_depth": float(depths.mean()),
            "avg_leaf_size": float(sizes.mean()),
            "min_leaf_size": int(sizes.min()),
            "max_leaf_size": int(sizes.max()),
            "total_indices": int(sizes.sum()),
            "removed_pending": int(self.tracker.pending),
            "dead_slots": int(arena.dead_slots),
            "size": self.size,
            "dims": self.veclen,
        }

    def __str__(self) -> str:
        """Représentation sous forme de chaîne pour le débogage."""
        if self.arena is None:
            return f"KDTreeSingleIndex(size={self.size}, dims={self.veclen}, built=False)"
        stats = self.get_statistics()
        return (f"KDTreeSingleIndex(size={stats['size']}, dims={stats['dims']}, "
                f"nodes={stats['node_count']}, leaves={stats['leaf_count']}, "
                f"height={stats['max_depth']}, reorder={self.reorder})")
