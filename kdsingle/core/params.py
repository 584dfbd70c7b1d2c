"""
Paramètres de construction, de chargement et de recherche.
Les champs laissés à None sont résolus depuis la configuration YAML.
"""

from dataclasses import dataclass, replace
from typing import Optional

from kdsingle.core.errors import InvalidInput
from kdsingle.utils.config import ConfigManager


@dataclass
class KDTreeSingleIndexParams:
    """Paramètres de construction d'un kd-tree unique."""

    leaf_size: Optional[int] = None
    reorder: Optional[bool] = None
    max_depth: Optional[int] = None
    n_jobs: Optional[int] = None
    parallel_threshold: Optional[int] = None

    def resolved(self, config: Optional[ConfigManager] = None) -> "KDTreeSingleIndexParams":
        """Retourne une copie dont tous les champs sont renseignés."""
        section = (config or ConfigManager()).get_section("build_tree")
        params = replace(
            self,
            leaf_size=int(self.leaf_size if self.leaf_size is not None else section["leaf_size"]),
            reorder=bool(self.reorder if self.reorder is not None else section["reorder"]),
            max_depth=int(self.max_depth if self.max_depth is not None else section["max_depth"]),
            n_jobs=int(self.n_jobs if self.n_jobs is not None else section["n_jobs"]),
            parallel_threshold=int(self.parallel_threshold if self.parallel_threshold is not None
                                   else section["parallel_threshold"]),
        )
        if params.leaf_size < 1:
            raise InvalidInput(f"leaf_size doit être >= 1 (reçu {params.leaf_size})")
        if params.max_depth < 1:
            raise InvalidInput(f"max_depth doit être >= 1 (reçu {params.max_depth})")
        return params


@dataclass
class SavedIndexParams:
    """Paramètres pour recharger un index sauvegardé avec save()."""

    filename: str


@dataclass
class SearchParams:
    """
    Paramètres de recherche.

    Attributes:
        checks: -1 pour une recherche exacte, sinon nombre maximal de feuilles visitées
        eps: marge relative autorisant l'élagage de branches presque aussi proches
        sorted: trier les résultats par distance croissante
        max_neighbors: limite du nombre de résultats en recherche par rayon (-1 = illimité)
        cores: nombre de threads utilisés pour un lot de requêtes
    """

    checks: Optional[int] = None
    eps: Optional[float] = None
    sorted: Optional[bool] = None
    max_neighbors: Optional[int] = None
    cores: Optional[int] = None

    def resolved(self, config: Optional[ConfigManager] = None) -> "SearchParams":
        """Retourne une copie dont tous les champs sont renseignés."""
        section = (config or ConfigManager()).get_section("search")
        params = replace(
            self,
            checks=int(self.checks if self.checks is not None else section["checks"]),
            eps=float(self.eps if self.eps is not None else section["eps"]),
            sorted=bool(self.sorted if self.sorted is not None else section["sorted"]),
            max_neighbors=int(self.max_neighbors if self.max_neighbors is not None
                              else section["max_neighbors"]),
            cores=int(self.cores if self.cores is not None else section["cores"]),
        )
        if params.checks < -1:
            raise InvalidInput(f"checks doit être -1 ou >= 0 (reçu {params.checks})")
        if params.eps < 0:
            raise InvalidInput(f"eps doit être positif (reçu {params.eps})")
        return params
