"""
Hiérarchie des erreurs de kdsingle.
Chaque condition d'échec a sa propre classe pour que l'appelant puisse réagir
au cas précis (données invalides, index non construit, fichier corrompu...).
"""


class KDTreeError(Exception):
    """Classe de base de toutes les erreurs levées par kdsingle."""


class InvalidInput(KDTreeError, ValueError):
    """Données invalides: dimension nulle, matrice vide, dimension incohérente."""


class NotBuilt(KDTreeError, RuntimeError):
    """Opération demandée avant toute construction de l'arbre."""


class OutOfRange(KDTreeError, IndexError):
    """Identifiant de point hors de l'intervalle [0, rows)."""


class AlreadyRemoved(KDTreeError, ValueError):
    """Suppression d'un identifiant déjà marqué comme supprimé."""


class FormatError(KDTreeError, ValueError):
    """Fichier d'index illisible: signature ou version inconnue."""


class DimensionMismatch(FormatError):
    """Les données fournies au chargement ne correspondent pas à l'en-tête."""


class Truncated(FormatError):
    """Le flux se termine avant la fin des structures déclarées."""
