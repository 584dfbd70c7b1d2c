"""
Suivi des points supprimés (pierres tombales).
La suppression ne modifie jamais la structure de l'arbre: la recherche filtre
les identifiants marqués et la reconstruction les élimine.
"""

import numpy as np

from kdsingle.core.errors import AlreadyRemoved, OutOfRange


class DeletionTracker:
    """
    Masque booléen des identifiants supprimés, indexé par identifiant.

    `pending` compte les pierres tombales encore présentes dans l'arbre;
    compact() les remet à zéro après une reconstruction, mais les identifiants
    restent marqués pour ne jamais être réutilisés ni supprimés deux fois.
    """

    def __init__(self, size: int = 0):
        self.removed = np.zeros(size, dtype=bool)
        self.pending = 0

    def __len__(self) -> int:
        return self.pending

    def __contains__(self, point_id) -> bool:
        return 0 <= point_id < len(self.removed) and bool(self.removed[point_id])

    @property
    def total_removed(self) -> int:
        return int(np.count_nonzero(self.removed))

    def grow(self, size: int) -> None:
        """Étend le masque pour couvrir `size` identifiants."""
        if size > len(self.removed):
            self.removed = np.concatenate([self.removed, np.zeros(size - len(self.removed), dtype=bool)])

    def mark(self, point_id: int) -> None:
        """
        Marque un identifiant comme supprimé.

        Raises:
            OutOfRange: identifiant inconnu
            AlreadyRemoved: identifiant déjà supprimé
        """
        point_id = int(point_id)
        if point_id < 0 or point_id >= len(self.removed):
            raise OutOfRange(f"Identifiant {point_id} hors de [0, {len(self.removed)})")
        if self.removed[point_id]:
            raise AlreadyRemoved(f"Le point {point_id} est déjà supprimé")
        self.removed[point_id] = True
        self.pending += 1

    def mark_many(self, ids) -> None:
        """Marque plusieurs identifiants; rien n'est modifié si l'un d'eux est invalide."""
        ids = np.asarray(ids, dtype=np.int64).reshape(-1)
        bad = ids[(ids < 0) | (ids >= len(self.removed))]
        if len(bad):
            raise OutOfRange(f"Identifiant {int(bad[0])} hors de [0, {len(self.removed)})")
        uniq, counts = np.unique(ids, return_counts=True)
        dup = uniq[(counts > 1) | self.removed[uniq]]
        if len(dup):
            raise AlreadyRemoved(f"Le point {int(dup[0])} est déjà supprimé")
        self.removed[uniq] = True
        self.pending += len(uniq)

    def live_mask(self, ids: np.ndarray) -> np.ndarray:
        """Masque des identifiants encore présents parmi `ids`."""
        return ~self.removed[ids]

    def live_ids(self) -> np.ndarray:
        """Tous les identifiants non supprimés, par ordre croissant."""
        return np.flatnonzero(~self.removed)

    def compact(self) -> None:
        """L'arbre vient d'être reconstruit sans les points supprimés."""
        self.pending = 0

    def copy(self) -> "DeletionTracker":
        tracker = DeletionTracker()
        tracker.removed = self.removed.copy()
        tracker.pending = self.pending
        return tracker
