"""
Accès aux coordonnées des points sans copie.

PointView enveloppe une matrice (lignes = points, colonnes = dimensions) dont
le pas entre deux lignes peut dépasser la taille d'une ligne (données
alignées ou entrelacées). PointStore concatène logiquement plusieurs blocs
(données initiales puis blocs ajoutés par add_points).
"""

from __future__ import annotations

from typing import List, Optional, Union

import numpy as np

from kdsingle.core.errors import InvalidInput, OutOfRange


class PointView:
    """
    Vue non propriétaire sur une matrice de points.

    Le point i, coordonnée j, est lu à l'adresse
    base + i * row_stride_bytes + j * element_size.
    """

    def __init__(self, data: np.ndarray):
        """
        Args:
            data: Tableau numpy 2-D (éventuellement une vue à pas quelconque)
        """
        data = np.asanyarray(data)
        if data.ndim == 1:
            data = data.reshape(1, -1)
        if data.ndim != 2:
            raise InvalidInput(f"Une matrice 2-D est attendue (reçu {data.ndim} dimensions)")
        if not np.issubdtype(data.dtype, np.number):
            raise InvalidInput(f"Type de données non numérique: {data.dtype}")
        self.data = data

    @classmethod
    def from_buffer(
        cls,
        buffer,
        rows: int,
        cols: int,
        row_stride_bytes: Optional[int] = None,
        dtype: Union[str, np.dtype] = np.float32,
        offset: int = 0,
    ) -> "PointView":
        """
        Construit une vue sur un tampon brut avec un pas de ligne explicite.

        Args:
            buffer: Objet supportant le protocole buffer (bytes, bytearray, ndarray...)
            rows: Nombre de points
            cols: Dimension des points
            row_stride_bytes: Pas entre deux lignes en octets (défaut: cols * taille d'élément)
            dtype: Type des coordonnées
            offset: Décalage en octets du premier point

        Returns:
            PointView: Vue sans copie sur le tampon
        """
        dtype = np.dtype(dtype)
        if row_stride_bytes is None:
            row_stride_bytes = cols * dtype.itemsize
        if row_stride_bytes < cols * dtype.itemsize:
            raise InvalidInput(
                f"Pas de ligne trop petit: {row_stride_bytes} < {cols} × {dtype.itemsize} octets"
            )
        try:
            data = np.ndarray(
                shape=(rows, cols),
                dtype=dtype,
                buffer=buffer,
                offset=offset,
                strides=(row_stride_bytes, dtype.itemsize),
            )
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"Tampon incompatible avec la vue demandée: {e}") from e
        return cls(data)

    @property
    def rows(self) -> int:
        return int(self.data.shape[0])

    @property
    def cols(self) -> int:
        return int(self.data.shape[1])

    @property
    def row_stride_bytes(self) -> int:
        return int(self.data.strides[0])

    @property
    def element_size(self) -> int:
        return int(self.data.itemsize)

    @property
    def is_contiguous(self) -> bool:
        """True si les lignes sont consécutives, sans remplissage."""
        return self.row_stride_bytes == self.cols * self.element_size

    def __len__(self) -> int:
        return self.rows

    def __getitem__(self, index):
        return self.data[index]

    def take(self, ids: np.ndarray) -> np.ndarray:
        """Copie les coordonnées des lignes `ids` dans un tableau contigu."""
        return self.data[ids]

    def __repr__(self) -> str:
        return (f"PointView(rows={self.rows}, cols={self.cols}, "
                f"row_stride_bytes={self.row_stride_bytes}, element_size={self.element_size})")


def as_point_view(points) -> PointView:
    """Convertit un tableau ou une vue en PointView."""
    if isinstance(points, PointView):
        return points
    return PointView(points)


class PointStore:
    """
    Suite ordonnée de blocs de points indexés par un identifiant global.
    Le bloc b couvre les identifiants [offsets[b], offsets[b + 1]).
    """

    def __init__(self, first: PointView):
        self.blocks: List[PointView] = [first]
        self.offsets = np.array([0, first.rows], dtype=np.int64)
        self.cols = first.cols
        self.dtype = first.data.dtype

    @property
    def rows(self) -> int:
        return int(self.offsets[-1])

    def __len__(self) -> int:
        return self.rows

    def append(self, block: PointView) -> range:
        """
        Ajoute un bloc de points et retourne la plage d'identifiants attribués.
        """
        if block.cols != self.cols:
            raise InvalidInput(
                f"Dimension incohérente: {block.cols} au lieu de {self.cols}"
            )
        start = self.rows
        self.blocks.append(block)
        self.offsets = np.append(self.offsets, start + block.rows)
        return range(start, start + block.rows)

    def point(self, point_id: int) -> np.ndarray:
        """Retourne les coordonnées d'un point."""
        if point_id < 0 or point_id >= self.rows:
            raise OutOfRange(f"Identifiant {point_id} hors de [0, {self.rows})")
        b = int(np.searchsorted(self.offsets, point_id, side="right")) - 1
        return self.blocks[b].data[point_id - self.offsets[b]]

    def take(self, ids: np.ndarray) -> np.ndarray:
        """
        Rassemble les coordonnées d'un ensemble d'identifiants.

        Args:
            ids: Tableau d'identifiants globaux

        Returns:
            np.ndarray: Matrice (len(ids), cols)
        """
        ids = np.asarray(ids, dtype=np.int64)
        if len(self.blocks) == 1:
            return self.blocks[0].take(ids)

        out = np.empty((len(ids), self.cols), dtype=self.dtype)
        block_of = np.searchsorted(self.offsets, ids, side="right") - 1
        for b in np.unique(block_of):
            mask = block_of == b
            out[mask] = self.blocks[b].take(ids[mask] - self.offsets[b])
        return out

    def copy(self) -> "PointStore":
        """Copie la liste des blocs; les données des blocs restent partagées."""
        store = PointStore.__new__(PointStore)
        store.blocks = list(self.blocks)
        store.offsets = self.offsets.copy()
        store.cols = self.cols
        store.dtype = self.dtype
        return store
