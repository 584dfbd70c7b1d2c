"""
Module de lecture des index kdsingle.
Reconstruit l'arène et le suivi des suppressions à partir d'un fichier binaire.
"""

import os
import time
from dataclasses import dataclass
from typing import BinaryIO

import numpy as np

from kdsingle.core.arena import LEAF, NodeArena
from kdsingle.core.deletion import DeletionTracker
from kdsingle.core.errors import DimensionMismatch, FormatError, Truncated
from kdsingle.core.point_view import PointView
from kdsingle.io.format import HEADER, MAGIC, PREAMBLE, TAG_LEAF, TAG_SPLIT, VERSION, node_dtype


@dataclass
class LoadedIndex:
    """Contenu d'un fichier d'index, prêt à être rattaché à des données."""

    arena: NodeArena
    tracker: DeletionTracker
    leaf_size: int
    max_depth: int
    reorder: bool
    rows: int
    size_at_build: int


def _read_exact(f: BinaryIO, size: int, what: str) -> bytes:
    # Taille déclarée par l'en-tête comparée à ce qui reste réellement
    remaining = os.fstat(f.fileno()).st_size - f.tell()
    if size > remaining:
        raise Truncated(f"Fichier tronqué: {what} incomplet ({max(remaining, 0)}/{size} octets)")
    buffer = f.read(size)
    if len(buffer) < size:
        raise Truncated(f"Fichier tronqué: {what} incomplet ({len(buffer)}/{size} octets)")
    return buffer


def _check_records(records: np.ndarray, n_slots: int, dims: int) -> None:
    """Vérifie la cohérence des nœuds lus."""
    n_nodes = len(records)
    tags = records["tag"]
    if np.any((tags != TAG_LEAF) & (tags != TAG_SPLIT)):
        raise FormatError("Type de nœud inconnu dans le fichier")
    split = tags == TAG_SPLIT
    nodes = np.flatnonzero(split)
    left = records["left"][split]
    right = records["right"][split]
    if np.any((left >= n_nodes) | (right >= n_nodes)):
        raise FormatError("Référence d'enfant hors de l'arbre")
    # Ordre préfixe: les enfants suivent toujours leur parent, gauche avant droite
    if np.any((left <= nodes) | (right <= left)):
        raise FormatError("Référence d'enfant incompatible avec l'ordre préfixe")
    if np.any((records["dim"][split] < 0) | (records["dim"][split] >= dims)):
        raise FormatError("Dimension de coupe invalide")
    leaf = ~split
    if np.any((records["begin"][leaf] < 0) | (records["end"][leaf] > n_slots)
              | (records["begin"][leaf] > records["end"][leaf])):
        raise FormatError("Plage de feuille hors du tableau de permutation")


def read_index(file_path: str, data: PointView, verbose: bool = False) -> LoadedIndex:
    """
    Charge un index sauvegardé par write_index.

    Args:
        file_path: Chemin du fichier d'index
        data: Points auxquels l'index est rattaché (mêmes points que lors de la sauvegarde)
        verbose: Afficher la progression

    Returns:
        LoadedIndex: Arène, suppressions et paramètres

    Raises:
        FormatError: signature ou version inconnue, contenu incohérent
        DimensionMismatch: données incompatibles avec l'en-tête
        Truncated: fichier incomplet
    """
    start_time = time.time()
    if verbose:
        print(f"⏳ Chargement du kd-tree depuis {file_path}...")

    with open(file_path, "rb") as f:
        magic, version = PREAMBLE.unpack(_read_exact(f, PREAMBLE.size, "signature"))
        if magic != MAGIC:
            raise FormatError(f"Signature inconnue: {magic!r}")
        if version != VERSION:
            raise FormatError(f"Version de format non supportée: {version} (attendue {VERSION})")

        (dims, leaf_size, max_depth, reorder, dtype_code, rows, pending,
         size_at_build, n_nodes, n_slots) = HEADER.unpack(_read_exact(f, HEADER.size, "en-tête"))

        if dims != data.cols:
            raise DimensionMismatch(f"Dimension des données {data.cols} différente de celle de l'index ({dims})")
        if rows != data.rows:
            raise DimensionMismatch(f"Les données ont {data.rows} points, l'index en attend {rows}")
        try:
            dtype = np.dtype(dtype_code.rstrip(b"\0").decode("ascii"))
        except (TypeError, UnicodeDecodeError) as e:
            raise FormatError(f"Type de coordonnées invalide: {dtype_code!r}") from e

        rec_dtype = node_dtype(dims)
        records = np.frombuffer(_read_exact(f, n_nodes * rec_dtype.itemsize, "nœuds"), dtype=rec_dtype)
        vind = np.frombuffer(_read_exact(f, n_slots * 8, "permutation"), dtype=np.int64).copy()
        reordered = None
        if reorder:
            size = n_slots * dims * dtype.itemsize
            reordered = np.frombuffer(_read_exact(f, size, "coordonnées réordonnées"), dtype=dtype)
            reordered = reordered.reshape(n_slots, dims).copy()
        removed = np.frombuffer(_read_exact(f, rows, "masque des suppressions"), dtype=np.uint8)

    if n_nodes == 0:
        raise FormatError("Le fichier ne contient aucun nœud")
    _check_records(records, n_slots, dims)
    if np.any((vind < 0) | (vind >= rows)):
        raise FormatError("Identifiant de point invalide dans la permutation")

    arena = NodeArena(dims, reorder=bool(reorder), dtype=dtype, capacity=max(n_nodes, 1))
    is_leaf = records["tag"] == TAG_LEAF
    arena.split_dim[:n_nodes] = np.where(is_leaf, LEAF, records["dim"])
    arena.split_val[:n_nodes] = records["val"]
    arena.left[:n_nodes] = records["left"]
    arena.right[:n_nodes] = records["right"]
    arena.begin[:n_nodes] = records["begin"]
    arena.end[:n_nodes] = records["end"]
    arena.cap[:n_nodes] = np.where(is_leaf, records["end"] - records["begin"], 0)
    arena.lo[:n_nodes] = records["lo"]
    arena.hi[:n_nodes] = records["hi"]
    arena.n_nodes = n_nodes
    arena.alloc_slots(n_slots)
    arena.write_slots(0, vind, reordered)

    tracker = DeletionTracker(rows)
    tracker.removed[:] = removed.astype(bool)
    tracker.pending = int(pending)

    if verbose:
        elapsed = time.time() - start_time
        print(f"✓ {n_nodes:,} nœuds chargés en {elapsed:.2f}s")

    return LoadedIndex(
        arena=arena,
        tracker=tracker,
        leaf_size=leaf_size,
        max_depth=max_depth,
        reorder=bool(reorder),
        rows=rows,
        size_at_build=size_at_build,
    )
