"""
Format binaire des index sauvegardés.

Disposition (ordre d'octets natif, tailles standard):
    MAGIC (8 octets) | version (uint32)
    en-tête: dims, leaf_size, max_depth (uint32), reorder (uint8),
             dtype des coordonnées (8 octets), rows, pending, size_at_build,
             n_nodes, n_slots (uint64)
    n_nodes enregistrements de nœuds en ordre préfixe (NODE_DTYPE)
    tableau de permutation (n_slots × int64)
    copie réordonnée (n_slots × dims × dtype), seulement si reorder
    masque des points supprimés (rows × uint8)
"""

import struct

import numpy as np

MAGIC = b"KDSINGLE"
VERSION = 1

PREAMBLE = struct.Struct("=8sI")
HEADER = struct.Struct("=IIIB8sQQQQQ")

TAG_LEAF = 0
TAG_SPLIT = 1


def node_dtype(dims: int) -> np.dtype:
    """Enregistrement de taille fixe d'un nœud (feuille ou coupe)."""
    return np.dtype([
        ("tag", "u1"),
        ("dim", "i4"),
        ("val", "f8"),
        ("left", "i8"),
        ("right", "i8"),
        ("begin", "i8"),
        ("end", "i8"),
        ("lo", "f8", (dims,)),
        ("hi", "f8", (dims,)),
    ])
