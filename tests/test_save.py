"""
Tests de la sauvegarde et du rechargement des index.
"""

import numpy as np
import pytest

from helpers import check_tree
from kdsingle import (
    DimensionMismatch,
    FormatError,
    KDTreeSingleIndex,
    KDTreeSingleIndexParams,
    NotBuilt,
    SavedIndexParams,
    Truncated,
)
from kdsingle.io.format import HEADER, MAGIC, PREAMBLE, node_dtype


def make_index(reorder=False, n=1500, seed=30):
    rng = np.random.default_rng(seed)
    data = rng.standard_normal((n, 4)).astype(np.float32)
    index = KDTreeSingleIndex(data, KDTreeSingleIndexParams(leaf_size=10, reorder=reorder))
    index.build_index()
    return index, data, rng.standard_normal((30, 4))


@pytest.mark.parametrize("reorder", [False, True])
def test_round_trip(tmp_path, reorder):
    index, data, queries = make_index(reorder=reorder)
    index.remove_points([0, 5, 17])
    path = str(tmp_path / "tree.kds")
    index.save(path)

    loaded = KDTreeSingleIndex.load(data, path)
    assert loaded.is_built
    assert loaded.reorder == reorder
    assert loaded.leaf_size == 10
    assert loaded.size == index.size
    assert len(loaded.tracker) == 3
    assert (loaded.arena.reordered is not None) == reorder
    assert loaded.get_statistics() == index.get_statistics()

    ids, dists = index.knn_search(queries, 8)
    loaded_ids, loaded_dists = loaded.knn_search(queries, 8)
    np.testing.assert_array_equal(ids, loaded_ids)
    np.testing.assert_array_equal(dists, loaded_dists)
    print(f"✓ Sauvegarde / chargement OK (reorder={reorder})")


def test_saved_index_params(tmp_path):
    index, data, queries = make_index()
    path = str(tmp_path / "nested" / "tree.kds")
    index.save(path)

    loaded = KDTreeSingleIndex(data, SavedIndexParams(path))
    np.testing.assert_array_equal(loaded.knn_search(queries, 3)[0], index.knn_search(queries, 3)[0])


def test_save_compacts_grown_tree(tmp_path):
    """Les cases mortes laissées par les insertions ne sont pas sauvegardées."""
    index, data, queries = make_index(reorder=True, n=200)
    extra = np.random.default_rng(31).standard_normal((150, 4)).astype(np.float32)
    index.add_points(extra, rebuild_threshold=0)
    index.remove_point(210)

    path = str(tmp_path / "grown.kds")
    index.save(path)
    loaded = KDTreeSingleIndex.load(np.vstack([data, extra]), path)

    assert loaded.arena.dead_slots == 0
    assert loaded.arena.n_slots == 350
    assert loaded.size_at_build == index.size_at_build
    np.testing.assert_array_equal(check_tree(loaded, leaf_size=10), np.arange(350))
    np.testing.assert_array_equal(loaded.knn_search(queries, 5)[0], index.knn_search(queries, 5)[0])

    # L'index rechargé accepte de nouveaux points
    loaded.add_points(extra[:10], rebuild_threshold=0)
    assert loaded.size == 359


def test_save_before_build(tmp_path):
    index = KDTreeSingleIndex(np.zeros((10, 2)))
    with pytest.raises(NotBuilt):
        index.save(str(tmp_path / "x.kds"))


def test_bad_magic_and_version(tmp_path):
    _, data, _ = make_index(n=50)

    bad_magic = tmp_path / "magic.kds"
    bad_magic.write_bytes(b"NOTATREE" + bytes(64))
    with pytest.raises(FormatError):
        KDTreeSingleIndex.load(data, str(bad_magic))

    bad_version = tmp_path / "version.kds"
    bad_version.write_bytes(PREAMBLE.pack(MAGIC, 99) + bytes(64))
    with pytest.raises(FormatError):
        KDTreeSingleIndex.load(data, str(bad_version))


def test_dimension_mismatch(tmp_path):
    index, data, _ = make_index(n=100)
    path = str(tmp_path / "tree.kds")
    index.save(path)

    with pytest.raises(DimensionMismatch):
        KDTreeSingleIndex.load(data[:, :3], path)
    with pytest.raises(DimensionMismatch):
        KDTreeSingleIndex.load(data[:-1], path)


def test_truncated(tmp_path):
    index, data, _ = make_index(n=100)
    path = tmp_path / "tree.kds"
    index.save(str(path))
    content = path.read_bytes()

    for size in (4, PREAMBLE.size + 10, len(content) // 2, len(content) - 1):
        cut = tmp_path / f"cut_{size}.kds"
        cut.write_bytes(content[:size])
        with pytest.raises(Truncated):
            KDTreeSingleIndex.load(data, str(cut))
    print("✓ Fichiers tronqués détectés")


def _saved_layout(index, path):
    """Sauvegarde l'index et retourne (contenu, champs d'en-tête, enregistrements de nœuds)."""
    index.save(str(path))
    content = path.read_bytes()
    fields = list(HEADER.unpack_from(content, PREAMBLE.size))
    start = PREAMBLE.size + HEADER.size
    records = np.frombuffer(content, dtype=node_dtype(index.veclen), count=fields[8], offset=start).copy()
    return content, fields, records


def _rewrite(path, content, fields=None, records=None):
    """Réécrit le fichier avec un en-tête et des nœuds modifiés."""
    data = bytearray(content)
    if fields is not None:
        HEADER.pack_into(data, PREAMBLE.size, *fields)
    if records is not None:
        start = PREAMBLE.size + HEADER.size
        data[start:start + records.nbytes] = records.tobytes()
    path.write_bytes(bytes(data))


@pytest.mark.parametrize("target", ["self", "ancestor"])
def test_cyclic_children_rejected(tmp_path, target):
    """Un enfant qui pointe vers lui-même ou vers un ancêtre est refusé au chargement."""
    index, data, _ = make_index(n=200)
    path = tmp_path / "tree.kds"
    content, _, records = _saved_layout(index, path)

    node = int(np.flatnonzero(records["tag"] == 1)[1])
    if target == "self":
        records["left"][node] = node
        records["right"][node] = node
    else:
        records["right"][node] = 0
    _rewrite(path, content, records=records)

    with pytest.raises(FormatError):
        KDTreeSingleIndex.load(data, str(path))


@pytest.mark.parametrize("field", [8, 9])
def test_inflated_counts_are_truncated(tmp_path, field):
    """Un nombre de nœuds ou de cases démesuré est signalé comme fichier tronqué."""
    index, data, _ = make_index(n=100)
    path = tmp_path / "tree.kds"
    content, fields, _ = _saved_layout(index, path)

    fields[field] = 2 ** 62
    _rewrite(path, content, fields=fields)

    with pytest.raises(Truncated):
        KDTreeSingleIndex.load(data, str(path))
