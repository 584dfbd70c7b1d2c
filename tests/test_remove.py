"""
Tests de la suppression paresseuse et de son élimination à la reconstruction.
"""

import numpy as np
import pytest

from helpers import check_tree
from kdsingle import AlreadyRemoved, KDTreeSingleIndex, KDTreeSingleIndexParams, OutOfRange
from kdsingle.utils.evaluation import brute_force_knn


def make_index(n=1000, seed=20):
    rng = np.random.default_rng(seed)
    data = rng.standard_normal((n, 3))
    index = KDTreeSingleIndex(data, KDTreeSingleIndexParams(leaf_size=6))
    index.build_index()
    return index, data, rng


def test_removed_points_never_returned():
    index, data, rng = make_index()
    queries = rng.standard_normal((40, 3))
    removed = rng.choice(1000, size=200, replace=False)

    index.remove_points(removed)
    assert index.size == 800
    assert len(index) == 800
    assert len(index.tracker) == 200

    ids, dists = index.knn_search(queries, 5)
    assert not np.isin(ids, removed).any()

    live = np.setdiff1d(np.arange(1000), removed)
    truth, truth_dists = brute_force_knn(data[live], queries, 5, use_faiss=False)
    np.testing.assert_array_equal(ids, live[truth])
    np.testing.assert_allclose(dists, truth_dists)
    print("✓ Points supprimés ignorés par la recherche")


def test_remove_errors():
    index, _, _ = make_index(n=10)
    index.remove_point(3)

    with pytest.raises(AlreadyRemoved):
        index.remove_point(3)
    with pytest.raises(OutOfRange):
        index.remove_point(10)
    with pytest.raises(IndexError):
        index.remove_point(-1)

    # Suppression groupée atomique
    with pytest.raises(OutOfRange):
        index.remove_points([1, 1000])
    with pytest.raises(AlreadyRemoved):
        index.remove_points([2, 2])
    assert 1 not in index.tracker
    assert 2 not in index.tracker
    assert index.size == 9


def test_rebuild_purges_tombstones():
    index, data, rng = make_index()
    index.remove_points(np.arange(0, 1000, 2))
    index.build_index()

    assert len(index.tracker) == 0
    assert index.size == 500
    assert index.size_at_build == 500
    np.testing.assert_array_equal(check_tree(index, leaf_size=6), np.arange(1, 1000, 2))

    # Les identifiants ne sont jamais réutilisés
    with pytest.raises(AlreadyRemoved):
        index.remove_point(0)
    new_ids = index.add_points(rng.standard_normal((5, 3)), rebuild_threshold=0)
    assert new_ids == range(1000, 1005)
    assert index.size == 505


def test_fewer_live_points_than_k():
    index, _, _ = make_index(n=20)
    index.remove_points(np.arange(3, 20))

    ids, dists = index.knn_search(np.zeros(3), 5)
    assert sorted(ids[0, :3].tolist()) == [0, 1, 2]
    np.testing.assert_array_equal(ids[0, 3:], [-1, -1])
    assert np.all(np.isinf(dists[0, 3:]))

    index.remove_points([0, 1, 2])
    ids, _ = index.knn_search(np.zeros(3), 2)
    np.testing.assert_array_equal(ids, [[-1, -1]])
    assert index.size == 0


def test_remove_added_point():
    index, _, rng = make_index(n=100)
    added = index.add_points(np.array([[50.0, 50.0, 50.0]]), rebuild_threshold=0)
    index.remove_point(added[0])

    ids, _ = index.knn_search(np.array([50.0, 50.0, 50.0]), 1)
    assert ids[0, 0] != added[0]
    assert index.size == 100
