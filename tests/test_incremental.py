"""
Tests de l'ajout incrémental de points.
"""

import numpy as np
import pytest

from helpers import check_tree
from kdsingle import InvalidInput, KDTreeSingleIndex, KDTreeSingleIndexParams, PointView
from kdsingle.utils.evaluation import brute_force_knn


@pytest.mark.parametrize("reorder", [False, True])
def test_incremental_insert_keeps_search_exact(reorder):
    rng = np.random.default_rng(10)
    first = rng.standard_normal((300, 3))
    second = rng.standard_normal((300, 3)) * 2.0
    queries = rng.standard_normal((50, 3))

    index = KDTreeSingleIndex(first, KDTreeSingleIndexParams(leaf_size=8, reorder=reorder))
    index.build_index()
    nodes_before = index.arena.n_nodes

    new_ids = index.add_points(second, rebuild_threshold=1)
    assert new_ids == range(300, 600)
    assert index.size == 600
    assert index.size_at_build == 300
    assert index.arena.n_nodes > nodes_before

    np.testing.assert_array_equal(check_tree(index, leaf_size=8), np.arange(600))

    all_points = np.vstack([first, second])
    ids, dists = index.knn_search(queries, 6)
    truth_ids, truth_dists = brute_force_knn(all_points, queries, 6, use_faiss=False)
    np.testing.assert_array_equal(ids, truth_ids)
    np.testing.assert_allclose(dists, truth_dists)
    np.testing.assert_array_equal(index.get_point(450), second[150])
    print(f"✓ Insertion incrémentale OK ({index.arena.dead_slots} cases mortes)")


def test_growth_triggers_rebuild():
    """Au-delà de size_at_build × seuil, l'arbre est reconstruit."""
    rng = np.random.default_rng(11)
    index = KDTreeSingleIndex(rng.standard_normal((100, 2)), KDTreeSingleIndexParams(leaf_size=4))
    index.build_index()

    index.add_points(rng.standard_normal((50, 2)))
    assert index.size_at_build == 100

    index.add_points(rng.standard_normal((60, 2)))
    assert index.size_at_build == 210
    assert index.arena.dead_slots == 0
    np.testing.assert_array_equal(check_tree(index, leaf_size=4), np.arange(210))


def test_add_before_build_builds():
    rng = np.random.default_rng(12)
    index = KDTreeSingleIndex(rng.standard_normal((20, 2)))
    index.add_points(rng.standard_normal((20, 2)))

    assert index.is_built
    assert index.size == 40
    np.testing.assert_array_equal(check_tree(index), np.arange(40))


def test_one_point_at_a_time():
    """Des ajouts unitaires successifs coupent les feuilles pleines."""
    rng = np.random.default_rng(13)
    points = rng.uniform(-1, 1, (200, 2))
    index = KDTreeSingleIndex(points[:1], KDTreeSingleIndexParams(leaf_size=3))
    index.build_index()

    for i in range(1, 200):
        index.add_points(points[i], rebuild_threshold=0)

    np.testing.assert_array_equal(check_tree(index, leaf_size=3), np.arange(200))
    ids, _ = index.knn_search(points[:20], 1)
    np.testing.assert_array_equal(ids[:, 0], np.arange(20))


def test_duplicate_inserts_stay_in_one_leaf():
    index = KDTreeSingleIndex(np.array([[0.0, 0.0], [5.0, 5.0]]), KDTreeSingleIndexParams(leaf_size=4))
    index.build_index()
    index.add_points(np.full((30, 2), 5.0), rebuild_threshold=0)

    np.testing.assert_array_equal(check_tree(index), np.arange(32))
    ids, dists = index.knn_search(np.array([5.0, 5.0]), 10)
    assert np.all(dists == 0)
    assert 0 not in ids


def test_add_strided_block_and_bad_dims():
    rng = np.random.default_rng(14)
    index = KDTreeSingleIndex(rng.standard_normal((50, 3)))
    index.build_index()

    wide = rng.standard_normal((10, 6))
    index.add_points(PointView(wide[:, ::2]), rebuild_threshold=0)
    np.testing.assert_array_equal(index.get_point(55), wide[5, ::2])

    with pytest.raises(InvalidInput):
        index.add_points(np.zeros((4, 2)))
    assert index.rows == 60
