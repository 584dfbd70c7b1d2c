"""
Tests des vues de points (pas de ligne quelconque) et du stockage par blocs.
"""

import numpy as np
import pytest

from kdsingle import InvalidInput, KDTreeSingleIndex, OutOfRange, PointView
from kdsingle.core.point_view import PointStore


def test_strided_view():
    """Une sous-matrice numpy garde son pas de ligne sans copie."""
    base = np.arange(60, dtype=np.float32).reshape(10, 6)
    view = PointView(base[:, :4])

    assert view.rows == 10
    assert view.cols == 4
    assert view.element_size == 4
    assert view.row_stride_bytes == 24
    assert not view.is_contiguous
    assert np.shares_memory(view.data, base)
    np.testing.assert_array_equal(view[3], base[3, :4])
    print("✓ Vue à pas de ligne OK")


def test_from_buffer():
    """Construction d'une vue sur un tampon brut avec pas explicite."""
    base = np.arange(60, dtype=np.float32).reshape(10, 6)
    buffer = base.tobytes()

    view = PointView.from_buffer(buffer, rows=10, cols=4, row_stride_bytes=24, dtype=np.float32)
    np.testing.assert_array_equal(view.data, base[:, :4])

    packed = PointView.from_buffer(buffer, rows=15, cols=4, dtype=np.float32)
    assert packed.is_contiguous
    np.testing.assert_array_equal(packed[1], base.reshape(-1)[4:8])

    with pytest.raises(InvalidInput):
        PointView.from_buffer(buffer, rows=10, cols=4, row_stride_bytes=8)
    with pytest.raises(InvalidInput):
        PointView.from_buffer(buffer, rows=100, cols=6)
    print("✓ Vue sur tampon brut OK")


def test_rejects_bad_shapes():
    with pytest.raises(InvalidInput):
        PointView(np.zeros((2, 3, 4)))
    with pytest.raises(InvalidInput):
        PointView(np.array([["a", "b"]]))
    assert PointView(np.zeros(5)).rows == 1


def test_index_on_strided_data_matches_contiguous_copy():
    """L'index donne les mêmes voisins sur une vue et sur sa copie contiguë."""
    rng = np.random.default_rng(0)
    base = rng.standard_normal((500, 8))
    strided = base[:, ::2]
    queries = rng.standard_normal((20, 4))

    index_view = KDTreeSingleIndex(strided)
    index_view.build_index()
    index_copy = KDTreeSingleIndex(np.ascontiguousarray(strided))
    index_copy.build_index()

    ids_view, d_view = index_view.knn_search(queries, 5)
    ids_copy, d_copy = index_copy.knn_search(queries, 5)
    np.testing.assert_array_equal(ids_view, ids_copy)
    np.testing.assert_allclose(d_view, d_copy)
    print("✓ Index sur données entrelacées OK")


def test_point_store_blocks():
    """Les identifiants globaux couvrent les blocs dans l'ordre d'ajout."""
    first = np.arange(12, dtype=np.float64).reshape(4, 3)
    second = 100 + np.arange(6, dtype=np.float64).reshape(2, 3)
    store = PointStore(PointView(first))

    ids = store.append(PointView(second))
    assert ids == range(4, 6)
    assert store.rows == 6

    np.testing.assert_array_equal(store.point(5), second[1])
    np.testing.assert_array_equal(store.take(np.array([5, 0, 4])), np.vstack([second[1], first[0], second[0]]))

    with pytest.raises(OutOfRange):
        store.point(6)
    with pytest.raises(InvalidInput):
        store.append(PointView(np.zeros((1, 2))))
