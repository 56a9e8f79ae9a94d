# tests/test_dimension_reduction.py

import pytest
import numpy as np
from sklearn.decomposition import PCA

from config import PCAConfig
from core.dimension_reduction import (
    DimensionMismatchError, DimensionReducer, NotTrainedError, cosine_similarity,
    euclidean_distance, euclidean_distance_to_similarity, power_iteration
)
from core.models import ReducedFeatureVector


@pytest.fixture
def training_data(rng):
    """Anisotropic cloud with a clear variance ordering"""
    scales = np.array([5.0, 2.0, 1.0, 0.5, 0.2, 0.1])
    return rng.normal(size=(200, 6)) * scales + 3.0


@pytest.fixture
def reducer(training_data):
    reducer = DimensionReducer(PCAConfig(target_dimensions=3, seed=0))
    assert reducer.train(training_data)
    return reducer


def test_too_few_vectors_leaves_reducer_untrained(rng):
    """Fewer than five vectors: training is skipped"""
    reducer = DimensionReducer()

    assert reducer.train(rng.normal(size=(4, 10))) is False
    assert not reducer.is_trained
    with pytest.raises(NotTrainedError):
        reducer.transform(np.zeros(10))


def test_components_match_reference_pca(reducer, training_data):
    """Leading components agree with scikit-learn up to sign"""
    reference = PCA(n_components=2).fit(training_data)

    for ours, theirs in zip(reducer.pca.components[:2], reference.components_):
        assert abs(np.dot(ours, theirs)) > 0.99


def test_eigenvalues_sorted_by_magnitude(reducer):
    eigenvalues = np.abs(reducer.pca.eigenvalues)
    assert (np.diff(eigenvalues) <= 1e-9).all()
    assert 0 < reducer.pca.explained_variance.sum() <= 1 + 1e-9


def test_training_mean_projects_to_origin(reducer, training_data):
    """Centering: the training mean maps to the zero vector"""
    reduced = reducer.transform(training_data.mean(axis=0))
    assert np.allclose(reduced.values, 0.0, atol=1e-9)


def test_target_dimension_capped_by_source(training_data):
    reducer = DimensionReducer(PCAConfig(target_dimensions=16, seed=0))
    reducer.train(training_data)

    assert reducer.pca.target_dimension == 6
    assert len(reducer.transform(training_data[0])) == 6


def test_transform_dimension_mismatch(reducer):
    with pytest.raises(DimensionMismatchError):
        reducer.transform(np.zeros(5))

    # Also usable as a plain ValueError
    with pytest.raises(ValueError):
        reducer.transform(np.zeros(7))


def test_mixed_training_dimensions(rng):
    vectors = [rng.normal(size=4) for _ in range(5)] + [rng.normal(size=3)]
    with pytest.raises(DimensionMismatchError):
        DimensionReducer().train(vectors)


def test_compare_reduced_rejects_different_spaces():
    r1 = ReducedFeatureVector(np.ones(3), source_dimension=10)
    r2 = ReducedFeatureVector(np.ones(3), source_dimension=12)

    with pytest.raises(DimensionMismatchError):
        DimensionReducer.compare_reduced(r1, r2)


def test_compare_identical_vectors(reducer, training_data):
    assert reducer.compare(training_data[0], training_data[0]) == 100


def test_compare_is_clamped_at_zero(reducer):
    """Opposite vectors score 0, not negative"""
    r1 = ReducedFeatureVector(np.array([1.0, 0.0]), 6)
    r2 = ReducedFeatureVector(np.array([-1.0, 0.0]), 6)
    assert reducer.compare_reduced(r1, r2) == 0


def test_retraining_replaces_transform(reducer, training_data):
    first = reducer.pca
    reducer.train(training_data[:50])
    assert reducer.pca is not first


def test_model_export_round_trip(reducer, training_data):
    restored = DimensionReducer.from_dict(reducer.to_dict())

    expected = reducer.transform(training_data[3]).values
    assert np.allclose(restored.transform(training_data[3]).values, expected)


def test_standardize_and_normalize(training_data):
    """Preprocessing is applied consistently in training and transform"""
    reducer = DimensionReducer(PCAConfig(target_dimensions=2, standardize=True,
                                         normalize=True, seed=0))
    reducer.train(training_data)

    assert np.allclose(reducer.transform(training_data.mean(axis=0)).values, 0.0, atol=1e-9)
    assert (reducer.pca.scale > 0).all()


def test_power_iteration_on_diagonal_matrix():
    """Negative eigenvalues are found and ordered by magnitude"""
    values, vectors = power_iteration(np.diag([3.0, -5.0, 1.0]), 3,
                                      max_iterations=500, rng=np.random.default_rng(0))

    assert np.allclose(values, [-5.0, 3.0, 1.0], atol=1e-4)
    assert abs(vectors[0][1]) == pytest.approx(1.0, abs=1e-4)


def test_vector_helpers():
    assert cosine_similarity([1, 0], [0, 1]) == 0.0
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    assert cosine_similarity([2, 2], [1, 1]) == pytest.approx(1.0)
    assert euclidean_distance([0, 0], [3, 4]) == pytest.approx(5.0)
    assert euclidean_distance_to_similarity(0) == 100.0
    assert euclidean_distance_to_similarity(10) == pytest.approx(100 / np.e)

    with pytest.raises(DimensionMismatchError):
        cosine_similarity([1, 2], [1, 2, 3])


def test_transform_many_matches_transform(reducer, training_data):
    reduced = reducer.transform_many(training_data[:3])

    assert len(reduced) == 3
    for vector, single in zip(training_data[:3], reduced):
        assert np.allclose(reducer.transform(vector).values, single.values)
        assert single.source_dimension == 6
