# tests/test_similarity.py

import pytest
import numpy as np

from config import HashWeights
from core.models import HashSet, ImageItem, QualityMetrics, ReducedFeatureVector
from core.similarity import (
    SimilarityScorer, adjusted_similarity, distance_to_similarity, hash_similarity,
    weighted_hamming_distance
)
from tests.conftest import random_hashes


def invert(hex_str):
    return "".join(format(15 - int(c, 16), 'x') for c in hex_str)


def test_identical_hashes_score_100(fixed_hashes):
    result = hash_similarity(fixed_hashes, fixed_hashes)
    assert result.similarity == 100.0
    assert result.method == 'hash'


def test_no_shared_kind_scores_zero():
    result = hash_similarity(HashSet(avg="ff"), HashSet(diff="ff"))
    assert result.similarity == 0.0
    assert result.method == 'none'


def test_inverted_hashes_score_zero(fixed_hashes):
    """Every bit differs -> distance equals the maximum"""
    inverted = HashSet(**{k.value: invert(fixed_hashes.get(k)) for k in fixed_hashes.kinds()})
    assert hash_similarity(fixed_hashes, inverted).similarity == 0.0


def test_single_kind_similarity():
    """16 of 64 bits differ -> 75"""
    h1 = HashSet(avg="ffff000000000000")
    h2 = HashSet(avg="0000000000000000", diff="ff")
    assert hash_similarity(h1, h2).similarity == pytest.approx(75.0)


def test_weighted_distance_uses_weights():
    h1 = HashSet(avg="ff", diff="ff")
    h2 = HashSet(avg="00", diff="ff")

    distance, max_bits = weighted_hamming_distance(h1, h2, HashWeights(avg=1.0, diff=3.0))
    assert distance == pytest.approx(2.0)
    assert max_bits == pytest.approx(8.0)


def test_similarity_is_monotonic_in_distance():
    values = [distance_to_similarity(d, 64) for d in range(0, 65, 8)]
    assert values == sorted(values, reverse=True)
    assert values[0] == 100.0 and values[-1] == 0.0


def test_similarity_bounds_and_symmetry(rng):
    for _ in range(20):
        h1, h2 = random_hashes(rng), random_hashes(rng)
        s12 = hash_similarity(h1, h2).similarity
        assert 0.0 <= s12 <= 100.0
        assert s12 == hash_similarity(h2, h1).similarity


def test_adjusted_similarity(fixed_hashes):
    """0.7 * 100 + 0.15 * 90 + 0.15 * 90"""
    q1 = QualityMetrics(brightness=80, contrast=50, sharpness=10, score=50)
    q2 = QualityMetrics(brightness=70, contrast=40, sharpness=10, score=50)

    result = adjusted_similarity(fixed_hashes, fixed_hashes, q1, q2)
    assert result.similarity == pytest.approx(97.0)
    assert result.method == 'adjusted'


def test_adjusted_similarity_is_not_rounded(fixed_hashes):
    """0.7 * 100 + 0.15 * 0 + 0.15 * 64 = 79.6"""
    q1 = QualityMetrics(brightness=100, contrast=86, sharpness=10, score=50)
    q2 = QualityMetrics(brightness=0, contrast=50, sharpness=10, score=50)

    assert adjusted_similarity(fixed_hashes, fixed_hashes, q1, q2).similarity == pytest.approx(79.6)


@pytest.fixture
def scorer():
    return SimilarityScorer(threshold=90.0)


def test_compare_prefers_hashes_over_raw_features(scorer, fixed_hashes):
    a = ImageItem('a', hashes=fixed_hashes, features=[1.0, 0.0])
    b = ImageItem('b', hashes=fixed_hashes, features=[0.0, 1.0])

    result = scorer.compare(a, b)
    assert (result.similarity, result.method) == (100.0, 'hash')


def test_compare_falls_back_to_raw_features(scorer):
    a = ImageItem('a', features=[1.0, 1.0, 0.0])
    b = ImageItem('b', features=[1.0, 1.0, 0.0])

    assert scorer.compare(a, b).method == 'raw_feature'
    assert scorer.compare(a, b).similarity == 100.0


def test_compare_without_evidence(scorer):
    result = scorer.compare(ImageItem('a'), ImageItem('b', features=[1.0]))
    assert (result.similarity, result.method) == (0.0, 'none')


def test_compare_combines_reduced_features_with_hashes(scorer, fixed_hashes):
    """Reduced similarity >= 0.7 * threshold blends 60/40 with hashes"""
    reduced = ReducedFeatureVector(np.array([1.0, 2.0]), source_dimension=8)
    a = ImageItem('a', hashes=fixed_hashes, reduced_features=reduced)
    b = ImageItem('b', hashes=HashSet(avg=invert(fixed_hashes.avg)), reduced_features=reduced)

    result = scorer.compare(a, b)
    assert result.method == 'combined'
    assert result.similarity == 60.0


def test_compare_low_reduced_similarity_stays_feature_only(scorer, fixed_hashes):
    a = ImageItem('a', hashes=fixed_hashes,
                  reduced_features=ReducedFeatureVector(np.array([1.0, 0.0]), 8))
    b = ImageItem('b', hashes=fixed_hashes,
                  reduced_features=ReducedFeatureVector(np.array([0.0, 1.0]), 8))

    result = scorer.compare(a, b)
    assert (result.similarity, result.method) == (0.0, 'feature')


def test_compare_skips_incomparable_reduced_features(scorer, fixed_hashes):
    """Reduced vectors from different models fall through to hashes"""
    a = ImageItem('a', hashes=fixed_hashes,
                  reduced_features=ReducedFeatureVector(np.ones(2), 8))
    b = ImageItem('b', hashes=fixed_hashes,
                  reduced_features=ReducedFeatureVector(np.ones(2), 9))

    assert scorer.compare(a, b).method == 'hash'


def test_compare_never_raises_on_malformed_hashes(scorer):
    a = ImageItem('a', hashes=HashSet(avg="zz"))
    b = ImageItem('b', hashes=HashSet(avg="00"))

    assert scorer.compare(a, b).method == 'none'
