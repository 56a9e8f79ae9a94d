# core/similarity.py

import logging
from typing import Optional, Tuple
import numpy as np

from config import AdjustmentWeights, HashWeights
from core.dimension_reduction import (
    DimensionMismatchError, DimensionReducer, cosine_similarity
)
from core.hashing import hamming_distance
from core.models import HASH_KIND_ORDER, HashSet, ImageItem, QualityMetrics, SimilarityResult

logger = logging.getLogger(__name__)

NO_SIMILARITY = SimilarityResult(0.0, 'none')


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def weighted_hamming_distance(h1: HashSet, h2: HashSet,
                              weights: Optional[HashWeights] = None) -> Optional[Tuple[float, float]]:
    """
    Weight-averaged Hamming distance over the hash kinds both sets carry.

    The bit budget is the weight-averaged length of the shared kinds, not
    their summed length, so distance and budget live on the same scale.

    Returns:
        (distance, max possible bits) or None when no kind is shared
    """
    weights = weights or HashWeights()
    total_distance = total_bits = total_weight = 0.0

    for kind in HASH_KIND_ORDER:
        a, b = h1.get(kind), h2.get(kind)
        weight = weights.for_kind(kind)
        if not a or not b or weight <= 0:
            continue

        total_distance += hamming_distance(a, b) * weight
        total_bits += max(len(a), len(b)) * 4 * weight
        total_weight += weight

    if total_weight == 0:
        return None
    return total_distance / total_weight, total_bits / total_weight


def distance_to_similarity(distance: float, max_bits: float) -> float:
    if max_bits <= 0:
        return 0.0
    return _clamp(100.0 * (1.0 - distance / max_bits))


def hash_similarity(h1: HashSet, h2: HashSet,
                    weights: Optional[HashWeights] = None) -> SimilarityResult:
    weighted = weighted_hamming_distance(h1, h2, weights)
    if weighted is None:
        return NO_SIMILARITY
    return SimilarityResult(distance_to_similarity(*weighted), 'hash')


def feature_similarity(v1: np.ndarray, v2: np.ndarray) -> float:
    """100 x cosine, clamped to [0, 100]; raises DimensionMismatchError"""
    return _clamp(100.0 * cosine_similarity(v1, v2))


def adjusted_similarity(h1: HashSet, h2: HashSet, q1: QualityMetrics, q2: QualityMetrics,
                        hash_weights: Optional[HashWeights] = None,
                        adjustment_weights: Optional[AdjustmentWeights] = None) -> SimilarityResult:
    """
    Hash similarity corrected for exposure changes: photos that differ
    mostly in brightness or contrast still score high.
    """
    w = adjustment_weights or AdjustmentWeights()
    base = hash_similarity(h1, h2, hash_weights)
    if base.method == 'none':
        return NO_SIMILARITY

    brightness_similarity = 100.0 - abs(q1.brightness - q2.brightness)
    contrast_similarity = 100.0 - abs(q1.contrast - q2.contrast)

    similarity = (base.similarity * w.hash +
                  brightness_similarity * w.brightness +
                  contrast_similarity * w.contrast)
    return SimilarityResult(_clamp(similarity), 'adjusted')


class SimilarityScorer:
    """
    Pairwise scoring of image items.

    `compare` tries the strongest evidence both items carry: reduced
    features (blended with the hash score when they already look alike),
    then hashes, then raw features.
    """

    def __init__(self, hash_weights: Optional[HashWeights] = None,
                 adjustment_weights: Optional[AdjustmentWeights] = None,
                 threshold: float = 90.0,
                 reducer: Optional[DimensionReducer] = None):
        self.hash_weights = hash_weights or HashWeights()
        self.adjustment_weights = adjustment_weights or AdjustmentWeights()
        self.threshold = threshold
        self.reducer = reducer

    def hash_similarity(self, item1: ImageItem, item2: ImageItem) -> SimilarityResult:
        return hash_similarity(item1.hashes, item2.hashes, self.hash_weights)

    def adjusted_similarity(self, item1: ImageItem, item2: ImageItem) -> SimilarityResult:
        if item1.quality is None or item2.quality is None:
            return NO_SIMILARITY
        return adjusted_similarity(item1.hashes, item2.hashes, item1.quality, item2.quality,
                                   self.hash_weights, self.adjustment_weights)

    def _reduced_similarity(self, item1: ImageItem, item2: ImageItem) -> Optional[SimilarityResult]:
        if item1.reduced_features is None or item2.reduced_features is None:
            return None

        try:
            similarity = DimensionReducer.compare_reduced(item1.reduced_features, item2.reduced_features)
        except DimensionMismatchError as e:
            logger.debug("Reduced features of %s and %s not comparable: %s", item1.id, item2.id, e)
            return None

        if similarity >= self.threshold * 0.7:
            hashed = self.hash_similarity(item1, item2)
            if hashed.method != 'none':
                combined = similarity * 0.6 + hashed.similarity * 0.4
                return SimilarityResult(float(round(combined)), 'combined')

        return SimilarityResult(similarity, 'feature')

    def compare(self, item1: ImageItem, item2: ImageItem) -> SimilarityResult:
        """Best available similarity of two items; never raises"""
        try:
            reduced = self._reduced_similarity(item1, item2)
            if reduced is not None:
                return reduced

            hashed = self.hash_similarity(item1, item2)
            if hashed.method != 'none':
                return SimilarityResult(float(round(hashed.similarity)), 'hash')

            if item1.has_features and item2.has_features and item1.features.size == item2.features.size:
                return SimilarityResult(float(round(feature_similarity(item1.features, item2.features))),
                                        'raw_feature')
        except ValueError as e:
            # Malformed hex hashes or vectors
            logger.debug("Cannot compare %s with %s: %s", item1.id, item2.id, e)

        return NO_SIMILARITY
