# core/feature_fusion.py

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional
import numpy as np

from config import FusionConfig, HashWeights
from core.models import GroupMember, ImageItem, SimilarityGroup, SimilarityResult
from core.similarity import NO_SIMILARITY, feature_similarity, hash_similarity

logger = logging.getLogger(__name__)


class FeatureLevel(str, Enum):
    LOW = "low"      # perceptual hashes
    MID = "mid"      # color histogram and texture
    HIGH = "high"    # deep features

_LEVEL_METHODS = {
    FeatureLevel.LOW: 'hash',
    FeatureLevel.MID: 'color_texture',
    FeatureLevel.HIGH: 'deep_learning',
}


def _both(a: Optional[np.ndarray], b: Optional[np.ndarray]) -> bool:
    return a is not None and b is not None and a.size > 0 and a.size == b.size


class FeatureFusionEngine:
    """
    Combines low, mid and high level similarities of two items into one
    score. With adaptive weights the share of a level that either item
    lacks is handed evenly to the levels both items have.
    """

    def __init__(self, config: Optional[FusionConfig] = None,
                 hash_weights: Optional[HashWeights] = None):
        self.config = config or FusionConfig()
        self.hash_weights = hash_weights or HashWeights()
        self.items: Dict[str, ImageItem] = {}

    def base_weights(self) -> Dict[FeatureLevel, float]:
        w = self.config.weights
        return {
            FeatureLevel.LOW: w.low_level_weight,
            FeatureLevel.MID: w.mid_level_weight,
            FeatureLevel.HIGH: w.high_level_weight,
        }

    def available_levels(self, item1: ImageItem, item2: ImageItem) -> List[FeatureLevel]:
        available = []
        used = set(self.config.used_levels)

        if FeatureLevel.LOW.value in used and item1.hashes.shared_kinds(item2.hashes):
            available.append(FeatureLevel.LOW)

        if FeatureLevel.MID.value in used and (
                _both(item1.color_histogram, item2.color_histogram) or
                _both(item1.texture_features, item2.texture_features)):
            available.append(FeatureLevel.MID)

        if FeatureLevel.HIGH.value in used and _both(item1.features, item2.features):
            available.append(FeatureLevel.HIGH)

        return available

    def adaptive_weights(self, item1: ImageItem, item2: ImageItem) -> Dict[FeatureLevel, float]:
        """Level weights for this pair; they sum to 1 unless no level is usable"""
        base = self.base_weights()
        if not self.config.use_adaptive_weights:
            return base

        available = self.available_levels(item1, item2)
        if not available:
            return {level: 0.0 for level in FeatureLevel}

        unused = sum(weight for level, weight in base.items() if level not in available)
        weights = {
            level: (base[level] + unused / len(available)) if level in available else 0.0
            for level in FeatureLevel
        }

        total = sum(weights.values())
        if total <= 0:
            return {level: (1.0 / len(available) if level in available else 0.0) for level in FeatureLevel}
        return {level: weight / total for level, weight in weights.items()}

    def mid_level_similarity(self, item1: ImageItem, item2: ImageItem) -> float:
        w = self.config.weights
        scores = []

        if _both(item1.color_histogram, item2.color_histogram):
            scores.append((feature_similarity(item1.color_histogram, item2.color_histogram), w.color_weight))
        if _both(item1.texture_features, item2.texture_features):
            scores.append((feature_similarity(item1.texture_features, item2.texture_features), w.texture_weight))

        if not scores:
            return 0.0
        if len(scores) == 1:
            return scores[0][0]

        total_weight = sum(weight for _, weight in scores)
        if total_weight <= 0:
            return float(np.mean([score for score, _ in scores]))
        return sum(score * weight for score, weight in scores) / total_weight

    def level_similarities(self, item1: ImageItem, item2: ImageItem) -> Dict[FeatureLevel, float]:
        similarities = {}
        available = self.available_levels(item1, item2)

        if FeatureLevel.LOW in available:
            similarities[FeatureLevel.LOW] = hash_similarity(
                item1.hashes, item2.hashes, self.hash_weights).similarity
        if FeatureLevel.MID in available:
            similarities[FeatureLevel.MID] = self.mid_level_similarity(item1, item2)
        if FeatureLevel.HIGH in available:
            similarities[FeatureLevel.HIGH] = feature_similarity(item1.features, item2.features)

        return similarities

    def compare(self, item1: ImageItem, item2: ImageItem) -> SimilarityResult:
        """Fused similarity in [0, 100], rounded to one decimal"""
        try:
            similarities = self.level_similarities(item1, item2)
        except ValueError as e:
            # Malformed hex hashes
            logger.debug("Cannot fuse %s with %s: %s", item1.id, item2.id, e)
            return NO_SIMILARITY

        if not similarities:
            return NO_SIMILARITY

        weights = self.adaptive_weights(item1, item2)
        total = sum(similarities.get(level, 0.0) * weight for level, weight in weights.items())
        total = max(0.0, min(100.0, total))

        if len(similarities) == 1:
            method = _LEVEL_METHODS[next(iter(similarities))]
        else:
            method = 'fusion'

        return SimilarityResult(round(total, 1), method)

    # Feature registry

    def add_item(self, item: ImageItem):
        self.items[item.id] = item

    def add_items(self, items: Iterable[ImageItem]):
        for item in items:
            self.add_item(item)

    def remove_item(self, item_id: str) -> bool:
        return self.items.pop(item_id, None) is not None

    def get_item(self, item_id: str) -> ImageItem:
        return self.items[item_id]

    def clear(self):
        self.items.clear()

    def __len__(self) -> int:
        return len(self.items)

    def find_similar(self, item_id: str, threshold: Optional[float] = None,
                     exclude: Optional[set] = None) -> List[GroupMember]:
        """Registered items at or above threshold, most similar first"""
        threshold = self.config.similarity_threshold if threshold is None else threshold
        target = self.items[item_id]
        exclude = exclude or set()

        matches = []
        for other_id, other in self.items.items():
            if other_id == item_id or other_id in exclude:
                continue
            result = self.compare(target, other)
            if result.similarity >= threshold:
                matches.append(GroupMember(other_id, result.similarity, result.method))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches

    def find_similar_groups(self, threshold: Optional[float] = None) -> List[SimilarityGroup]:
        """Greedy, disjoint groups in registration order"""
        processed = set()
        groups = []

        for item_id in self.items:
            if item_id in processed:
                continue

            matches = self.find_similar(item_id, threshold, exclude=processed)
            processed.add(item_id)
            if not matches:
                continue

            processed.update(m.id for m in matches)
            members = [GroupMember(item_id, 100.0, 'seed')] + matches
            groups.append(SimilarityGroup(key_id=item_id, members=members, seed_id=item_id))

        logger.info("Fusion grouping found %d groups among %d items", len(groups), len(self.items))
        return groups
