# core/similarity_system.py

import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional
import numpy as np

from config import SystemConfig
from core.dimension_reduction import DimensionMismatchError, DimensionReducer
from core.grouping import GroupingEngine
from core.hashing import HashComputer, combine_hashes
from core.lsh import LSHIndex
from core.models import (
    GroupMember, GroupingResult, HashSet, ImageItem, QualityMetrics, SimilarityResult
)
from core.similarity import SimilarityScorer

logger = logging.getLogger(__name__)


class ImageSimilaritySystem:
    """
    Working set of images with incremental indexing.

    Hashes go into an LSH index as images are added; once enough feature
    vectors are known a PCA model is trained and every item gets reduced
    features, which `compare_two_images` prefers over hashes.
    """

    def __init__(self, config: Optional[SystemConfig] = None,
                 hash_cache: Optional[MutableMapping[str, Dict[str, str]]] = None):
        self.config = config or SystemConfig()
        sim = self.config.similarity

        self.hash_computer = HashComputer(self.config.hash, cache=hash_cache)
        self.lsh_index = LSHIndex(self.config.lsh) if sim.use_lsh else None
        self.reducer = DimensionReducer(sim.pca) if sim.use_dimension_reduction else None
        self.scorer = SimilarityScorer(hash_weights=sim.hash_weights,
                                       adjustment_weights=self.config.grouping.adjustment_weights,
                                       threshold=sim.threshold,
                                       reducer=self.reducer)

        self.items: Dict[str, ImageItem] = {}
        self._binary_hashes: Dict[str, str] = {}

    def add_image(self, image_id: str, pixels: Optional[np.ndarray] = None,
                  hashes: Optional[HashSet] = None,
                  features: Optional[np.ndarray] = None,
                  quality: Optional[QualityMetrics] = None,
                  metadata: Optional[Mapping[str, Any]] = None) -> ImageItem:
        """
        Add (or replace) one image.

        Hashes are computed from `pixels` unless given explicitly.
        """
        if hashes is None and pixels is not None:
            hashes = self.hash_computer.compute(pixels)

        item = ImageItem(
            id=image_id,
            hashes=hashes or HashSet(),
            features=features,
            quality=quality,
            metadata=dict(metadata or {}),
        )
        return self.add_item(item)

    def add_item(self, item: ImageItem) -> ImageItem:
        if item.id in self.items:
            self.remove_image(item.id)

        if self.reducer is not None and self.reducer.is_trained and item.has_features:
            self._reduce(item)

        self.items[item.id] = item

        binary = combine_hashes(item.hashes)
        if binary:
            self._binary_hashes[item.id] = binary
            if self.lsh_index is not None:
                self.lsh_index.insert(item.id, binary)

        return item

    def add_images(self, items: Iterable[ImageItem]) -> int:
        """
        Add items in batches, training the reducer as soon as enough
        feature vectors are present.

        Returns:
            Number of items added
        """
        items = list(items)
        batch_size = self.config.similarity.batch_size
        added = 0

        for start in range(0, len(items), batch_size):
            for item in items[start:start + batch_size]:
                try:
                    self.add_item(item)
                    added += 1
                except ValueError as e:
                    logger.warning("Skipping image %s: %s", item.id, e)

            if self.reducer is not None and not self.reducer.is_trained:
                self.train_reducer()

            if len(items) > batch_size:
                logger.info("Added %d/%d images", min(start + batch_size, len(items)), len(items))

        return added

    def _reduce(self, item: ImageItem):
        try:
            item.reduced_features = self.reducer.transform(item.features)
        except DimensionMismatchError as e:
            logger.warning("Cannot reduce features of %s: %s", item.id, e)
            item.reduced_features = None

    def train_reducer(self) -> bool:
        """(Re)train PCA on the features of the working set and reduce every item"""
        if self.reducer is None:
            return False

        with_features = [item for item in self.items.values() if item.has_features]
        if len(with_features) < self.reducer.config.min_training_vectors:
            logger.debug("Only %d feature vectors, PCA not trained", len(with_features))
            return False

        # Train on the dominant dimension, other vectors cannot be projected anyway
        dimensions = [item.features.size for item in with_features]
        dominant = max(set(dimensions), key=dimensions.count)
        training = [item.features for item in with_features if item.features.size == dominant]

        if not self.reducer.train(training):
            return False

        for item in with_features:
            self._reduce(item)
        return True

    def get_image(self, image_id: str) -> ImageItem:
        return self.items[image_id]

    def compare_two_images(self, id1: str, id2: str) -> SimilarityResult:
        return self.scorer.compare(self.items[id1], self.items[id2])

    def find_similar_images(self, image_id: str,
                            threshold: Optional[float] = None) -> List[GroupMember]:
        """Images at or above threshold, most similar first"""
        threshold = self.config.similarity.threshold if threshold is None else threshold
        target = self.items[image_id]

        binary = self._binary_hashes.get(image_id)
        if self.lsh_index is not None and binary:
            candidate_ids = self.lsh_index.query(binary)
        else:
            candidate_ids = self.items.keys()

        results = []
        for candidate_id in candidate_ids:
            if candidate_id == image_id or candidate_id not in self.items:
                continue
            result = self.scorer.compare(target, self.items[candidate_id])
            if result.similarity >= threshold:
                results.append(GroupMember(candidate_id, result.similarity, result.method))

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results

    def find_all_similar_groups(self, threshold: Optional[float] = None,
                                cancel_event: Optional[threading.Event] = None) -> GroupingResult:
        """Disjoint groups of the working set, scored with `compare_two_images`"""
        threshold = self.config.similarity.threshold if threshold is None else threshold

        engine = GroupingEngine(
            self.config.grouping,
            lsh_config=self.config.lsh,
            enhanced_lsh_config=self.config.enhanced_lsh,
            hash_weights=self.config.similarity.hash_weights,
            score_fn=self.scorer.compare,
            exhaustive=self.lsh_index is None,
        )
        return engine.find_all_similar_groups(list(self.items.values()), threshold,
                                              cancel_event=cancel_event)

    def remove_image(self, image_id: str) -> bool:
        item = self.items.pop(image_id, None)
        if item is None:
            return False

        binary = self._binary_hashes.pop(image_id, None)
        if binary and self.lsh_index is not None:
            self.lsh_index.remove(image_id, binary)
        return True

    def clear(self):
        self.items.clear()
        self._binary_hashes.clear()
        if self.lsh_index is not None:
            self.lsh_index.clear()

    def __len__(self) -> int:
        return len(self.items)

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            'image_count': len(self.items),
            'hash_count': sum(1 for item in self.items.values() if item.hashes),
            'feature_count': sum(1 for item in self.items.values() if item.has_features),
            'reduced_feature_count': sum(1 for item in self.items.values()
                                         if item.reduced_features is not None),
            'lsh_bucket_count': None,
            'reduced_dimension': None,
        }

        if self.lsh_index is not None:
            stats['lsh_bucket_count'] = sum(s['bucket_count'] for s in self.lsh_index.bucket_stats())
        if self.reducer is not None and self.reducer.is_trained:
            stats['reduced_dimension'] = self.reducer.pca.target_dimension

        return stats
