# core/grouping.py

import dataclasses
import logging
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Union
from tqdm import tqdm

from config import EnhancedLSHConfig, GroupingConfig, HashWeights, LSHConfig
from core.hashing import combine_hashes
from core.lsh import EnhancedLSHIndex, LSHIndex
from core.models import (
    GroupMember, GroupingResult, ImageItem, SimilarityGroup, SimilarityResult
)
from core.similarity import adjusted_similarity, hash_similarity

logger = logging.getLogger(__name__)

ScoreFunction = Callable[[ImageItem, ImageItem], Optional[SimilarityResult]]


class ItemState(Enum):
    UNPROCESSED = "unprocessed"
    IN_GROUP = "in_group"
    DONE = "done"


def select_representative(items: Sequence[ImageItem]) -> ImageItem:
    """Item with the highest quality score; the first one wins ties"""
    best = items[0]
    best_score = best.quality.score if best.quality else 0.0

    for item in items[1:]:
        score = item.quality.score if item.quality else 0.0
        if score > best_score:
            best, best_score = item, score

    return best


class GroupingEngine:
    """
    Greedy near-duplicate grouping.

    Items are visited in input order. Each unprocessed item seeds a group
    and pulls in every still-unprocessed LSH candidate scoring at or above
    the threshold. Groups are therefore disjoint, and the outcome depends
    on input order.
    """

    def __init__(self, config: Optional[GroupingConfig] = None,
                 lsh_config: Optional[LSHConfig] = None,
                 enhanced_lsh_config: Optional[EnhancedLSHConfig] = None,
                 hash_weights: Optional[HashWeights] = None,
                 score_fn: Optional[ScoreFunction] = None,
                 exhaustive: bool = False):
        """
        Args:
            score_fn: Pair scorer, defaults to `default_score`
            exhaustive: Consider every unprocessed item as a candidate
                instead of querying LSH
        """
        self.config = config or GroupingConfig()
        self.lsh_config = lsh_config or LSHConfig()
        self.enhanced_lsh_config = enhanced_lsh_config or EnhancedLSHConfig()
        self.hash_weights = hash_weights or HashWeights()
        self.score_fn = score_fn or self.default_score
        self.exhaustive = exhaustive

    def default_score(self, seed: ImageItem, candidate: ImageItem) -> Optional[SimilarityResult]:
        """Brightness/contrast adjusted similarity, or plain hash similarity"""
        if not seed.hashes or not candidate.hashes:
            return None

        if self.config.use_quality_adjustment:
            if seed.quality is None or candidate.quality is None:
                return None
            return adjusted_similarity(seed.hashes, candidate.hashes,
                                       seed.quality, candidate.quality,
                                       self.hash_weights, self.config.adjustment_weights)

        return hash_similarity(seed.hashes, candidate.hashes, self.hash_weights)

    def _build_index(self, binaries: Dict[str, str]) -> Union[LSHIndex, EnhancedLSHIndex]:
        longest = max((len(b) for b in binaries.values()), default=0)

        if self.config.use_enhanced_lsh:
            config = self.enhanced_lsh_config
            if self.config.fit_lsh_bits_to_hashes and longest:
                config = dataclasses.replace(config, num_bits=longest)
            index = EnhancedLSHIndex(config)
        else:
            config = self.lsh_config
            if self.config.fit_lsh_bits_to_hashes and longest:
                config = dataclasses.replace(config, num_bits=longest)
            index = LSHIndex(config)

        for item_id, binary in binaries.items():
            if binary:
                index.insert(item_id, binary)
        return index

    def find_all_similar_groups(self, items: Sequence[ImageItem],
                                threshold: Optional[float] = None,
                                cancel_event: Optional[threading.Event] = None,
                                progress_callback: Optional[Callable[[int], None]] = None) -> GroupingResult:
        """
        Group near-duplicate items.

        Args:
            items: Items to group; ids must be unique
            threshold: Minimum similarity (0-100), defaults to the configured one
            cancel_event: Checked once per item; when set the run is aborted
            progress_callback: Receives the percentage of items visited

        Returns:
            GroupingResult; `aborted` with no groups when cancelled
        """
        threshold = self.config.threshold if threshold is None else threshold

        by_id: Dict[str, ImageItem] = {}
        for item in items:
            if item.id in by_id:
                raise ValueError(f"Duplicate item id: {item.id}")
            by_id[item.id] = item

        position = {item.id: i for i, item in enumerate(items)}
        state = {item.id: ItemState.UNPROCESSED for item in items}
        binaries = {item.id: combine_hashes(item.hashes) for item in items}
        index = None if self.exhaustive else self._build_index(binaries)

        groups: List[SimilarityGroup] = []
        total = len(items)

        for done, item in enumerate(tqdm(items, desc="Grouping photos",
                                         disable=not self.config.show_progress), 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Grouping aborted after %d of %d items", done - 1, total)
                return GroupingResult(groups=[], aborted=True)

            if state[item.id] is ItemState.UNPROCESSED and (index is None or binaries[item.id]):
                group = self._grow_group(item, index, binaries[item.id], items,
                                         by_id, position, state, threshold)
                if group is not None:
                    groups.append(group)

            if state[item.id] is ItemState.UNPROCESSED:
                state[item.id] = ItemState.DONE

            if progress_callback:
                progress_callback(int(done / total * 100))

        logger.info("Found %d groups among %d items", len(groups), total)
        return GroupingResult(groups=groups, aborted=False)

    def _grow_group(self, seed: ImageItem, index, binary: str, items: Sequence[ImageItem],
                    by_id: Dict[str, ImageItem], position: Dict[str, int],
                    state: Dict[str, ItemState], threshold: float) -> Optional[SimilarityGroup]:
        state[seed.id] = ItemState.IN_GROUP
        members = [GroupMember(seed.id, 100.0, 'seed')]
        member_items = [seed]

        pool = (item.id for item in items) if index is None else index.query(binary)
        candidates = sorted(
            (cid for cid in pool
             if cid != seed.id and state.get(cid) is ItemState.UNPROCESSED),
            key=position.__getitem__,
        )

        for candidate_id in candidates:
            candidate = by_id[candidate_id]
            try:
                result = self.score_fn(seed, candidate)
            except ValueError as e:
                logger.debug("Skipping candidate %s for %s: %s", candidate_id, seed.id, e)
                continue

            if result is None or result.method == 'none':
                continue

            similarity = max(0.0, min(100.0, result.similarity))
            if similarity >= threshold:
                state[candidate_id] = ItemState.IN_GROUP
                members.append(GroupMember(candidate_id, float(round(similarity)), result.method))
                member_items.append(candidate)

        for member in member_items:
            state[member.id] = ItemState.DONE

        if len(members) < 2:
            return None

        key = select_representative(member_items)
        return SimilarityGroup(key_id=key.id, members=members, seed_id=seed.id)
