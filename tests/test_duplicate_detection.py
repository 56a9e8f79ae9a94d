# tests/test_duplicate_detection.py

import pytest
import numpy as np
import cv2

from core.batch_processor import BatchProcessor
from core.grouping import GroupingEngine
from core.hashing import HashComputer
from core.similarity import hash_similarity
from tests.conftest import smooth_photo


@pytest.fixture
def duplicate_images(tmp_path):
    """Create images with duplicates"""
    # Create original image
    img1 = smooth_photo(11)
    path1 = tmp_path / "original.png"
    cv2.imwrite(str(path1), img1)

    # Create exact duplicate
    path2 = tmp_path / "duplicate.png"
    cv2.imwrite(str(path2), img1)

    # Create near-duplicate (slightly brighter)
    img2 = cv2.convertScaleAbs(img1, alpha=1.1, beta=10)
    path3 = tmp_path / "near_duplicate.png"
    cv2.imwrite(str(path3), img2)

    # Create different image
    img3 = smooth_photo(12)
    path4 = tmp_path / "different.png"
    cv2.imwrite(str(path4), img3)

    return [str(path1), str(path2), str(path3), str(path4)]


@pytest.fixture
def processor():
    return BatchProcessor(n_workers=2, show_progress=False)


def test_build_items_keeps_order(processor, duplicate_images):
    items = processor.build_items(duplicate_images)

    assert [item.id for item in items] == duplicate_images
    for item in items:
        assert item.hashes.kinds()
        assert item.quality is not None
        assert item.color_histogram.shape == (24,)
        assert item.texture_features.shape == (16,)
        assert item.metadata['width'] == 224


def test_corrupt_file_yields_item_without_hashes(processor, tmp_path):
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"\xff\xd8 truncated")

    item = processor.build_item(str(broken))
    assert item.hashes.is_empty()
    assert 'error' in item.metadata


def test_duplicate_detection(processor, duplicate_images):
    """Exact duplicates end up in one group, the unrelated photo does not"""
    items = processor.build_items(duplicate_images)
    result = GroupingEngine().find_all_similar_groups(items)

    assert len(result) >= 1
    group = result.groups[0]
    assert duplicate_images[0] in group.member_ids
    assert duplicate_images[1] in group.member_ids
    assert duplicate_images[3] not in result.grouped_ids()


def test_near_duplicate_hashes_are_close(duplicate_images):
    """Brightness/contrast change keeps the perceptual hashes similar"""
    computer = HashComputer()
    original = computer.compute_for_file(duplicate_images[0])
    near = computer.compute_for_file(duplicate_images[2])
    different = computer.compute_for_file(duplicate_images[3])

    assert hash_similarity(original, near).similarity >= 80
    assert hash_similarity(original, near).similarity > hash_similarity(original, different).similarity


@pytest.mark.parametrize("use_threading", [True, False])
def test_hash_cache_is_filled_by_both_pools(duplicate_images, use_threading):
    cache = {}
    processor = BatchProcessor(n_workers=2, use_threading=use_threading,
                               hash_cache=cache, show_progress=False)
    processor.build_items(duplicate_images)

    assert len(cache) == len(duplicate_images)

    processor.build_items(duplicate_images)
    if use_threading:
        assert processor.hash_computer.cache_hits == len(duplicate_images)


def test_thread_and_process_pools_agree(duplicate_images):
    threaded = BatchProcessor(n_workers=2, use_threading=True, show_progress=False)
    processes = BatchProcessor(n_workers=2, use_threading=False, show_progress=False)

    assert ([i.hashes for i in threaded.build_items(duplicate_images)] ==
            [i.hashes for i in processes.build_items(duplicate_images)])
