# tests/test_similarity_system.py

import threading
import pytest
import numpy as np
import cv2

from config import SimilarityConfig, SystemConfig
from core.models import ImageItem
from core.similarity_system import ImageSimilaritySystem
from tests.conftest import random_hashes, smooth_photo


@pytest.fixture
def system():
    return ImageSimilaritySystem()


def rgba(seed):
    return cv2.cvtColor(smooth_photo(seed), cv2.COLOR_BGR2RGBA)


def test_add_image_hashes_pixels(system):
    item = system.add_image('a', pixels=rgba(1))
    assert item.hashes.kinds()
    assert len(system) == 1


def test_find_similar_images(system):
    system.add_image('a', pixels=rgba(1))
    system.add_image('b', pixels=rgba(1))
    system.add_image('c', pixels=rgba(2))

    similar = system.find_similar_images('a')
    assert [m.id for m in similar] == ['b']
    assert similar[0].similarity == 100.0
    assert similar[0].method == 'hash'


def test_unknown_id_raises(system):
    with pytest.raises(KeyError):
        system.find_similar_images('missing')
    with pytest.raises(KeyError):
        system.compare_two_images('a', 'b')


def test_pca_not_trained_with_few_vectors(system, rng):
    """Three feature vectors: comparisons use raw features"""
    vector = rng.normal(size=8)
    system.add_images([ImageItem('a', features=vector), ImageItem('b', features=vector),
                       ImageItem('c', features=rng.normal(size=8))])

    assert not system.reducer.is_trained
    assert system.compare_two_images('a', 'b').method == 'raw_feature'


def test_pca_trained_once_enough_vectors(system, rng):
    vector = rng.normal(size=8)
    items = [ImageItem('x', features=vector), ImageItem('y', features=vector)]
    items += [ImageItem(f'r{i}', features=rng.normal(size=8)) for i in range(4)]

    assert system.add_images(items) == 6
    assert system.reducer.is_trained
    assert all(item.reduced_features is not None for item in system.items.values())

    result = system.compare_two_images('x', 'y')
    assert (result.similarity, result.method) == (100.0, 'feature')

    stats = system.get_stats()
    assert stats['reduced_feature_count'] == 6
    assert stats['reduced_dimension'] == 8


def test_items_added_after_training_are_reduced(system, rng):
    system.add_images([ImageItem(f'r{i}', features=rng.normal(size=8)) for i in range(5)])
    item = system.add_image('late', features=rng.normal(size=8))
    assert item.reduced_features is not None

    odd = system.add_image('odd', features=rng.normal(size=3))
    assert odd.reduced_features is None


def test_remove_image(system, rng):
    hashes = random_hashes(rng)
    system.add_image('a', hashes=hashes)
    system.add_image('b', hashes=hashes)

    assert system.remove_image('b')
    assert not system.remove_image('b')
    assert system.find_similar_images('a') == []
    assert system.get_stats()['image_count'] == 1


def test_re_adding_replaces_item(system, rng):
    system.add_image('a', hashes=random_hashes(rng))
    system.add_image('a', hashes=random_hashes(rng))
    assert len(system) == 1
    assert len(system.lsh_index) == 1


def test_find_all_similar_groups(system, rng):
    h1, h2 = random_hashes(rng), random_hashes(rng)
    for item_id, hashes in (('a', h1), ('b', h2), ('c', h1), ('d', h2)):
        system.add_image(item_id, hashes=hashes)

    result = system.find_all_similar_groups()
    assert sorted(sorted(g.member_ids) for g in result.groups) == [['a', 'c'], ['b', 'd']]

    cancel = threading.Event()
    cancel.set()
    assert system.find_all_similar_groups(cancel_event=cancel).aborted


def test_grouping_without_lsh_uses_every_item(rng):
    config = SystemConfig(similarity=SimilarityConfig(use_lsh=False))
    system = ImageSimilaritySystem(config)
    vector = rng.normal(size=4)
    system.add_image('a', features=vector)
    system.add_image('b', features=vector)

    assert system.lsh_index is None
    result = system.find_all_similar_groups()
    assert result.groups[0].member_ids == ['a', 'b']
    assert result.groups[0].members[1].method == 'raw_feature'


def test_clear_and_stats(system, rng):
    system.add_image('a', hashes=random_hashes(rng), features=np.ones(4))
    stats = system.get_stats()
    assert stats['hash_count'] == 1
    assert stats['feature_count'] == 1
    assert stats['lsh_bucket_count'] == 4

    system.clear()
    assert system.get_stats()['image_count'] == 0
    assert len(system.lsh_index) == 0
