# tests/conftest.py

import pytest
import numpy as np
import cv2

from core.models import HashSet, ImageItem, QualityMetrics


def smooth_photo(seed: int, size: int = 224, low: int = 30, high: int = 200) -> np.ndarray:
    """Smooth synthetic BGR photo: a random 8x8 image upscaled"""
    rng = np.random.default_rng(seed)
    small = rng.integers(low, high, (8, 8, 3), dtype=np.uint8)
    return cv2.resize(small, (size, size), interpolation=cv2.INTER_CUBIC)


def random_hex(rng: np.random.Generator, digits: int) -> str:
    return "".join(rng.choice(list("0123456789abcdef"), digits))


def random_hashes(rng: np.random.Generator) -> HashSet:
    return HashSet(avg=random_hex(rng, 16), diff=random_hex(rng, 14), perceptual=random_hex(rng, 16))


def make_item(item_id: str, hashes: HashSet, score: float = 50.0,
              brightness: float = 80.0, contrast: float = 50.0,
              with_quality: bool = True, **kwargs) -> ImageItem:
    quality = QualityMetrics(brightness, contrast, 40.0, score) if with_quality else None
    return ImageItem(id=item_id, hashes=hashes, quality=quality, **kwargs)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def fixed_hashes():
    return HashSet(avg="ffff0000ffff0000", diff="0f0f0f0f0f0f0f", perceptual="ff00ff00ff00ff00")
