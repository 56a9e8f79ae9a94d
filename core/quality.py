# core/quality.py

import logging
from typing import Optional
import numpy as np

from core.models import QualityMetrics

logger = logging.getLogger(__name__)

FULL_HD_PIXELS = 1920 * 1080
MEGABYTE = 1024 * 1024
EDGE_THRESHOLD = 30


class QualityAnalyzer:
    """
    Cheap photo quality scores used to pick the representative of a group
    and to correct hash similarity for exposure changes.
    """

    def __init__(self, brightness_weight: float = 0.2, contrast_weight: float = 0.2,
                 sharpness_weight: float = 0.3, resolution_weight: float = 0.2,
                 file_size_weight: float = 0.1):
        self.brightness_weight = brightness_weight
        self.contrast_weight = contrast_weight
        self.sharpness_weight = sharpness_weight
        self.resolution_weight = resolution_weight
        self.file_size_weight = file_size_weight

    @staticmethod
    def brightness(intensity: np.ndarray) -> float:
        """100 for mid-grey exposure, falling linearly towards black or white"""
        mean = float(intensity.mean())
        return max(0.0, 100.0 - abs(mean - 128) / 128 * 100)

    @staticmethod
    def contrast(intensity: np.ndarray) -> float:
        return min(100.0, float(intensity.std()) / 50 * 100)

    @staticmethod
    def sharpness(intensity: np.ndarray) -> float:
        """Percentage of pixels on a strong edge, capped at 100"""
        h, w = intensity.shape
        if h < 3 or w < 3:
            return 0.0

        current = intensity[1:-1, 1:-1]
        gx = np.abs(current - intensity[1:-1, 2:])
        gy = np.abs(current - intensity[2:, 1:-1])
        edges = int(np.count_nonzero(gx + gy > EDGE_THRESHOLD))

        return min(100.0, edges / (w * h) * 100)

    def analyze(self, pixels: np.ndarray, file_size: Optional[int] = None,
                resolution: Optional[int] = None) -> QualityMetrics:
        """
        Score a pixel buffer.

        Args:
            pixels: (h, w, 3|4) buffer or (h, w) intensities
            file_size: Size of the source file in bytes, if known
            resolution: Pixel count of the original image when `pixels`
                is a downscaled copy

        Returns:
            QualityMetrics with every score in [0, 100]
        """
        pixels = np.asarray(pixels)
        if pixels.ndim == 3:
            intensity = pixels[..., :3].astype(np.float64).mean(axis=-1)
        else:
            intensity = pixels.astype(np.float64)

        if intensity.size == 0:
            raise ValueError("Cannot analyze an empty pixel buffer")

        brightness = self.brightness(intensity)
        contrast = self.contrast(intensity)
        sharpness = self.sharpness(intensity)

        resolution = resolution or intensity.size
        resolution_score = min(100.0, resolution / FULL_HD_PIXELS * 50)

        weighted = (brightness * self.brightness_weight +
                    contrast * self.contrast_weight +
                    sharpness * self.sharpness_weight +
                    resolution_score * self.resolution_weight)
        total_weight = (self.brightness_weight + self.contrast_weight +
                        self.sharpness_weight + self.resolution_weight)

        if file_size is not None:
            weighted += min(100.0, file_size / MEGABYTE * 25) * self.file_size_weight
            total_weight += self.file_size_weight

        score = weighted / total_weight if total_weight > 0 else 0.0

        return QualityMetrics(
            brightness=brightness,
            contrast=contrast,
            sharpness=sharpness,
            score=float(round(score)),
        )
