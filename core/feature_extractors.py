import cv2
import numpy as np
from typing import Dict, Sequence

from core.hashing import to_grayscale


class MidLevelFeatureExtractor:
    """
    Mid-level features for fusion: color distribution and local texture
    """

    def __init__(self, color_bins: int = 8, texture_bins: int = 16):
        self.extractors = {
            'color': ColorHistogramExtractor(color_bins),
            'texture': TextureExtractor(texture_bins),
        }

    def extract_features(self, pixels: np.ndarray,
                         methods: Sequence[str] = ('color', 'texture')) -> Dict[str, np.ndarray]:
        """
        Extract features using specified methods

        Args:
            pixels: (h, w, 3|4) RGB(A) buffer
            methods: Names of the extractors to run

        Returns:
            Dictionary of feature vectors
        """
        features = {}
        for method in methods:
            if method in self.extractors:
                features[method] = self.extractors[method].extract(pixels)
        return features


class ColorHistogramExtractor:
    """
    Per-channel RGB histogram, normalized by the pixel count
    """

    def __init__(self, bins: int = 8):
        self.bins = bins

    def extract(self, pixels: np.ndarray) -> np.ndarray:
        """Histograms of R, G and B concatenated (3 * bins values)"""
        rgb = np.ascontiguousarray(pixels[..., :3], dtype=np.uint8)
        pixel_count = rgb.shape[0] * rgb.shape[1]
        if pixel_count == 0:
            return np.zeros(3 * self.bins)

        histograms = [
            cv2.calcHist([rgb], [channel], None, [self.bins], [0, 256]).ravel()
            for channel in range(3)
        ]
        return np.concatenate(histograms).astype(np.float64) / pixel_count


class TextureExtractor:
    """
    Local binary patterns over the 4-neighbourhood (top, right, bottom, left)
    """

    def __init__(self, bins: int = 16):
        self.bins = bins

    def extract(self, pixels: np.ndarray) -> np.ndarray:
        """LBP histogram normalized by the number of interior pixels"""
        gray = to_grayscale(np.asarray(pixels))
        h, w = gray.shape
        if h < 3 or w < 3:
            return np.zeros(self.bins)

        center = gray[1:-1, 1:-1]
        neighbours = (gray[:-2, 1:-1], gray[1:-1, 2:], gray[2:, 1:-1], gray[1:-1, :-2])

        codes = np.zeros(center.shape, dtype=np.int64)
        for bit, neighbour in enumerate(neighbours):
            codes |= (neighbour >= center).astype(np.int64) << bit

        # 16 patterns spread over `bins` bins
        binned = codes * self.bins // 16
        histogram = np.bincount(binned.ravel(), minlength=self.bins)[:self.bins]
        return histogram.astype(np.float64) / ((h - 2) * (w - 2))
