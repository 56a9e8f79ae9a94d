# core/batch_processor.py

import logging
import multiprocessing as mp
from concurrent.futures import ThreadPoolExecutor, ProcessPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, MutableMapping, Optional
from tqdm import tqdm

from config import HashOptions
from core.feature_extractors import MidLevelFeatureExtractor
from core.hashing import HashComputer
from core.models import ImageItem
from core.quality import QualityAnalyzer
from utils.image_utils import (
    ANALYSIS_MAX_DIMENSION, HASH_MAX_DIMENSION, ImageLoadError, open_rgba, to_pixel_buffer
)

logger = logging.getLogger(__name__)


class BatchProcessor:
    """
    Builds ImageItems (hashes, quality, mid-level features) from image
    files in parallel
    """

    def __init__(self,
                 n_workers: int = None,
                 use_threading: bool = True,
                 hash_options: Optional[HashOptions] = None,
                 hash_cache: Optional[MutableMapping[str, Dict[str, str]]] = None,
                 show_progress: bool = True):
        self.n_workers = n_workers or mp.cpu_count()
        self.use_threading = use_threading
        self.show_progress = show_progress
        self.hash_computer = HashComputer(hash_options, cache=hash_cache)
        self.quality_analyzer = QualityAnalyzer()
        self.feature_extractor = MidLevelFeatureExtractor()

    def process_images_parallel(self,
                                image_paths: List[str],
                                process_func: Callable,
                                use_threading: bool = None) -> List[Any]:
        """
        Process images in parallel using multiprocessing or threading

        Args:
            image_paths: List of image paths
            process_func: Function to apply to each image
            use_threading: Use threading instead of multiprocessing
                          (better for I/O-bound tasks); defaults to the
                          processor setting

        Returns:
            List of processing results, in input order
        """
        if use_threading is None:
            use_threading = self.use_threading
        executor_class = ThreadPoolExecutor if use_threading else ProcessPoolExecutor

        with executor_class(max_workers=self.n_workers) as executor:
            results = list(tqdm(
                executor.map(process_func, image_paths),
                total=len(image_paths),
                desc="Processing images",
                disable=not self.show_progress
            ))

        return results

    def build_item(self, image_path: str) -> ImageItem:
        """
        Decode one file and compute everything grouping needs.

        A file that cannot be decoded yields an item without hashes, which
        grouping never picks up.
        """
        path = Path(image_path)
        metadata = {'path': str(path), 'file_name': path.name}

        try:
            metadata['file_size'] = path.stat().st_size
            image = open_rgba(path)
        except (OSError, ImageLoadError) as e:
            logger.warning("Skipping %s: %s", image_path, e)
            metadata['error'] = str(e)
            return ImageItem(id=str(path), metadata=metadata)

        metadata['width'], metadata['height'] = image.size

        hash_pixels = to_pixel_buffer(image, HASH_MAX_DIMENSION)
        hashes = self.hash_computer.compute_for_file(path, pixels=hash_pixels)

        pixels = to_pixel_buffer(image, ANALYSIS_MAX_DIMENSION)
        quality = self.quality_analyzer.analyze(
            pixels,
            file_size=metadata['file_size'],
            resolution=image.size[0] * image.size[1],
        )
        features = self.feature_extractor.extract_features(pixels)

        return ImageItem(
            id=str(path),
            hashes=hashes,
            color_histogram=features.get('color'),
            texture_features=features.get('texture'),
            quality=quality,
            metadata=metadata,
        )

    def build_items(self, image_paths: List[str]) -> List[ImageItem]:
        """Build items for all paths, keeping input order"""
        items = self.process_images_parallel(image_paths, self.build_item)

        # Worker processes fill their own copy of the cache
        if not self.use_threading:
            for item in items:
                self.hash_computer.remember(item.id, item.hashes)

        failed = sum(1 for item in items if not item.hashes)
        if failed:
            logger.warning("%d of %d images could not be hashed", failed, len(items))
        return items
