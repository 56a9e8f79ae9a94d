# core/dimension_reduction.py

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
import numpy as np

from config import PCAConfig
from core.models import ReducedFeatureVector

logger = logging.getLogger(__name__)

# Spread below this counts as a constant dimension
_EPSILON = 1e-10


class DimensionReductionError(Exception):
    """Base error of the dimension reducer"""


class NotTrainedError(DimensionReductionError):
    """transform() called before a successful train()"""


class DimensionMismatchError(DimensionReductionError, ValueError):
    """Vectors of different dimensionality were mixed"""


@dataclass(frozen=True)
class PCATransform:
    """A trained projection. Immutable; retraining builds a new one."""
    components: np.ndarray          # (k, d), rows sorted by |eigenvalue| desc
    mean: np.ndarray                # (d,)
    scale: np.ndarray               # (d,)
    eigenvalues: np.ndarray         # (k,)
    explained_variance: np.ndarray  # (k,) share of the total variance

    @property
    def source_dimension(self) -> int:
        return int(self.mean.shape[0])

    @property
    def target_dimension(self) -> int:
        return int(self.components.shape[0])

    def project(self, vector: np.ndarray) -> np.ndarray:
        return self.components @ ((vector - self.mean) / self.scale)


def preprocess_vectors(data: np.ndarray, config: PCAConfig) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Center, standardize and normalize the training matrix (in that order).

    Returns:
        (processed data, mean, scale) where processed = (data - mean) / scale
    """
    n, d = data.shape
    mean = data.mean(axis=0) if (config.center or config.standardize) else np.zeros(d)
    processed = data - mean
    scale = np.ones(d)

    if config.standardize:
        std = data.std(axis=0)
        std[std < _EPSILON] = 1.0
        processed = processed / std
        scale = scale * std

    if config.normalize:
        spread = processed.max(axis=0) - processed.min(axis=0)
        flat = spread < _EPSILON
        spread[flat] = 1.0
        processed = processed / spread
        processed[:, flat] = 0.0
        scale = scale * spread

    return processed, mean, scale


def covariance_matrix(data: np.ndarray) -> np.ndarray:
    """Sample covariance (n - 1 denominator) of already centred rows"""
    n = data.shape[0]
    return data.T @ data / max(n - 1, 1)


def power_iteration(matrix: np.ndarray, k: int, max_iterations: int = 100,
                    tolerance: float = 1e-6,
                    rng: Optional[np.random.Generator] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Top-k eigenpairs of a symmetric matrix by power iteration with deflation.

    Returns:
        (eigenvalues, eigenvectors as rows), sorted by |eigenvalue| descending
    """
    rng = rng if rng is not None else np.random.default_rng()
    matrix = np.array(matrix, dtype=np.float64, copy=True)
    d = matrix.shape[0]

    eigenvalues = np.zeros(k)
    eigenvectors = np.zeros((k, d))

    for i in range(k):
        vector = rng.random(d) + _EPSILON
        vector /= np.linalg.norm(vector)
        eigenvalue = 0.0

        for _ in range(max_iterations):
            product = matrix @ vector
            norm = np.linalg.norm(product)
            if norm < _EPSILON:
                # Nothing left to extract in this direction
                eigenvalue = 0.0
                break

            idx = int(np.argmax(np.abs(product)))
            if vector[idx] != 0:
                eigenvalue = product[idx] / vector[idx]
            else:
                eigenvalue = float(vector @ product)

            updated = product / norm
            converged = np.max(np.abs(np.abs(updated) - np.abs(vector))) <= tolerance
            vector = updated
            if converged:
                break

        eigenvalues[i] = eigenvalue
        eigenvectors[i] = vector
        matrix -= eigenvalue * np.outer(vector, vector)

    order = np.argsort(-np.abs(eigenvalues), kind='stable')
    return eigenvalues[order], eigenvectors[order]


def cosine_similarity(v1: np.ndarray, v2: np.ndarray) -> float:
    """Cosine of the angle between two vectors, 0 when either is all zeros"""
    v1 = np.asarray(v1, dtype=np.float64).ravel()
    v2 = np.asarray(v2, dtype=np.float64).ravel()
    if v1.shape != v2.shape:
        raise DimensionMismatchError(f"Vector dimensions differ: {v1.size} vs {v2.size}")

    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    if norm == 0:
        return 0.0
    return float(np.clip(v1 @ v2 / norm, -1.0, 1.0))


def euclidean_distance(v1: np.ndarray, v2: np.ndarray) -> float:
    v1 = np.asarray(v1, dtype=np.float64).ravel()
    v2 = np.asarray(v2, dtype=np.float64).ravel()
    if v1.shape != v2.shape:
        raise DimensionMismatchError(f"Vector dimensions differ: {v1.size} vs {v2.size}")
    return float(np.linalg.norm(v1 - v2))


def euclidean_distance_to_similarity(distance: float, max_distance: float = 10.0) -> float:
    return 100.0 * float(np.exp(-distance / max_distance))


class DimensionReducer:
    """
    PCA over high-level feature vectors.

    Training needs `min_training_vectors` vectors of one dimension; with
    fewer, training is skipped with a warning and the reducer stays
    untrained.
    """

    def __init__(self, config: Optional[PCAConfig] = None):
        self.config = config or PCAConfig()
        self.rng = np.random.default_rng(self.config.seed)
        self.pca: Optional[PCATransform] = None

    @property
    def is_trained(self) -> bool:
        return self.pca is not None

    def train(self, vectors: Sequence[Sequence[float]]) -> bool:
        """
        Fit the projection.

        Args:
            vectors: Training vectors, all of the same length

        Returns:
            True when a new transform was trained
        """
        if len(vectors) < self.config.min_training_vectors:
            logger.warning("Not enough vectors to train PCA: %d < %d",
                           len(vectors), self.config.min_training_vectors)
            return False

        dimensions = {len(np.ravel(v)) for v in vectors}
        if len(dimensions) > 1:
            raise DimensionMismatchError(f"Training vectors have mixed dimensions: {sorted(dimensions)}")
        d = dimensions.pop()
        if d == 0:
            raise DimensionMismatchError("Training vectors are empty")

        data = np.asarray([np.ravel(v) for v in vectors], dtype=np.float64)
        processed, mean, scale = preprocess_vectors(data, self.config)
        covariance = covariance_matrix(processed)

        k = min(self.config.target_dimensions, d)
        eigenvalues, components = power_iteration(
            covariance, k, self.config.max_iterations, self.config.tolerance, self.rng)

        total_variance = float(np.trace(covariance))
        if total_variance > 0:
            explained = eigenvalues / total_variance
        else:
            explained = np.zeros(k)

        self.pca = PCATransform(
            components=components,
            mean=mean,
            scale=scale,
            eigenvalues=eigenvalues,
            explained_variance=explained,
        )
        logger.info("Trained PCA %d -> %d dimensions on %d vectors (%.1f%% variance kept)",
                    d, k, len(data), 100.0 * float(np.sum(explained)))
        return True

    def transform(self, vector: Sequence[float]) -> ReducedFeatureVector:
        if self.pca is None:
            raise NotTrainedError("PCA model has not been trained")

        vector = np.asarray(vector, dtype=np.float64).ravel()
        if vector.size != self.pca.source_dimension:
            raise DimensionMismatchError(
                f"Expected {self.pca.source_dimension} dimensions, got {vector.size}")

        return ReducedFeatureVector(self.pca.project(vector), self.pca.source_dimension)

    def transform_many(self, vectors: Sequence[Sequence[float]]) -> List[ReducedFeatureVector]:
        return [self.transform(v) for v in vectors]

    @staticmethod
    def compare_reduced(r1: ReducedFeatureVector, r2: ReducedFeatureVector) -> float:
        """Cosine similarity percentage of two reduced vectors, clamped to [0, 100]"""
        if r1.source_dimension != r2.source_dimension or len(r1) != len(r2):
            raise DimensionMismatchError(
                f"Reduced vectors come from different spaces: "
                f"{r1.source_dimension}->{len(r1)} vs {r2.source_dimension}->{len(r2)}")

        similarity = max(0.0, min(1.0, cosine_similarity(r1.values, r2.values)))
        return float(round(similarity * 100))

    def compare(self, v1: Sequence[float], v2: Sequence[float]) -> float:
        return self.compare_reduced(self.transform(v1), self.transform(v2))

    def to_dict(self) -> Dict[str, Any]:
        if self.pca is None:
            raise NotTrainedError("PCA model has not been trained")
        return {
            'components': self.pca.components.tolist(),
            'mean': self.pca.mean.tolist(),
            'scale': self.pca.scale.tolist(),
            'eigenvalues': self.pca.eigenvalues.tolist(),
            'explained_variance': self.pca.explained_variance.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config: Optional[PCAConfig] = None) -> 'DimensionReducer':
        reducer = cls(config)
        reducer.pca = PCATransform(**{key: np.asarray(data[key], dtype=np.float64) for key in (
            'components', 'mean', 'scale', 'eigenvalues', 'explained_variance')})
        return reducer
