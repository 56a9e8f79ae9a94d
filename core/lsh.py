# core/lsh.py

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple
import numpy as np

from config import EnhancedLSHConfig, LSHConfig
from core.hashing import binary_to_bits

logger = logging.getLogger(__name__)

# E2LSH never probes more than this many hash functions per table
MAX_E2LSH_PROBED_FUNCTIONS = 10


class LSHIndex:
    """
    Locality sensitive hashing over binary hash strings.

    Every table owns `num_hash_functions` random +/-1 projections. An item's
    bucket in a table is the pattern of positive dot products, reduced
    modulo `num_buckets`. Not thread safe.
    """

    def __init__(self, config: Optional[LSHConfig] = None,
                 rng: Optional[np.random.Generator] = None):
        self.config = config or LSHConfig()
        rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        c = self.config
        draws = rng.random((c.num_tables, c.num_hash_functions, c.num_bits))
        self.projections = np.where(draws > 0.5, 1.0, -1.0)
        self._bit_weights = np.left_shift(1, np.arange(c.num_hash_functions, dtype=np.int64))

        self.tables: List[Dict[int, Set[str]]] = [{} for _ in range(c.num_tables)]
        self._item_count = 0

    def vector_from_bits(self, bits: np.ndarray) -> np.ndarray:
        """0/1 (or boolean) bits -> +/-1 vector, padded with 0 or truncated to num_bits"""
        bits = np.asarray(bits).ravel()[:self.config.num_bits]
        vector = np.zeros(self.config.num_bits)
        vector[:bits.size] = np.where(bits > 0, 1.0, -1.0)
        return vector

    def hash_to_vector(self, binary_hash: str) -> np.ndarray:
        return self.vector_from_bits(binary_to_bits(binary_hash))

    def signatures(self, vector: np.ndarray) -> np.ndarray:
        """Bucket id of `vector` in every table"""
        positive = (self.projections @ vector) > 0
        return (positive.astype(np.int64) * self._bit_weights).sum(axis=1) % self.config.num_buckets

    def insert(self, item_id: str, binary_hash: str):
        self.insert_vector(item_id, self.hash_to_vector(binary_hash))

    def insert_vector(self, item_id: str, vector: np.ndarray):
        for table, signature in zip(self.tables, self.signatures(vector)):
            table.setdefault(int(signature), set()).add(item_id)
        self._item_count += 1

    def batch_insert(self, items: Iterable[Tuple[str, str]]):
        for item_id, binary_hash in items:
            self.insert(item_id, binary_hash)

    def query(self, binary_hash: str) -> Set[str]:
        """Ids sharing a bucket with `binary_hash` in at least one table"""
        return self.query_vector(self.hash_to_vector(binary_hash))

    def query_vector(self, vector: np.ndarray) -> Set[str]:
        candidates = set()
        for table, signature in zip(self.tables, self.signatures(vector)):
            candidates.update(table.get(int(signature), ()))
        return candidates

    def query_multiple(self, binary_hashes: Iterable[str]) -> Dict[str, Set[str]]:
        return {binary_hash: self.query(binary_hash) for binary_hash in binary_hashes}

    def remove(self, item_id: str, binary_hash: str):
        self.remove_vector(item_id, self.hash_to_vector(binary_hash))

    def remove_vector(self, item_id: str, vector: np.ndarray):
        removed = False
        for table, signature in zip(self.tables, self.signatures(vector)):
            bucket = table.get(int(signature))
            if bucket is None or item_id not in bucket:
                continue
            bucket.discard(item_id)
            removed = True
            if not bucket:
                del table[int(signature)]

        if removed:
            self._item_count = max(0, self._item_count - 1)

    def clear(self):
        for table in self.tables:
            table.clear()
        self._item_count = 0

    def __len__(self) -> int:
        return self._item_count

    @property
    def size(self) -> int:
        return self._item_count

    def bucket_stats(self) -> List[Dict]:
        stats = []
        for i, table in enumerate(self.tables):
            sizes = [len(bucket) for bucket in table.values()]
            stats.append({
                'table_index': i,
                'bucket_count': len(table),
                'avg_bucket_size': float(np.mean(sizes)) if sizes else 0.0,
            })
        return stats


class MultiProbeLSHIndex:
    """
    Several LSH levels of decreasing hash-function count, queried with a
    few randomly perturbed copies of the query bits to improve recall.
    """

    def __init__(self, config: Optional[EnhancedLSHConfig] = None,
                 rng: Optional[np.random.Generator] = None):
        self.config = config or EnhancedLSHConfig()
        rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        self.levels = [
            LSHIndex(self.config.level_config(level), rng=rng)
            for level in range(self.config.num_levels)
        ]
        # One set of ternary perturbations per level, one entry per hash function
        self.perturbations = [
            rng.integers(-1, 2, size=(self.config.num_perturbations,
                                      index.config.num_hash_functions))
            for index in self.levels
        ]

    def insert(self, item_id: str, binary_hash: str):
        for index in self.levels:
            index.insert(item_id, binary_hash)

    def query(self, binary_hash: str) -> Set[str]:
        bits = binary_to_bits(binary_hash)
        n_probes = max(0, min(self.config.num_probes - 1, self.config.num_perturbations))

        candidates = set()
        for index, perturbations in zip(self.levels, self.perturbations):
            candidates |= index.query(binary_hash)

            for perturbation in perturbations[:n_probes]:
                perturbed = bits.copy()
                span = min(perturbed.size, perturbation.size)
                perturbed[:span] += perturbation[:span]
                candidates |= index.query_vector(index.vector_from_bits(perturbed > 0))

        return candidates

    def remove(self, item_id: str, binary_hash: str):
        for index in self.levels:
            index.remove(item_id, binary_hash)

    def clear(self):
        for index in self.levels:
            index.clear()

    def __len__(self) -> int:
        return len(self.levels[0])


class E2LSHIndex:
    """
    Euclidean LSH: h(x) = floor((a.x + b) / w) with Gaussian `a` and `b`
    uniform in [0, w). A table's bucket key is the tuple of its hash values.
    """

    def __init__(self, config: Optional[EnhancedLSHConfig] = None,
                 rng: Optional[np.random.Generator] = None):
        self.config = config or EnhancedLSHConfig()
        rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        c = self.config
        self.dimension = c.e2lsh_dimension
        shape = (c.num_tables, c.num_hash_functions, self.dimension)

        # Box-Muller, 1 - U keeps the logarithm away from zero
        u1 = 1.0 - rng.random(shape)
        u2 = rng.random(shape)
        self.projections = np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)
        self.offsets = rng.random((c.num_tables, c.num_hash_functions)) * c.bucket_width

        self.buckets: Dict[Tuple[int, Tuple[int, ...]], Set[str]] = {}

    def _fit(self, vector: np.ndarray) -> np.ndarray:
        vector = np.asarray(vector, dtype=np.float64).ravel()[:self.dimension]
        fitted = np.zeros(self.dimension)
        fitted[:vector.size] = vector
        return fitted

    def hash_vector(self, vector: np.ndarray) -> np.ndarray:
        """(tables, functions) array of bucket ids"""
        projected = self.projections @ self._fit(vector) + self.offsets
        return np.floor(projected / self.config.bucket_width).astype(np.int64)

    def insert(self, item_id: str, vector: np.ndarray):
        for table, key in enumerate(self.hash_vector(vector)):
            self.buckets.setdefault((table, tuple(key.tolist())), set()).add(item_id)

    def query(self, vector: np.ndarray, multi_probe: bool = True) -> Set[str]:
        keys = self.hash_vector(vector)

        candidates = set()
        for table, key in enumerate(keys):
            candidates.update(self.buckets.get((table, tuple(key.tolist())), ()))

        if multi_probe:
            probed = min(self.config.num_probes, MAX_E2LSH_PROBED_FUNCTIONS + 1) - 1
            for table, key in enumerate(keys):
                for h in range(min(probed, key.size)):
                    for offset in (-1, 1):
                        probe = key.tolist()
                        probe[h] += offset
                        candidates.update(self.buckets.get((table, tuple(probe)), ()))

        return candidates

    def remove(self, item_id: str, vector: np.ndarray):
        for table, key in enumerate(self.hash_vector(vector)):
            bucket_key = (table, tuple(key.tolist()))
            bucket = self.buckets.get(bucket_key)
            if bucket is None:
                continue
            bucket.discard(item_id)
            if not bucket:
                del self.buckets[bucket_key]

    def clear(self):
        self.buckets.clear()


class EnhancedLSHIndex:
    """Multi-probe LSH on binary hashes, optionally unioned with E2LSH on vectors"""

    def __init__(self, config: Optional[EnhancedLSHConfig] = None,
                 rng: Optional[np.random.Generator] = None):
        self.config = config or EnhancedLSHConfig()
        rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        self.multi_probe = MultiProbeLSHIndex(self.config, rng=rng)
        self.e2lsh = E2LSHIndex(self.config, rng=rng)
        self.use_e2lsh = self.config.use_e2lsh
        # Vector each id was inserted into E2LSH with, needed for removal
        self._vectors: Dict[str, np.ndarray] = {}

    def _e2lsh_vector(self, binary_hash: str, vector: Optional[np.ndarray]) -> np.ndarray:
        if vector is not None:
            return np.asarray(vector, dtype=np.float64)
        return self.multi_probe.levels[0].hash_to_vector(binary_hash)

    def insert(self, item_id: str, binary_hash: str, vector: Optional[np.ndarray] = None):
        self.multi_probe.insert(item_id, binary_hash)

        if self.use_e2lsh:
            e2_vector = self._e2lsh_vector(binary_hash, vector)
            self.e2lsh.insert(item_id, e2_vector)
            self._vectors[item_id] = e2_vector

    def query(self, binary_hash: str, vector: Optional[np.ndarray] = None) -> Set[str]:
        candidates = self.multi_probe.query(binary_hash)
        if self.use_e2lsh:
            candidates |= self.e2lsh.query(self._e2lsh_vector(binary_hash, vector))
        return candidates

    def remove(self, item_id: str, binary_hash: str):
        self.multi_probe.remove(item_id, binary_hash)

        e2_vector = self._vectors.pop(item_id, None)
        if e2_vector is not None:
            self.e2lsh.remove(item_id, e2_vector)

    def set_use_e2lsh(self, enabled: bool):
        """Ids inserted while E2LSH was off are only reachable through multi-probe"""
        self.use_e2lsh = enabled

    def clear(self):
        self.multi_probe.clear()
        self.e2lsh.clear()
        self._vectors.clear()

    def __len__(self) -> int:
        return len(self.multi_probe)
