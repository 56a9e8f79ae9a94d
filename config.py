# config.py

from dataclasses import dataclass, field, fields, is_dataclass, asdict
from typing import Any, Dict, Optional, Tuple
import logging
import yaml
from pathlib import Path

logger = logging.getLogger(__name__)

FEATURE_LEVELS = ("low", "mid", "high")


def _require(condition: bool, message: str):
    if not condition:
        raise ValueError(message)


@dataclass
class HashOptions:
    """Configuration for perceptual hash computation"""
    size: int = 8
    include_avg: bool = True
    include_diff: bool = True
    include_perceptual: bool = True
    to_grayscale: bool = True
    precise: bool = False
    # Tuned cutovers for the perceptual hash
    precise_min_size: int = 32  # DCT mode only from this grid size up
    block_divisor: int = 4      # block edge = size // block_divisor
    min_block_size: int = 2
    dct_size: int = 8           # low-frequency corner kept by the DCT hash

    def __post_init__(self):
        _require(self.size >= 2, f"size must be >= 2, got {self.size}")
        _require(self.precise_min_size >= 2, "precise_min_size must be >= 2")
        _require(self.block_divisor >= 1, "block_divisor must be >= 1")
        _require(self.min_block_size >= 1, "min_block_size must be >= 1")
        _require(self.dct_size >= 2, "dct_size must be >= 2")


@dataclass
class LSHConfig:
    """Configuration for the banding (sign random projection) LSH index"""
    num_hash_functions: int = 8
    num_buckets: int = 256
    num_tables: int = 4
    num_bits: int = 64
    seed: Optional[int] = None

    def __post_init__(self):
        # Signatures are assembled into a signed 64-bit integer
        _require(1 <= self.num_hash_functions <= 62,
                 f"num_hash_functions must be in [1, 62], got {self.num_hash_functions}")
        _require(self.num_buckets >= 1, "num_buckets must be >= 1")
        _require(self.num_tables >= 1, "num_tables must be >= 1")
        _require(self.num_bits >= 1, "num_bits must be >= 1")


@dataclass
class EnhancedLSHConfig(LSHConfig):
    """Configuration for multi-probe LSH combined with E2LSH"""
    num_probes: int = 3
    use_e2lsh: bool = True
    num_levels: int = 2
    num_perturbations: int = 5
    bucket_width: float = 4.0
    vector_dimension: Optional[int] = None  # E2LSH projection length, None means num_bits

    def __post_init__(self):
        super().__post_init__()
        _require(self.num_probes >= 1, "num_probes must be >= 1")
        _require(self.num_levels >= 1, "num_levels must be >= 1")
        _require(self.num_hash_functions - (self.num_levels - 1) >= 1,
                 "every multi-probe level needs at least one hash function")
        _require(self.num_perturbations >= 0, "num_perturbations must be >= 0")
        _require(self.bucket_width > 0, "bucket_width must be positive")
        _require(self.vector_dimension is None or self.vector_dimension >= 1,
                 "vector_dimension must be >= 1")

    def level_config(self, level: int) -> LSHConfig:
        """Each level trades one hash function for more buckets"""
        return LSHConfig(
            num_hash_functions=self.num_hash_functions - level,
            num_buckets=self.num_buckets * (level + 1),
            num_tables=self.num_tables,
            num_bits=self.num_bits,
        )

    @property
    def e2lsh_dimension(self) -> int:
        return self.vector_dimension or self.num_bits


@dataclass
class HashWeights:
    """Per hash kind weights for the weighted Hamming distance"""
    avg: float = 0.25
    diff: float = 0.35
    perceptual: float = 0.40

    def __post_init__(self):
        for f in fields(self):
            _require(getattr(self, f.name) >= 0, f"hash weight {f.name} must be >= 0")

    def for_kind(self, kind) -> float:
        return getattr(self, getattr(kind, "value", kind))


@dataclass
class AdjustmentWeights:
    """Weights of the brightness/contrast corrected similarity"""
    hash: float = 0.7
    brightness: float = 0.15
    contrast: float = 0.15


@dataclass
class PCAConfig:
    """Configuration for the PCA dimension reducer"""
    target_dimensions: int = 16
    center: bool = True
    normalize: bool = False
    standardize: bool = False
    min_training_vectors: int = 5
    max_iterations: int = 100
    tolerance: float = 1e-6
    seed: Optional[int] = None

    def __post_init__(self):
        _require(self.target_dimensions >= 1, "target_dimensions must be >= 1")
        _require(self.min_training_vectors >= 2, "min_training_vectors must be >= 2")
        _require(self.max_iterations >= 1, "max_iterations must be >= 1")


@dataclass
class SimilarityConfig:
    """Configuration for pairwise comparison in the similarity system"""
    threshold: float = 90.0
    use_lsh: bool = True
    use_dimension_reduction: bool = True
    batch_size: int = 50
    hash_weights: HashWeights = field(default_factory=HashWeights)
    pca: PCAConfig = field(default_factory=PCAConfig)

    def __post_init__(self):
        _require(0 <= self.threshold <= 100, "threshold must be in [0, 100]")
        _require(self.batch_size >= 1, "batch_size must be >= 1")


@dataclass
class FusionWeights:
    """Base weights of the feature levels and of the mid-level internals"""
    low_level_weight: float = 0.30
    mid_level_weight: float = 0.30
    high_level_weight: float = 0.40
    color_weight: float = 0.6
    texture_weight: float = 0.4

    def __post_init__(self):
        for f in fields(self):
            _require(getattr(self, f.name) >= 0, f"fusion weight {f.name} must be >= 0")


@dataclass
class FusionConfig:
    """Configuration for multi-level feature fusion"""
    weights: FusionWeights = field(default_factory=FusionWeights)
    similarity_threshold: float = 90.0
    use_adaptive_weights: bool = True
    used_levels: Tuple[str, ...] = FEATURE_LEVELS

    def __post_init__(self):
        self.used_levels = tuple(self.used_levels)
        unknown = set(self.used_levels) - set(FEATURE_LEVELS)
        _require(not unknown, f"unknown feature levels: {sorted(unknown)}")


@dataclass
class GroupingConfig:
    """Configuration for greedy duplicate grouping"""
    threshold: float = 80.0
    use_quality_adjustment: bool = True
    adjustment_weights: AdjustmentWeights = field(default_factory=AdjustmentWeights)
    use_enhanced_lsh: bool = False
    fit_lsh_bits_to_hashes: bool = True
    show_progress: bool = False

    def __post_init__(self):
        _require(0 <= self.threshold <= 100, "threshold must be in [0, 100]")


@dataclass
class SystemConfig:
    """System-wide configuration"""
    n_workers: int = 4
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"

    hash: HashOptions = field(default_factory=HashOptions)
    lsh: LSHConfig = field(default_factory=LSHConfig)
    enhanced_lsh: EnhancedLSHConfig = field(default_factory=EnhancedLSHConfig)
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    grouping: GroupingConfig = field(default_factory=GroupingConfig)

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        with open(path, 'w') as f:
            yaml.dump(_to_plain(asdict(self)), f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """
        Load configuration from YAML file.

        Values found in the file take precedence over the defaults; a
        missing file yields the defaults.
        """
        if not Path(path).exists():
            return cls()  # Return default config

        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        if not isinstance(config_dict, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return _merge(cls(), config_dict)


def _merge(default: Any, values: Dict[str, Any]) -> Any:
    """Build a new dataclass instance from `default` overridden by `values`"""
    known = {f.name: f for f in fields(default)}
    kwargs = {}

    for name, value in values.items():
        if name not in known:
            logger.warning("Ignoring unknown configuration key: %s", name)
            continue

        current = getattr(default, name)
        if is_dataclass(current) and isinstance(value, dict):
            kwargs[name] = _merge(current, value)
        else:
            kwargs[name] = value

    for name in known:
        kwargs.setdefault(name, getattr(default, name))

    return type(default)(**kwargs)


def _to_plain(value: Any) -> Any:
    """Turn tuples into lists so that yaml.safe_load can read the dump back"""
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value
