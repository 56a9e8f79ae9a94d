# core/models.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional
import numpy as np


class HashKind(str, Enum):
    AVG = "avg"
    DIFF = "diff"
    PERCEPTUAL = "perceptual"


# Order used whenever hashes are concatenated or iterated
HASH_KIND_ORDER = (HashKind.AVG, HashKind.DIFF, HashKind.PERCEPTUAL)


@dataclass(frozen=True)
class HashSet:
    """Hex-encoded hashes of one image; any kind may be absent"""
    avg: Optional[str] = None
    diff: Optional[str] = None
    perceptual: Optional[str] = None

    def get(self, kind: HashKind) -> Optional[str]:
        return getattr(self, HashKind(kind).value)

    def kinds(self) -> List[HashKind]:
        return [kind for kind in HASH_KIND_ORDER if self.get(kind)]

    def shared_kinds(self, other: 'HashSet') -> List[HashKind]:
        return [kind for kind in self.kinds() if other.get(kind)]

    def is_empty(self) -> bool:
        return not self.kinds()

    def __bool__(self) -> bool:
        return not self.is_empty()

    def to_dict(self) -> Dict[str, str]:
        return {kind.value: self.get(kind) for kind in self.kinds()}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'HashSet':
        return cls(**{HashKind(key).value: value for key, value in data.items() if value})


@dataclass(frozen=True)
class QualityMetrics:
    brightness: float
    contrast: float
    sharpness: float
    score: float


@dataclass(frozen=True)
class ReducedFeatureVector:
    """PCA output that remembers the dimension of the vector it came from"""
    values: np.ndarray
    source_dimension: int

    def __len__(self) -> int:
        return len(self.values)


@dataclass
class ImageItem:
    """
    One photo as seen by the similarity engine.

    Everything except the id is optional: items without hashes simply
    never become LSH candidates, items without features skip the feature
    based comparisons.
    """
    id: str
    hashes: HashSet = field(default_factory=HashSet)
    features: Optional[np.ndarray] = None
    reduced_features: Optional[ReducedFeatureVector] = None
    color_histogram: Optional[np.ndarray] = None
    texture_features: Optional[np.ndarray] = None
    quality: Optional[QualityMetrics] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.hashes, dict):
            self.hashes = HashSet.from_dict(self.hashes)
        for name in ('features', 'color_histogram', 'texture_features'):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, np.asarray(value, dtype=np.float64).ravel())

    @property
    def has_features(self) -> bool:
        return self.features is not None and self.features.size > 0


@dataclass(frozen=True)
class SimilarityResult:
    similarity: float
    method: str


@dataclass(frozen=True)
class GroupMember:
    id: str
    similarity: float
    method: str


@dataclass
class SimilarityGroup:
    """A set of near-duplicates. `key_id` is the member kept as representative."""
    key_id: str
    members: List[GroupMember]
    seed_id: str

    @property
    def member_ids(self) -> List[str]:
        return [member.id for member in self.members]

    def __len__(self) -> int:
        return len(self.members)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key_id': self.key_id,
            'seed_id': self.seed_id,
            'members': [
                {'id': m.id, 'similarity': m.similarity, 'method': m.method}
                for m in self.members
            ],
        }


@dataclass
class GroupingResult:
    groups: List[SimilarityGroup] = field(default_factory=list)
    aborted: bool = False

    def __iter__(self) -> Iterator[SimilarityGroup]:
        return iter(self.groups)

    def __len__(self) -> int:
        return len(self.groups)

    def grouped_ids(self) -> List[str]:
        return [member_id for group in self.groups for member_id in group.member_ids]
