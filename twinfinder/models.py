"""
Data models for twinfinder.

Contains the scan configuration, the transient comparison pairs produced by
the engines, and the hierarchical / flattened result views handed to callers.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional
import os
import uuid

from .config import (
    DEFAULT_SIMILARITY_THRESHOLD,
    DEFAULT_IGNORED_FOLDER_NAME,
    DEFAULT_WORKERS,
    MAX_BATCH_SIZE,
    MAX_LEAF_FOLDERS,
)


ROW_ID_SEPARATOR = "::"


def parent_folder(path: str) -> str:
    """Return the directory containing ``path``."""
    return os.path.dirname(path)


class ScanMode(str, Enum):
    """
    Similarity pipeline used for a scan.

    FINGERPRINT ("Basic Scan") compares 64-bit block fingerprints.
    EMBEDDING ("Enhanced Scan") clusters feature vectors from an extractor.
    """
    FINGERPRINT = 'basic'
    EMBEDDING = 'enhanced'

    @property
    def label(self) -> str:
        return 'Basic Scan' if self is ScanMode.FINGERPRINT else 'Enhanced Scan'

    @classmethod
    def parse(cls, value) -> 'ScanMode':
        """Accept enum members, values ('basic'), aliases ('fingerprint') or labels."""
        if isinstance(value, ScanMode):
            return value
        text = str(value).strip().lower()
        aliases = {
            'basic': cls.FINGERPRINT,
            'basic scan': cls.FINGERPRINT,
            'fingerprint': cls.FINGERPRINT,
            'perceptual': cls.FINGERPRINT,
            'enhanced': cls.EMBEDDING,
            'enhanced scan': cls.EMBEDDING,
            'embedding': cls.EMBEDDING,
            'deep': cls.EMBEDDING,
        }
        if text not in aliases:
            raise ValueError(f"Unknown scan mode: {value!r}")
        return aliases[text]


@dataclass(frozen=True)
class ScanConfig:
    """
    Immutable snapshot of the settings for one scan.

    Attributes:
        similarity_threshold: Minimum similarity (0-1) for two images to match
        mode: Which similarity pipeline to run
        top_level_only: Only pair images living in the same leaf folder
        ignored_folder_name: Folder name skipped below each scan root
        max_leaf_folders: Discovery stops after this many leaf folders
        max_batch_size: Files processed in one global pass (0 = unlimited)
        workers: Worker threads for per-image work
    """
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    mode: ScanMode = ScanMode.FINGERPRINT
    top_level_only: bool = False
    ignored_folder_name: str = DEFAULT_IGNORED_FOLDER_NAME
    max_leaf_folders: int = MAX_LEAF_FOLDERS
    max_batch_size: int = MAX_BATCH_SIZE
    workers: int = DEFAULT_WORKERS

    @property
    def normalized_ignored_name(self) -> str:
        """Ignored folder name as compared against directory names."""
        return (self.ignored_folder_name or '').strip().lower()

    def validated(self) -> 'ScanConfig':
        """
        Return this config if every field is in range.

        Raises:
            ValueError: If the threshold or a limit is out of range
        """
        if not 0.0 <= float(self.similarity_threshold) <= 1.0:
            raise ValueError(
                f"similarity_threshold must be between 0 and 1, got {self.similarity_threshold}"
            )
        if self.max_leaf_folders < 1:
            raise ValueError("max_leaf_folders must be at least 1")
        if self.max_batch_size < 0:
            raise ValueError("max_batch_size cannot be negative")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data['mode'] = self.mode.value
        return data


@dataclass(frozen=True)
class ComparisonPair:
    """A candidate matched against a reference during pairwise comparison."""
    reference: str
    candidate: str
    similarity: float


@dataclass(frozen=True)
class SimilarImage:
    """One entry of a result's ranked list."""
    path: str
    similarity: float


@dataclass
class ComparisonResult:
    """
    A reference image and the images found similar to it.

    Attributes:
        reference: Path of the reference image
        similars: Entries sorted by descending similarity. Results produced by
            the embedding pipeline start with the reference itself at 1.0.
        id: Unique identifier for this result
    """
    reference: str
    similars: list = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def best_similarity(self) -> float:
        """Similarity of the first (best) entry, 0 when empty."""
        return self.similars[0].similarity if self.similars else 0.0

    @property
    def matches(self) -> list:
        """Entries other than the reference anchor."""
        return [s for s in self.similars if s.path != self.reference]

    @property
    def member_paths(self) -> list[str]:
        """Reference followed by every matched path."""
        return [self.reference] + [s.path for s in self.matches]

    def without(self, path: str) -> Optional['ComparisonResult']:
        """
        Return this result with ``path`` dropped.

        Returns None when the reference itself was dropped or no entry other
        than the reference remains. Returns ``self`` if ``path`` is absent.
        """
        if path == self.reference:
            return None
        remaining = [s for s in self.similars if s.path != path]
        if not any(s.path != self.reference for s in remaining):
            return None
        if len(remaining) == len(self.similars):
            return self
        return ComparisonResult(reference=self.reference, similars=remaining, id=self.id)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'reference': self.reference,
            'similars': [
                {'path': s.path, 'similarity': round(s.similarity, 6)}
                for s in self.similars
            ],
        }


@dataclass(frozen=True)
class TableRow:
    """Flattened (reference, similar, percent) view of one match."""
    reference: str
    similar: str
    percent: float

    @property
    def id(self) -> str:
        """Stable identity derived only from the two paths."""
        return f"{self.reference}{ROW_ID_SEPARATOR}{self.similar}"

    @property
    def reference_folder(self) -> str:
        return parent_folder(self.reference)

    @property
    def similar_folder(self) -> str:
        return parent_folder(self.similar)

    @property
    def is_cross_folder(self) -> bool:
        """True when the two images live in different parent directories."""
        return self.reference_folder != self.similar_folder

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'reference': self.reference,
            'similar': self.similar,
            'percent': round(self.percent, 6),
            'cross_folder': self.is_cross_folder,
            'reference_folder': self.reference_folder,
            'similar_folder': self.similar_folder,
        }


@dataclass
class DiscoveryResult:
    """
    Leaf folders found under a set of roots.

    Attributes:
        leaf_folders: Normalized leaf folder paths in discovery order
        truncated: Discovery stopped at the leaf folder cap
        cancelled: Discovery was cancelled before finishing
    """
    leaf_folders: list = field(default_factory=list)
    truncated: bool = False
    cancelled: bool = False


@dataclass
class ScanOutcome:
    """
    Terminal value of one scan.

    Attributes:
        results: Hierarchical results (empty when cancelled)
        rows: Flattened rows sorted by descending percent
        cancelled: Scan was cancelled; results are empty
        warnings: Soft warnings (truncation, memory pressure, batch cap)
        images_found: Image files collected for the scan
        images_processed: Images that produced a fingerprint / feature vector
        elapsed_seconds: Wall-clock duration
        error: Message of an unexpected failure, None on success
    """
    results: list = field(default_factory=list)
    rows: list = field(default_factory=list)
    cancelled: bool = False
    warnings: list = field(default_factory=list)
    images_found: int = 0
    images_processed: int = 0
    elapsed_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def images_skipped(self) -> int:
        return max(0, self.images_found - self.images_processed)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'results': [r.to_dict() for r in self.results],
            'row_count': len(self.rows),
            'cancelled': self.cancelled,
            'warnings': list(self.warnings),
            'images_found': self.images_found,
            'images_processed': self.images_processed,
            'images_skipped': self.images_skipped,
            'elapsed_seconds': round(self.elapsed_seconds, 3),
            'error': self.error,
        }
