"""
twinfinder
==========
Finds duplicate and visually similar images across folder trees.

Features:
- Leaf-folder discovery with an ignored folder name and a folder cap
- Basic Scan: 64-bit block fingerprints compared by Hamming distance
- Enhanced Scan: feature-vector clustering (pixel thumbnails or CLIP)
- Per-folder or global comparison with cross-folder relationship summaries
- Background scans with throttled progress and cooperative cancellation
- CLI, JSON API server and CSV export
"""

__version__ = "1.0.0"

from .models import (
    ScanMode,
    ScanConfig,
    ComparisonResult,
    SimilarImage,
    TableRow,
    ScanOutcome,
)
from .config import IMAGE_EXTENSIONS, DEFAULT_SIMILARITY_THRESHOLD
from .scanner import (
    discover_leaf_folders,
    find_similar_pairs,
    find_similar_clusters,
    flatten_results,
    group_pairs_into_results,
    ordered_folder_pairs,
)
from .api.orchestrator import run_scan, ScanCoordinator

__all__ = [
    "ScanMode",
    "ScanConfig",
    "ComparisonResult",
    "SimilarImage",
    "TableRow",
    "ScanOutcome",
    "IMAGE_EXTENSIONS",
    "DEFAULT_SIMILARITY_THRESHOLD",
    "discover_leaf_folders",
    "find_similar_pairs",
    "find_similar_clusters",
    "flatten_results",
    "group_pairs_into_results",
    "ordered_folder_pairs",
    "run_scan",
    "ScanCoordinator",
]
