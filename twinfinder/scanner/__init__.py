"""
Scanner package for twinfinder.

Provides folder discovery, the two similarity engines and result assembly.

Public API:
- discover_leaf_folders: Find folders that directly contain images
- collect_image_files: List the images inside leaf folders
- find_similar_pairs: Fingerprint engine ("Basic Scan")
- find_similar_clusters: Embedding engine ("Enhanced Scan")
- group_pairs_into_results: Group fingerprint pairs by reference
- flatten_results: Flatten results into table rows
- remove_image / remove_folder: Apply deletions to existing results
- has_heif_support: Check if HEIC/HEIF support is available
"""

from __future__ import annotations

from .file_discovery import (
    normalize_path,
    is_image_file,
    directory_contains_images,
    find_leaf_folders,
    discover_leaf_folders,
    list_image_files,
    collect_image_files,
)
from .fingerprint import (
    compute_fingerprint,
    hamming_distance,
    max_distance_for_threshold,
    compare_fingerprints,
    find_similar_pairs,
)
from .embedding import (
    FeatureExtractor,
    similarity_from_distance,
    cluster_feature_vectors,
    find_similar_clusters,
)
from .extractors import ThumbnailFeatureExtractor, OpenClipFeatureExtractor, create_extractor
from .assembler import (
    group_pairs_into_results,
    flatten_results,
    regroup_rows,
    decode_row_id,
    sort_rows,
    remove_image,
    remove_folder,
    cross_folder_counts,
    folder_pairs,
    ordered_folder_pairs,
    folder_display_name,
)
from .progress import CancelToken, ProgressReporter, ScanCancelled

from .dependencies import HAS_HEIF_SUPPORT


def has_heif_support() -> bool:
    """Check if HEIC/HEIF support is available."""
    return HAS_HEIF_SUPPORT


__all__ = [
    # File discovery
    'normalize_path',
    'is_image_file',
    'directory_contains_images',
    'find_leaf_folders',
    'discover_leaf_folders',
    'list_image_files',
    'collect_image_files',
    # Fingerprint engine
    'compute_fingerprint',
    'hamming_distance',
    'max_distance_for_threshold',
    'compare_fingerprints',
    'find_similar_pairs',
    # Embedding engine
    'FeatureExtractor',
    'similarity_from_distance',
    'cluster_feature_vectors',
    'find_similar_clusters',
    'ThumbnailFeatureExtractor',
    'OpenClipFeatureExtractor',
    'create_extractor',
    # Result assembly
    'group_pairs_into_results',
    'flatten_results',
    'regroup_rows',
    'decode_row_id',
    'sort_rows',
    'remove_image',
    'remove_folder',
    'cross_folder_counts',
    'folder_pairs',
    'ordered_folder_pairs',
    'folder_display_name',
    # Progress and cancellation
    'CancelToken',
    'ProgressReporter',
    'ScanCancelled',
    # Feature detection
    'has_heif_support',
]
