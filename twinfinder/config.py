"""
Configuration constants for twinfinder.

This module contains all configurable settings including:
- Supported image extensions
- Similarity and fingerprint defaults
- Discovery, batch and memory limits
- Progress throttling
"""

# Supported image extensions (closed set, compared lowercase)
IMAGE_EXTENSIONS = {
    # Common formats
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.tiff', '.tif',
    # Apple formats
    '.heic', '.heif',
    # RAW formats
    '.dng', '.cr2', '.nef', '.arw',
}

# Default similarity threshold (0-1, higher = stricter)
DEFAULT_SIMILARITY_THRESHOLD = 0.7

# Folder name skipped during discovery (never applied to a scan root)
DEFAULT_IGNORED_FOLDER_NAME = 'thumb'

# Stop discovering leaf folders after this many
MAX_LEAF_FOLDERS = 2000

# Files processed in one global pass (0 = unlimited)
MAX_BATCH_SIZE = 1000

# Fingerprint geometry: 8x8 grid -> 64 bits
FINGERPRINT_SIZE = 8
FINGERPRINT_BITS = FINGERPRINT_SIZE * FINGERPRINT_SIZE

# Two embeddings at or above this similarity are treated as the same picture
EXACT_MATCH_EPSILON = 0.9995

# Progress is reported every N processed images (or on completion) ...
PROGRESS_EVERY_N_ITEMS = 5
# ... and never more often than this many seconds apart
PROGRESS_MIN_INTERVAL = 0.1

# Pair checks between cancellation polls in the O(n^2) loops
COMPARISONS_PER_CANCEL_CHECK = 250

# Default number of parallel workers for per-image work
DEFAULT_WORKERS = 4

# Memory pressure: stop per-image work when resident memory grows by more
# than this since the scan started
MEMORY_PRESSURE_LIMIT_BYTES = 512 * 1024 * 1024
MEMORY_CHECK_EVERY_N_IMAGES = 50

# Preview thumbnail cache
THUMBNAIL_CACHE_MAX_ITEMS = 200
THUMBNAIL_CACHE_MAX_BYTES = 50 * 1024 * 1024
THUMBNAIL_BUCKETS = (320, 640, 1024, 1600, 2048)

# Side length of the default (pixel based) feature extractor thumbnail
THUMBNAIL_FEATURE_SIZE = 16

# Raise PIL's decompression bomb limit for large photos
MAX_IMAGE_PIXELS = 500_000_000

# User configuration location
import os
CONFIG_DIR = os.path.join(os.path.expanduser('~'), '.twinfinder')
