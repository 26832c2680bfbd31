"""
Feature extractors for the embedding engine.

- ThumbnailFeatureExtractor: small color thumbnail as a vector (Pillow + numpy)
- OpenClipFeatureExtractor: CLIP image embeddings (optional 'clip' extra)

Any object with ``extract(path)`` and ``distance(a, b)`` can be used instead.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..config import THUMBNAIL_FEATURE_SIZE
from .dependencies import Image, ImageOps, np

_logger = logging.getLogger(__name__)


def euclidean_distance(a, b) -> float:
    return float(np.linalg.norm(np.asarray(a) - np.asarray(b)))


class ThumbnailFeatureExtractor:
    """
    Pixel-based feature vectors.

    Each image becomes a ``size`` x ``size`` RGB thumbnail scaled to 0-1.
    The distance is the root-mean-square difference between thumbnails, so
    identical pictures are at 0 and a uniform shift of 10% brightness is
    at roughly 0.1.
    """

    thread_safe = True

    def __init__(self, size: int = THUMBNAIL_FEATURE_SIZE):
        self.size = size

    def extract(self, path: str | Path) -> Optional['np.ndarray']:
        try:
            with Image.open(path) as img:
                img.draft('RGB', (self.size * 8, self.size * 8))
                img.load()
                oriented = ImageOps.exif_transpose(img).convert('RGB')
                thumb = oriented.resize((self.size, self.size), Image.Resampling.LANCZOS)
                return np.asarray(thumb, dtype=np.float32).flatten() / 255.0
        except Exception as e:
            _logger.debug(f"Feature extraction failed for {path}: {e}")
            return None

    def distance(self, a, b) -> float:
        diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
        return float(np.sqrt(np.mean(diff * diff)))


class OpenClipFeatureExtractor:
    """
    CLIP image embeddings via open_clip.

    Embeddings are L2-normalised, so the Euclidean distance lies in [0, 2].
    Requires the 'clip' extra (``pip install twinfinder[clip]``).
    """

    thread_safe = False

    def __init__(
        self,
        model_name: str = 'ViT-B-32',
        pretrained: str = 'laion2b_s34b_b79k',
        device: Optional[str] = None,
    ):
        import open_clip
        import torch

        self._torch = torch
        self.device = device or ('cuda' if torch.cuda.is_available() else 'cpu')
        _logger.info(f"Loading CLIP model {model_name} ({pretrained}) on {self.device}")
        self.model, _, self.preprocess = open_clip.create_model_and_transforms(
            model_name,
            pretrained=pretrained,
        )
        self.model.to(self.device)
        self.model.eval()

    def extract(self, path: str | Path) -> Optional['np.ndarray']:
        torch = self._torch
        try:
            with Image.open(path) as img:
                image = ImageOps.exif_transpose(img).convert('RGB')
            batch = self.preprocess(image).unsqueeze(0).to(self.device)
            with torch.no_grad():
                features = self.model.encode_image(batch)
                features = features / features.norm(dim=-1, keepdim=True)
            return features[0].cpu().numpy().astype(np.float32)
        except Exception as e:
            _logger.debug(f"CLIP feature extraction failed for {path}: {e}")
            return None

    def distance(self, a, b) -> float:
        return euclidean_distance(a, b)


def create_extractor(name: str = 'thumbnail', **kwargs):
    """
    Build an extractor by name ('thumbnail' or 'clip').

    Raises:
        ValueError: If the name is unknown
    """
    key = (name or 'thumbnail').strip().lower()
    if key == 'thumbnail':
        return ThumbnailFeatureExtractor(**kwargs)
    if key == 'clip':
        return OpenClipFeatureExtractor(**kwargs)
    raise ValueError(f"Unknown feature extractor: {name!r}")


__all__ = [
    'ThumbnailFeatureExtractor',
    'OpenClipFeatureExtractor',
    'create_extractor',
    'euclidean_distance',
]
