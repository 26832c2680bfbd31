"""
Unit tests for the fingerprint engine (Basic Scan).
"""

import pytest
from PIL import Image

from twinfinder.scanner.fingerprint import (
    block_hash,
    compare_fingerprints,
    compute_fingerprint,
    find_similar_pairs,
    fingerprint_value,
    hamming_distance,
    max_distance_for_threshold,
    similarity_for_distance,
)
from twinfinder.scanner.progress import CancelToken, ProgressReporter


class TestComputeFingerprint:
    """Test fingerprint computation."""

    def test_identical_files_same_fingerprint(self, photo_tree):
        a = compute_fingerprint(photo_tree['sunset'])
        b = compute_fingerprint(photo_tree['sunset_copy'])
        assert a is not None
        assert a == b

    def test_deterministic(self, photo_tree):
        assert compute_fingerprint(photo_tree['sunset']) == compute_fingerprint(photo_tree['sunset'])

    def test_fits_in_64_bits(self, photo_tree):
        value = compute_fingerprint(photo_tree['horizon'])
        assert 0 <= value < 2 ** 64

    def test_vertical_gradient_bits(self, gradient_image):
        """Dark top half clears bits 0-31, bright bottom half sets bits 32-63."""
        value = fingerprint_value(block_hash(gradient_image))
        assert value == 0xFFFFFFFF00000000

    def test_uniform_image_sets_every_bit(self):
        value = fingerprint_value(block_hash(Image.new('RGB', (50, 50), color='gray')))
        assert value == 2 ** 64 - 1

    def test_unreadable_file(self, temp_dir):
        bad = temp_dir / "broken.png"
        bad.write_text("not an image")
        assert compute_fingerprint(bad) is None
        assert compute_fingerprint(temp_dir / "missing.png") is None


class TestThresholds:
    """Test threshold to distance conversion."""

    @pytest.mark.parametrize("threshold,expected", [
        (1.0, 0),
        (0.9, 6),
        (0.7, 19),
        (0.0, 64),
    ])
    def test_max_distance(self, threshold, expected):
        assert max_distance_for_threshold(threshold) == expected

    def test_similarity_for_distance(self):
        assert similarity_for_distance(0) == 1.0
        assert similarity_for_distance(64) == 0.0
        assert similarity_for_distance(16) == 0.75

    def test_hamming_distance(self):
        assert hamming_distance(0b1011, 0b0001) == 2
        assert hamming_distance(2 ** 64 - 1, 0) == 64


class TestCompareFingerprints:
    """Test exhaustive pairwise comparison."""

    def test_exact_match(self):
        pairs = compare_fingerprints(['/a/x.png', '/b/x.png'], [0xABCD, 0xABCD], 6)
        assert len(pairs) == 1
        assert pairs[0].reference == '/a/x.png'
        assert pairs[0].candidate == '/b/x.png'
        assert pairs[0].similarity == 1.0

    def test_below_threshold(self):
        """40 differing bits are far beyond the distance allowed at 0.9."""
        far = (1 << 40) - 1
        assert compare_fingerprints(['/a.png', '/b.png'], [0, far], max_distance_for_threshold(0.9)) == []

    def test_distance_bound_inclusive(self):
        six_bits = 0b111111
        pairs = compare_fingerprints(['/a.png', '/b.png'], [0, six_bits], 6)
        assert len(pairs) == 1
        assert pairs[0].similarity == pytest.approx(1 - 6 / 64)
        assert compare_fingerprints(['/a.png', '/b.png'], [0, six_bits], 5) == []

    def test_pairs_in_input_order(self):
        paths = ['/1.png', '/2.png', '/3.png']
        pairs = compare_fingerprints(paths, [7, 7, 7], 0)
        assert [(p.reference, p.candidate) for p in pairs] == [
            ('/1.png', '/2.png'), ('/1.png', '/3.png'), ('/2.png', '/3.png'),
        ]

    def test_high_bit_values(self):
        top = 1 << 63
        pairs = compare_fingerprints(['/a.png', '/b.png'], [top, top | 1], 1)
        assert len(pairs) == 1
        assert pairs[0].similarity == pytest.approx(63 / 64)

    def test_fewer_than_two(self):
        assert compare_fingerprints(['/a.png'], [1], 64) == []

    def test_misaligned_inputs(self):
        with pytest.raises(AssertionError):
            compare_fingerprints(['/a.png', '/b.png'], [1], 64)

    def test_cancelled_returns_nothing_new(self):
        assert compare_fingerprints(['/a.png', '/b.png'], [1, 1], 0, should_cancel=lambda: True) == []


class TestFindSimilarPairs:
    """Test the fingerprint pipeline over batches."""

    def test_cross_folder_duplicate(self, photo_tree):
        batch = [photo_tree['sunset'], photo_tree['horizon'], photo_tree['sunset_copy']]
        result = find_similar_pairs([batch], 0.9, max_workers=2)

        assert not result.cancelled
        assert result.images_processed == 3
        assert len(result.pairs) == 1
        pair = result.pairs[0]
        assert (pair.reference, pair.candidate) == (photo_tree['sunset'], photo_tree['sunset_copy'])
        assert pair.similarity == 1.0

    def test_batches_pair_separately(self, photo_tree):
        batches = [[photo_tree['sunset']], [photo_tree['sunset_copy'], photo_tree['horizon']]]
        result = find_similar_pairs(batches, 0.9)
        assert result.pairs == []
        assert result.images_processed == 3

    def test_unreadable_images_dropped(self, photo_tree, temp_dir):
        bad = temp_dir / "bad.png"
        bad.write_text("nope")
        result = find_similar_pairs([[photo_tree['sunset'], str(bad), photo_tree['sunset_copy']]], 0.9)
        assert result.images_processed == 2
        assert len(result.pairs) == 1

    def test_lower_threshold_finds_more(self, photo_tree):
        batch = [photo_tree['sunset'], photo_tree['horizon'], photo_tree['sunset_copy']]
        strict = find_similar_pairs([batch], 0.9)
        loose = find_similar_pairs([batch], 0.0)
        assert len(loose.pairs) == 3
        assert {(p.reference, p.candidate) for p in strict.pairs} <= \
               {(p.reference, p.candidate) for p in loose.pairs}
        # Sorted by descending similarity
        assert [p.similarity for p in loose.pairs] == sorted((p.similarity for p in loose.pairs), reverse=True)

    def test_progress_advances(self, photo_tree):
        progress = ProgressReporter(None, total=3)
        find_similar_pairs([[photo_tree['sunset'], photo_tree['sunset_copy'], photo_tree['horizon']]],
                           0.9, progress=progress)
        assert progress.processed == 3

    def test_cancelled(self, photo_tree):
        token = CancelToken()
        token.cancel()
        result = find_similar_pairs([[photo_tree['sunset'], photo_tree['sunset_copy']]], 0.9,
                                    should_cancel=token)
        assert result.cancelled
        assert result.pairs == []

    def test_memory_pressure_skips_later_batches(self, photo_tree):
        class AlwaysUnderPressure:
            def check(self):
                return True

        batches = [[photo_tree['sunset'], photo_tree['sunset_copy']], [photo_tree['horizon']]]
        result = find_similar_pairs(batches, 0.9, memory_monitor=AlwaysUnderPressure())
        assert result.memory_limited
        assert result.images_processed == 2
        assert len(result.pairs) == 1
