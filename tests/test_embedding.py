"""
Unit tests for the embedding engine (Enhanced Scan) and feature extractors.
"""

import pytest

from twinfinder.scanner.embedding import (
    FeatureExtractor,
    choose_reference,
    cluster_feature_vectors,
    find_similar_clusters,
    similarity_from_distance,
)
from twinfinder.scanner.extractors import (
    ThumbnailFeatureExtractor,
    create_extractor,
    euclidean_distance,
)


def _scalar_distance(a, b):
    return abs(a - b)


class TestSimilarityFromDistance:
    """Test the distance to similarity mapping."""

    def test_identical(self):
        assert similarity_from_distance(0.0) == 1.0

    def test_decreasing(self):
        assert similarity_from_distance(0.1) > similarity_from_distance(0.5) > similarity_from_distance(5)

    def test_negative_clamped(self):
        assert similarity_from_distance(-3) == 1.0


class TestClusterFeatureVectors:
    """Test single-pass clustering."""

    def test_reference_tie_break(self):
        """Near-identical pair decides the reference; others get their best score."""
        paths = ['/p/y.png', '/p/z.png', '/p/x.png']
        vectors = [0.0001, 0.15, 0.0]

        results = cluster_feature_vectors(paths, vectors, 0.8, _scalar_distance)

        assert len(results) == 1
        result = results[0]
        assert result.reference == '/p/x.png'
        assert result.similars[0].path == '/p/x.png'
        assert result.similars[0].similarity == 1.0
        scores = {s.path: s.similarity for s in result.similars}
        assert scores['/p/y.png'] == 1.0
        assert scores['/p/z.png'] == pytest.approx(max(1 / 1.15, 1 / 1.1499))

    def test_reference_falls_back_to_smallest_path(self):
        paths = ['/p/c.png', '/p/a.png', '/p/b.png']
        vectors = [0.0, 0.1, 0.2]
        results = cluster_feature_vectors(paths, vectors, 0.8, _scalar_distance)
        assert results[0].reference == '/p/a.png'

    def test_star_shaped_clusters(self):
        """Members join through the seed even when they are far from each other."""
        paths = ['/s/seed.png', '/s/left.png', '/s/right.png', '/s/far.png']
        vectors = [0.0, -0.2, 0.2, 10.0]

        results = cluster_feature_vectors(paths, vectors, 0.8, _scalar_distance)

        assert len(results) == 1
        assert sorted(results[0].member_paths) == sorted(paths[:3])
        # left and right are below threshold relative to each other
        assert similarity_from_distance(0.4) < 0.8

    def test_singletons_dropped(self):
        results = cluster_feature_vectors(['/a.png', '/b.png'], [0.0, 50.0], 0.9, _scalar_distance)
        assert results == []

    def test_each_image_in_one_cluster(self):
        paths = [f'/g/{i}.png' for i in range(6)]
        vectors = [0.0, 0.01, 5.0, 5.01, 0.02, 5.02]
        results = cluster_feature_vectors(paths, vectors, 0.9, _scalar_distance)

        members = [p for r in results for p in r.member_paths]
        assert len(members) == len(set(members)) == 6
        assert len(results) == 2

    def test_higher_threshold_never_adds_members(self):
        paths = ['/a.png', '/b.png', '/c.png']
        vectors = [0.0, 0.05, 0.3]
        loose = cluster_feature_vectors(paths, vectors, 0.7, _scalar_distance)
        strict = cluster_feature_vectors(paths, vectors, 0.99, _scalar_distance)
        loose_members = {p for r in loose for p in r.member_paths}
        strict_members = {p for r in strict for p in r.member_paths}
        assert strict_members <= loose_members

    def test_scores_sorted_after_anchor(self):
        paths = ['/a.png', '/b.png', '/c.png', '/d.png']
        vectors = [0.0, 0.2, 0.05, 0.1]
        result = cluster_feature_vectors(paths, vectors, 0.8, _scalar_distance)[0]
        tail = [s.similarity for s in result.similars[1:]]
        assert tail == sorted(tail, reverse=True)

    def test_distance_failure_counts_as_dissimilar(self):
        def broken(a, b):
            raise RuntimeError("bad vector")

        assert cluster_feature_vectors(['/a.png', '/b.png'], [1, 1], 0.5, broken) == []

    def test_misaligned_inputs(self):
        with pytest.raises(AssertionError):
            cluster_feature_vectors(['/a.png'], [0.0, 1.0], 0.5, _scalar_distance)

    def test_cancelled_before_start(self):
        results = cluster_feature_vectors(['/a.png', '/b.png'], [0.0, 0.0], 0.5, _scalar_distance,
                                          should_cancel=lambda: True)
        assert results == []


class TestChooseReference:
    """Test reference selection inside a cluster."""

    def test_first_exact_pair_wins(self):
        paths = ['/z.png', '/m.png', '/a.png']
        sims = {(0, 1): 1.0, (0, 2): 0.9, (1, 2): 1.0}

        def sim(i, j):
            return sims[(min(i, j), max(i, j))]

        assert choose_reference([0, 1, 2], paths, sim) == 1


class TestFindSimilarClusters:
    """Test the embedding pipeline with injected extractors."""

    def test_fake_extractor(self, fake_extractor_factory):
        extractor = fake_extractor_factory({'a.png': 0.0, 'b.png': 0.0, 'c.png': 9.0})
        result = find_similar_clusters([['/x/a.png', '/y/b.png', '/x/c.png', '/x/missing.png']],
                                       0.9, extractor, max_workers=2)

        assert result.images_processed == 3
        assert len(result.results) == 1
        assert result.results[0].reference == '/x/a.png'
        assert isinstance(extractor, FeatureExtractor)

    def test_single_worker_for_unsafe_extractor(self, fake_extractor_factory):
        import threading

        threads = set()
        extractor = fake_extractor_factory(
            {'a.png': 0.0, 'b.png': 0.0},
            on_extract=lambda path: threads.add(threading.current_thread().name),
        )
        extractor.thread_safe = False
        find_similar_clusters([['/a.png', '/b.png'] * 10], 0.9, extractor, max_workers=8)
        assert len(threads) == 1

    def test_thumbnail_extractor_end_to_end(self, photo_tree):
        batch = [photo_tree['sunset'], photo_tree['horizon'], photo_tree['sunset_copy']]
        result = find_similar_clusters([batch], 0.95, ThumbnailFeatureExtractor())

        assert len(result.results) == 1
        cluster = result.results[0]
        assert sorted(cluster.member_paths) == sorted([photo_tree['sunset'], photo_tree['sunset_copy']])
        assert all(s.similarity == 1.0 for s in cluster.similars)

    def test_cancelled(self, fake_extractor_factory):
        extractor = fake_extractor_factory({'a.png': 0.0, 'b.png': 0.0})
        result = find_similar_clusters([['/a.png', '/b.png']], 0.9, extractor, should_cancel=lambda: True)
        assert result.cancelled
        assert result.results == []


class TestExtractors:
    """Test built-in extractors."""

    def test_thumbnail_vector_shape(self, photo_tree):
        extractor = ThumbnailFeatureExtractor(size=8)
        vector = extractor.extract(photo_tree['sunset'])
        assert vector.shape == (8 * 8 * 3,)
        assert 0.0 <= vector.min() <= vector.max() <= 1.0

    def test_thumbnail_distance(self, photo_tree):
        extractor = ThumbnailFeatureExtractor()
        a = extractor.extract(photo_tree['sunset'])
        b = extractor.extract(photo_tree['sunset_copy'])
        c = extractor.extract(photo_tree['horizon'])
        assert extractor.distance(a, b) == 0.0
        assert extractor.distance(a, c) > 0.1
        assert extractor.distance(a, c) == pytest.approx(extractor.distance(c, a))

    def test_thumbnail_unreadable(self, temp_dir):
        bad = temp_dir / "bad.jpg"
        bad.write_text("nope")
        assert ThumbnailFeatureExtractor().extract(bad) is None

    def test_euclidean_distance(self):
        assert euclidean_distance([0, 0], [3, 4]) == 5.0

    def test_create_extractor(self):
        assert isinstance(create_extractor('thumbnail'), ThumbnailFeatureExtractor)
        with pytest.raises(ValueError):
            create_extractor('sift')
