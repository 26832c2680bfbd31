"""
Tests for scan orchestration: run_scan, ScanOrchestrator and ScanCoordinator.
"""

import threading

import pytest

from twinfinder.api.orchestrator import (
    ScanCoordinator,
    ScanInProgressError,
    ScanOrchestrator,
    run_scan,
    summarize_outcome,
)
from twinfinder.models import ScanConfig, ScanMode, ScanOutcome
from twinfinder.resources import MemoryMonitor
from twinfinder.scanner.progress import CancelToken
from twinfinder.state import ScanState


def _assert_progress_contract(values):
    assert values, "no progress reported"
    assert values[-1] == 1.0
    assert values.count(1.0) == 1
    assert values == sorted(values)


class TestRunScan:
    """Test the synchronous scan pipeline."""

    def test_basic_scan_finds_cross_folder_duplicate(self, photo_tree):
        values = []
        outcome = run_scan([photo_tree['root']], ScanConfig(similarity_threshold=0.9),
                           on_progress=values.append)

        assert not outcome.cancelled
        assert outcome.images_found == 3
        assert outcome.images_processed == 3
        assert len(outcome.results) == 1
        assert len(outcome.rows) == 1
        row = outcome.rows[0]
        assert {row.reference, row.similar} == {photo_tree['sunset'], photo_tree['sunset_copy']}
        assert row.percent == 1.0
        assert row.is_cross_folder
        _assert_progress_contract(values)

    def test_top_level_only_keeps_folders_apart(self, photo_tree):
        outcome = run_scan([photo_tree['root']],
                           ScanConfig(similarity_threshold=0.9, top_level_only=True))
        assert outcome.images_found == 3
        assert outcome.results == []

    def test_enhanced_scan(self, photo_tree):
        outcome = run_scan([photo_tree['root']],
                           ScanConfig(similarity_threshold=0.95, mode=ScanMode.EMBEDDING))

        assert len(outcome.results) == 1
        result = outcome.results[0]
        assert result.similars[0].path == result.reference
        # The anchor never becomes a row
        assert len(outcome.rows) == 1
        assert outcome.rows[0].reference == result.reference

    def test_injected_extractor(self, photo_tree, fake_extractor_factory):
        extractor = fake_extractor_factory({'sunset.png': 1.0, 'horizon.png': 1.0, 'sunset_copy.png': 7.0})
        outcome = run_scan([photo_tree['root']],
                           ScanConfig(similarity_threshold=0.9, mode=ScanMode.EMBEDDING),
                           extractor=extractor)
        assert len(outcome.results) == 1
        assert sorted(outcome.results[0].member_paths) == sorted([photo_tree['horizon'], photo_tree['sunset']])

    def test_pre_discovered_leaf_folders(self, photo_tree):
        outcome = run_scan([], ScanConfig(similarity_threshold=0.9), leaf_folders=[photo_tree['beta']])
        assert outcome.images_found == 2
        assert outcome.results == []

    def test_no_images(self, temp_dir):
        values = []
        outcome = run_scan([temp_dir], on_progress=values.append)
        assert outcome.images_found == 0
        assert outcome.results == []
        assert values == [1.0]

    def test_batch_cap_warning(self, photo_tree):
        outcome = run_scan([photo_tree['root']], ScanConfig(similarity_threshold=0.9, max_batch_size=2))
        assert outcome.images_found == 2
        assert any('Limited processing to 2 of 3 files' in w for w in outcome.warnings)

    def test_folder_cap_warning(self, photo_tree):
        outcome = run_scan([photo_tree['root']], ScanConfig(max_leaf_folders=1))
        assert any('Discovery limited' in w for w in outcome.warnings)

    def test_invalid_config(self, photo_tree):
        with pytest.raises(ValueError):
            run_scan([photo_tree['root']], ScanConfig(similarity_threshold=2.0))

    def test_memory_held_before_scan_is_not_pressure(self, photo_tree):
        """A large resident model loaded before the scan must not empty it."""
        resident = 600 * 1024 * 1024
        monitor = MemoryMonitor(limit_bytes=512 * 1024 * 1024, rss_reader=lambda: resident)
        outcome = run_scan([photo_tree['root']],
                           ScanConfig(similarity_threshold=0.95, mode=ScanMode.EMBEDDING),
                           memory_monitor=monitor)

        assert monitor.baseline_bytes == resident
        assert outcome.images_processed == 3
        assert len(outcome.results) == 1
        assert outcome.warnings == []

    def test_first_chunk_processed_under_pressure(self, photo_tree):
        class AlwaysUnderPressure:
            def begin(self):
                pass

            def check(self):
                return True

        outcome = run_scan([photo_tree['root']], ScanConfig(similarity_threshold=0.9),
                           memory_monitor=AlwaysUnderPressure())
        assert outcome.images_processed == 3
        assert len(outcome.results) == 1
        assert outcome.warnings == []


class TestRunScanCancellation:
    """Test cancellation at every stage."""

    def test_cancelled_before_start(self, photo_tree):
        values = []
        outcome = run_scan([photo_tree['root']], on_progress=values.append, should_cancel=lambda: True)
        assert outcome.cancelled
        assert outcome.results == [] and outcome.rows == []
        assert values == [1.0]

    def test_cancelled_mid_scan(self, photo_tree, fake_extractor_factory):
        token = CancelToken()
        extractor = fake_extractor_factory(
            {'sunset.png': 0.0, 'horizon.png': 0.0, 'sunset_copy.png': 0.0},
            on_extract=lambda path: token.cancel(),
        )
        values = []
        outcome = run_scan(
            [photo_tree['root']],
            ScanConfig(similarity_threshold=0.5, mode=ScanMode.EMBEDDING, workers=1),
            on_progress=values.append,
            should_cancel=token,
            extractor=extractor,
        )
        assert outcome.cancelled
        assert outcome.results == []
        assert outcome.rows == []
        _assert_progress_contract(values)


class TestSummarizeOutcome:
    """Test one-line summaries."""

    def test_messages(self):
        config = ScanConfig(similarity_threshold=0.9)
        assert summarize_outcome(ScanOutcome(cancelled=True), config) == "Scan cancelled by user"
        assert summarize_outcome(ScanOutcome(), config) == "No images found in the selected folders"
        assert 'No similar images found at 90.0%' in summarize_outcome(ScanOutcome(images_found=3), config)
        assert summarize_outcome(ScanOutcome(error='disk gone'), config) == "Error: disk gone"


class TestScanOrchestrator:
    """Test ScanOrchestrator against a ScanState."""

    def test_commits_results(self, photo_tree):
        state = ScanState()
        state.begin('scanning')
        outcome = ScanOrchestrator(state, [photo_tree['root']], ScanConfig(similarity_threshold=0.9)).run()

        assert state.status == 'complete'
        assert state.progress == 1.0
        assert len(state.results) == len(outcome.results) == 1
        assert 'Found 1 similar pairs' in state.message

    def test_failure_recorded(self, photo_tree):
        class BrokenMonitor:
            def begin(self):
                raise RuntimeError("sensor offline")

            def check(self):
                return False

        state = ScanState()
        outcome = ScanOrchestrator(
            state, [photo_tree['root']], ScanConfig(),
            memory_monitor=BrokenMonitor(),
        ).run()

        assert outcome.error == "sensor offline"
        assert outcome.results == []
        assert state.status == 'error'
        assert state.message == "Error: sensor offline"

    def test_cancel_keeps_previous_results(self, photo_tree):
        state = ScanState()
        ScanOrchestrator(state, [photo_tree['root']], ScanConfig(similarity_threshold=0.9)).run()
        previous = list(state.results)

        token = CancelToken()
        token.cancel()
        ScanOrchestrator(state, [photo_tree['root']], ScanConfig(), cancel_token=token).run()
        assert state.status == 'cancelled'
        assert state.results == previous


class TestScanCoordinator:
    """Test background scans and discovery on the coordinator worker."""

    def test_start_scan(self, photo_tree):
        coordinator = ScanCoordinator(ScanConfig(similarity_threshold=0.9))
        try:
            outcome = coordinator.start_scan(roots=[photo_tree['root']]).result(timeout=30)
            assert len(outcome.rows) == 1
            status = coordinator.scan_state.to_status_dict()
            assert status['status'] == 'complete'
            assert status['row_count'] == 1
            assert status['settings']['similarity_threshold'] == 0.9
        finally:
            coordinator.shutdown()

    def test_scan_uses_selection(self, photo_tree):
        coordinator = ScanCoordinator(ScanConfig(similarity_threshold=0.9))
        try:
            coordinator.add_roots([photo_tree['root']]).result(timeout=30)
            assert coordinator.selection.leaf_folders == [photo_tree['alpha'], photo_tree['beta']]

            coordinator.exclude_folder(photo_tree['alpha'])
            outcome = coordinator.start_scan().result(timeout=30)
            assert outcome.images_found == 2
            assert outcome.results == []
        finally:
            coordinator.shutdown()

    def test_cancel_and_in_progress(self, photo_tree, fake_extractor_factory):
        release = threading.Event()
        extractor = fake_extractor_factory(
            {'sunset.png': 0.0, 'horizon.png': 0.0, 'sunset_copy.png': 0.0},
            on_extract=lambda path: release.wait(timeout=10),
        )
        coordinator = ScanCoordinator(
            ScanConfig(similarity_threshold=0.5, mode=ScanMode.EMBEDDING, workers=1),
            extractor=extractor,
        )
        try:
            future = coordinator.start_scan(roots=[photo_tree['root']])
            assert coordinator.is_running
            with pytest.raises(ScanInProgressError):
                coordinator.start_scan(roots=[photo_tree['root']], cancel_running=False)

            assert coordinator.cancel()
            release.set()
            outcome = future.result(timeout=30)

            assert outcome.cancelled
            assert coordinator.scan_state.status == 'cancelled'
            assert coordinator.scan_state.progress == 1.0
            assert not coordinator.is_running
            assert not coordinator.cancel()
        finally:
            release.set()
            coordinator.shutdown()

    def test_new_scan_cancels_running_one(self, photo_tree, fake_extractor_factory):
        release = threading.Event()
        extractor = fake_extractor_factory(
            {'sunset.png': 0.0, 'horizon.png': 0.0, 'sunset_copy.png': 0.0},
            on_extract=lambda path: release.wait(timeout=10),
        )
        coordinator = ScanCoordinator(
            ScanConfig(similarity_threshold=0.5, mode=ScanMode.EMBEDDING, workers=1),
            extractor=extractor,
        )
        try:
            first = coordinator.start_scan(roots=[photo_tree['root']])
            timer = threading.Timer(0.2, release.set)
            timer.start()
            second = coordinator.start_scan(roots=[photo_tree['root']])
            assert first.result(timeout=30).cancelled
            assert not second.result(timeout=30).cancelled
        finally:
            release.set()
            coordinator.shutdown()

    def test_concurrent_starts_admit_one_scan(self, photo_tree, fake_extractor_factory):
        """Two callers racing to start without cancelling: exactly one wins."""
        release = threading.Event()
        extractor = fake_extractor_factory(
            {'sunset.png': 0.0, 'horizon.png': 0.0, 'sunset_copy.png': 0.0},
            on_extract=lambda path: release.wait(timeout=10),
        )
        coordinator = ScanCoordinator(
            ScanConfig(similarity_threshold=0.5, mode=ScanMode.EMBEDDING, workers=1),
            extractor=extractor,
        )
        barrier = threading.Barrier(2)
        futures, rejected = [], []

        def start():
            barrier.wait(timeout=10)
            try:
                futures.append(coordinator.start_scan(roots=[photo_tree['root']], cancel_running=False))
            except ScanInProgressError:
                rejected.append(True)

        threads = [threading.Thread(target=start) for _ in range(2)]
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=10)

            assert len(futures) == 1
            assert len(rejected) == 1
            assert coordinator.cancel()
            release.set()
            assert futures[0].result(timeout=30).cancelled
            assert not coordinator.is_running
        finally:
            release.set()
            coordinator.shutdown()

    def test_remove_and_clear(self, photo_tree):
        coordinator = ScanCoordinator(ScanConfig(similarity_threshold=0.9))
        try:
            coordinator.start_scan(roots=[photo_tree['root']]).result(timeout=30)
            assert coordinator.remove_image(photo_tree['sunset_copy']) == 1
            assert coordinator.scan_state.results == []
            assert coordinator.scan_state.rows == []

            coordinator.clear()
            assert coordinator.scan_state.status == 'idle'
            assert coordinator.selection.parent_folders == []
        finally:
            coordinator.shutdown()
