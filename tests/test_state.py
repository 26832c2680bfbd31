"""
Unit tests for ScanState.
"""

import pytest

from twinfinder.models import ComparisonResult, ScanOutcome, SimilarImage, TableRow
from twinfinder.state import ScanState


def _outcome():
    result = ComparisonResult('/a/r.png', [SimilarImage('/b/m.png', 0.95), SimilarImage('/a/n.png', 0.9)])
    return ScanOutcome(
        results=[result],
        rows=[TableRow('/a/r.png', '/b/m.png', 0.95), TableRow('/a/r.png', '/a/n.png', 0.9)],
        images_found=3,
        images_processed=3,
    )


class TestScanState:
    """Test state transitions and views."""

    def test_initial(self):
        state = ScanState()
        assert state.status == 'idle'
        assert not state.is_active
        assert state.to_status_dict()['has_results'] is False

    def test_begin_clears_cancel(self):
        state = ScanState()
        state.request_cancel()
        state.begin('scanning', {'mode': 'basic'})
        assert state.is_active
        assert not state.cancel_requested
        assert state.settings == {'mode': 'basic'}

    def test_progress_monotonic(self):
        state = ScanState()
        state.begin('scanning')
        state.set_progress(0.5)
        state.set_progress(0.2)
        assert state.progress == 0.5

    def test_update_unknown_field(self):
        with pytest.raises(AttributeError):
            ScanState().update(colour='red')

    def test_apply_outcome(self):
        state = ScanState()
        state.apply_outcome(_outcome(), 'done')
        assert state.status == 'complete'
        assert state.progress == 1.0
        assert len(state.rows) == 2
        assert state.to_results_dict()['results'][0]['reference'] == '/a/r.png'

    def test_cancelled_outcome_keeps_results(self):
        state = ScanState()
        state.apply_outcome(_outcome(), 'done')
        state.apply_outcome(ScanOutcome(cancelled=True), 'Scan cancelled by user')
        assert state.status == 'cancelled'
        assert len(state.results) == 1

    def test_cancelled_scan_keeps_description_of_results(self):
        """Counters, warnings and settings still describe the kept results."""
        state = ScanState()
        state.begin('scanning', {'similarity_threshold': 0.9})
        finished = _outcome()
        finished.warnings = ['Limited processing to 2 of 3 files']
        finished.elapsed_seconds = 4.0
        state.apply_outcome(finished, 'done')

        state.begin('scanning', {'similarity_threshold': 0.5})
        state.apply_outcome(
            ScanOutcome(cancelled=True, images_found=50, images_processed=7, warnings=['other']),
            'Scan cancelled by user',
        )
        status = state.to_status_dict()
        assert status['status'] == 'cancelled'
        assert state.images_found == 3
        assert state.images_processed == 3
        assert state.warnings == ['Limited processing to 2 of 3 files']
        assert state.settings == {'similarity_threshold': 0.9}
        assert state.elapsed_seconds == 4.0

    def test_remove_image_recomputes_rows(self):
        state = ScanState()
        state.apply_outcome(_outcome(), 'done')
        assert state.remove_image('/b/m.png') == 1
        assert [row.similar for row in state.rows] == ['/a/n.png']

    def test_remove_folder(self):
        state = ScanState()
        state.apply_outcome(_outcome(), 'done')
        state.remove_folder('/b')
        assert [row.similar for row in state.rows] == ['/a/n.png']
        state.remove_folder('/a')
        assert state.results == [] and state.rows == []

    def test_rows_sorted_view(self):
        state = ScanState()
        state.apply_outcome(_outcome(), 'done')
        rows = state.to_rows_dict('similar', reverse=False)['rows']
        assert [r['similar'] for r in rows] == ['/a/n.png', '/b/m.png']

    def test_fail(self):
        state = ScanState()
        state.fail('Error: boom')
        assert state.status == 'error'
        assert state.message == 'Error: boom'
