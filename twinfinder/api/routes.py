"""
Flask routes for twinfinder.

JSON endpoints around the ScanCoordinator stored on the app by
``create_app``; every scan and discovery runs on the coordinator's worker.
"""

from __future__ import annotations

import io
import logging
import os
from datetime import datetime

from flask import Blueprint, Response, current_app, jsonify, request, send_file

from ..models import ScanConfig, ScanMode
from ..scanner.assembler import (
    cross_folder_counts,
    folder_display_name,
    folder_pairs,
    ordered_folder_pairs,
)
from ..utils import exporters, validators
from .orchestrator import ScanCoordinator

# Create blueprint for routes
api = Blueprint('api', __name__)

# Module logger
_logger = logging.getLogger(__name__)

EXTENSION_KEY = 'twinfinder'


def get_coordinator() -> ScanCoordinator:
    return current_app.extensions[EXTENSION_KEY]


def _paths_from_request(data: dict) -> list[str]:
    paths = data.get('paths')
    if paths is None and data.get('path'):
        paths = [data['path']]
    if isinstance(paths, str):
        paths = [paths]
    return [str(p).strip() for p in (paths or []) if str(p).strip()]


def _config_from_request(data: dict, base: ScanConfig) -> ScanConfig:
    """Overlay request fields on the coordinator's config (validated by caller)."""
    return ScanConfig(
        similarity_threshold=float(data.get('threshold', base.similarity_threshold)),
        mode=ScanMode.parse(data.get('mode', base.mode)),
        top_level_only=bool(data.get('topLevelOnly', base.top_level_only)),
        ignored_folder_name=str(data.get('ignoredFolderName', base.ignored_folder_name)),
        max_leaf_folders=int(data.get('maxFolders', base.max_leaf_folders)),
        max_batch_size=int(data.get('maxBatchSize', base.max_batch_size)),
        workers=int(data.get('workers', base.workers)),
    )


# =============================================================================
# Folder selection
# =============================================================================

@api.route('/api/folders', methods=['GET'])
def api_folders():
    """Return selected parents, discovered leaves and exclusions."""
    return jsonify(get_coordinator().selection.to_dict())


@api.route('/api/folders', methods=['POST'])
def api_add_folders():
    """Add folders (parents are walked; folders with images become leaves)."""
    data = request.get_json(silent=True) or {}
    paths = _paths_from_request(data)

    is_valid, error = validators.validate_directories(paths)
    if not is_valid:
        return jsonify({'error': error}), 400

    coordinator = get_coordinator()
    if data.get('asParents', False):
        coordinator.add_roots(paths)
    else:
        coordinator.ingest_paths(paths)
    return jsonify({'status': 'discovering'})


@api.route('/api/folders/exclude', methods=['POST'])
def api_exclude_folder():
    """Exclude (or re-include with ``include: true``) a discovered leaf."""
    data = request.get_json(silent=True) or {}
    path = str(data.get('path', '')).strip()
    if not path:
        return jsonify({'error': 'No path specified'}), 400

    coordinator = get_coordinator()
    if data.get('include', False):
        coordinator.include_folder(path)
        return jsonify({'status': 'included'})
    if not coordinator.exclude_folder(path):
        return jsonify({'error': 'Folder is not a discovered leaf folder'}), 404
    return jsonify({'status': 'excluded'})


# =============================================================================
# Scans
# =============================================================================

@api.route('/api/scan', methods=['POST'])
def api_scan():
    """Start a new scan in the background."""
    data = request.get_json(silent=True) or {}
    coordinator = get_coordinator()
    roots = _paths_from_request(data) or None

    is_valid, error = validators.validate_threshold(
        data.get('threshold', coordinator.config.similarity_threshold)
    )
    if is_valid and 'mode' in data:
        is_valid, error = validators.validate_mode(data['mode'])
    if is_valid and roots is not None:
        is_valid, error = validators.validate_directories(roots)
    if not is_valid:
        return jsonify({'error': error}), 400

    try:
        config = _config_from_request(data, coordinator.config).validated()
    except (TypeError, ValueError) as e:
        return jsonify({'error': str(e)}), 400

    if roots is None and not coordinator.selection.active_leaf_folders():
        return jsonify({'error': 'No folders selected'}), 400

    coordinator.start_scan(roots=roots, config=config)
    return jsonify({'status': 'started', 'settings': config.to_dict()})


@api.route('/api/cancel', methods=['POST'])
def api_cancel():
    """Cancel the current scan or discovery."""
    if get_coordinator().cancel():
        return jsonify({'status': 'cancel_requested'})
    return jsonify({'status': 'no_scan_running'})


@api.route('/api/ping')
def api_ping():
    """Simple endpoint for connection monitoring."""
    return jsonify({'status': 'ok', 'time': datetime.now().isoformat()})


@api.route('/api/status')
def api_status():
    """Return current scan status."""
    return jsonify(get_coordinator().scan_state.to_status_dict())


# =============================================================================
# Results
# =============================================================================

@api.route('/api/results')
def api_results():
    """Return hierarchical results."""
    return jsonify(get_coordinator().scan_state.to_results_dict())


@api.route('/api/rows')
def api_rows():
    """Return flattened rows, optionally sorted (?sort=reference&order=asc)."""
    key = request.args.get('sort')
    order = request.args.get('order')
    reverse = None if order is None else order.lower() == 'desc'
    try:
        return jsonify(get_coordinator().scan_state.to_rows_dict(key, reverse))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400


@api.route('/api/folders/relationships')
def api_folder_relationships():
    """Return cross-folder aggregation of the current rows."""
    rows = list(get_coordinator().scan_state.rows)
    counts = cross_folder_counts(rows)
    return jsonify({
        'counts': counts,
        'pairs': [list(pair) for pair in folder_pairs(rows)],
        'ordered_pairs': [pair.to_dict() for pair in ordered_folder_pairs(rows)],
        'display_names': {folder: folder_display_name(folder) for folder in counts},
    })


@api.route('/api/remove', methods=['POST'])
def api_remove():
    """Apply deletions performed by the caller (files or whole folders)."""
    data = request.get_json(silent=True) or {}
    coordinator = get_coordinator()
    if coordinator.is_running:
        return jsonify({'error': 'Cannot update results while a scan is running'}), 409

    changed = 0
    for path in data.get('paths', []):
        changed += coordinator.remove_image(str(path))
    for folder in data.get('folders', []):
        changed += coordinator.remove_folder(str(folder))
    return jsonify({'status': 'updated', 'changed': changed})


@api.route('/api/export.csv')
def api_export_csv():
    """Download the current rows as CSV."""
    rows = list(get_coordinator().scan_state.rows)
    filename = f"twinfinder_results_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.csv"
    return Response(
        exporters.rows_to_csv(rows),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@api.route('/api/thumbnail')
def api_thumbnail():
    """Serve a cached JPEG preview of an image that appears in the results.

    Only paths present in the current results are served.
    """
    path = request.args.get('path', '').strip()
    if not path:
        return jsonify({'error': 'No path specified'}), 400
    try:
        size = float(request.args.get('size', 320))
    except ValueError:
        return jsonify({'error': 'Invalid size'}), 400

    coordinator = get_coordinator()
    known = {p for r in coordinator.scan_state.results for p in r.member_paths}
    if path not in known:
        _logger.warning(f"Blocked preview of file outside scan results: {path}")
        return jsonify({'error': 'Access denied: file not in scan results'}), 403
    if not os.path.isfile(path):
        return jsonify({'error': 'File not found'}), 404

    cache = coordinator.thumbnail_cache
    if cache is None:
        return send_file(path)
    thumb = cache.get_or_create(path, size)
    if thumb is None:
        return jsonify({'error': 'Cannot decode image'}), 422
    buffer = io.BytesIO()
    thumb.save(buffer, format='JPEG', quality=85)
    buffer.seek(0)
    return send_file(buffer, mimetype='image/jpeg')


@api.route('/api/clear', methods=['POST'])
def api_clear():
    """Clear selection and results."""
    get_coordinator().clear()
    return jsonify({'status': 'cleared'})


__all__ = ['api', 'get_coordinator', 'EXTENSION_KEY']
