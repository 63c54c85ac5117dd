"""
Catalog sync routes — on-demand full sync + SyncRun history.
"""
import logging

from flask import Blueprint, current_app, jsonify, request

from sitecatalog.services.catalog_source import CatalogSourceClient, CatalogSourceError
from sitecatalog.services.circuit_breaker import CircuitOpenError
from sitecatalog.services.sync import CatalogSync, SyncInProgressError, recent_sync_runs

logger = logging.getLogger('routes.sync')

bp = Blueprint('sync', __name__)


def build_sync():
    """CatalogSync wired to the app's store, Redis lock and source breaker."""
    source = CatalogSourceClient(breaker=current_app.extensions['breakers']['catalog_source'])
    return CatalogSync(
        source,
        current_app.extensions['session_factory'],
        redis_client=current_app.extensions['redis'],
    )


@bp.route('/api/catalog/sync', methods=['POST'])
def trigger_sync():
    """Run a full catalog sync in the request and return its counts."""
    try:
        result = build_sync().run_full_sync()
    except SyncInProgressError as e:
        return jsonify({'error': str(e)}), 409
    except (CatalogSourceError, CircuitOpenError) as e:
        return jsonify({'error': str(e)}), 502
    except Exception as e:
        logger.error("Catalog sync request failed: %s", e, exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify(result.to_dict())


@bp.route('/api/catalog/sync/runs')
def list_sync_runs():
    """Recent SyncRun rows, newest first."""
    limit = request.args.get('limit', 20, type=int)
    limit = max(1, min(limit, 100))
    return jsonify(recent_sync_runs(current_app.extensions['session_factory'], limit=limit))
