"""
Website routes — filtered search, catalog metadata, detail + qualification marks.
"""
import logging

from flask import Blueprint, current_app, jsonify, request

from sitecatalog.config import SEARCH_DEFAULT_LIMIT, SEARCH_STATEMENT_TIMEOUT_MS
from sitecatalog.services.qualification import QualificationError, qualify, list_qualifications
from sitecatalog.services.search import (
    SearchFilters, SearchValidationError, WebsiteSearch,
    filter_options, get_website, list_categories,
)

logger = logging.getLogger('routes.websites')

bp = Blueprint('websites', __name__)

# Top-level body keys that are folded into the filter object
_SCOPE_KEYS = ('client_id', 'project_id', 'only_qualified', 'only_unqualified')


def _session_factory():
    return current_app.extensions['session_factory']


# ── Search ───────────────────────────────────────────────────────────────────

@bp.route('/api/websites/search', methods=['POST'])
def search_websites():
    """Filtered, paginated website search."""
    data = request.get_json(silent=True) or {}
    filters = data.get('filters') or {}
    if not isinstance(filters, dict):
        return jsonify({'error': 'filters must be an object'}), 400

    payload = dict(filters)
    for key in _SCOPE_KEYS:
        if data.get(key) not in (None, ''):
            payload[key] = data[key]

    try:
        parsed = SearchFilters.from_dict(payload)
        engine = WebsiteSearch(_session_factory(), statement_timeout_ms=SEARCH_STATEMENT_TIMEOUT_MS)
        result = engine.search(parsed, limit=data.get('limit', SEARCH_DEFAULT_LIMIT),
                               offset=data.get('offset', 0))
    except SearchValidationError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("Website search failed: %s", e, exc_info=True)
        return jsonify({'error': 'Search failed'}), 500

    return jsonify(result.to_dict())


@bp.route('/api/websites/categories')
def categories():
    return jsonify(list_categories(_session_factory()))


@bp.route('/api/websites/filters')
def filters():
    """Distinct values + numeric bounds for the filter panel."""
    return jsonify(filter_options(_session_factory()))


@bp.route('/api/websites/<int:website_id>')
def website_detail(website_id):
    website = get_website(_session_factory(), website_id, client_id=request.args.get('client_id'))
    if website is None:
        return jsonify({'error': 'Website not found'}), 404
    return jsonify(website)


# ── Qualification ────────────────────────────────────────────────────────────

@bp.route('/api/websites/<int:website_id>/qualifications')
def website_qualifications(website_id):
    marks = list_qualifications(_session_factory(), website_id, client_id=request.args.get('client_id'))
    return jsonify(marks)


@bp.route('/api/websites/<int:website_id>/qualifications', methods=['POST'])
def qualify_website(website_id):
    """Qualify one website for a client (and optionally a project)."""
    data = request.get_json(silent=True) or {}
    return _qualify([website_id], data)


@bp.route('/api/qualifications', methods=['POST'])
def bulk_qualify():
    """Qualify many websites in one all-or-nothing write."""
    data = request.get_json(silent=True) or {}
    website_ids = data.get('website_ids')
    if not isinstance(website_ids, list):
        return jsonify({'error': 'website_ids must be a list'}), 400
    return _qualify(website_ids, data)


def _qualify(website_ids, data):
    try:
        count = qualify(
            _session_factory(),
            website_ids,
            client_id=data.get('client_id'),
            project_id=data.get('project_id'),
            actor_id=data.get('actor_id'),
            notes=data.get('notes'),
            status=data.get('status'),
        )
    except QualificationError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("Qualification write failed: %s", e, exc_info=True)
        return jsonify({'error': 'Failed to save qualification'}), 500
    return jsonify({'ok': True, 'qualified': count})
