"""
Health routes — liveness + circuit-breaker state of the catalog source.
"""
from flask import Blueprint, current_app, jsonify

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Liveness probe."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def service_health():
    """Breaker snapshot for every external service."""
    breakers = current_app.extensions['breakers']
    services = {name: breaker.get_health() for name, breaker in breakers.items()}
    degraded = any(s['state'] != 'closed' for s in services.values())
    return jsonify({'status': 'degraded' if degraded else 'healthy', 'services': services})


@bp.route('/api/health/<service>/reset', methods=['POST'])
def reset_breaker(service):
    breaker = current_app.extensions['breakers'].get(service)
    if breaker is None:
        return jsonify({'error': f'Unknown service: {service}'}), 404
    breaker.reset()
    return jsonify({'ok': True, 'service': breaker.get_health()})
