"""
Flask application factory.

Builds the shared resources once (session factory, Redis client, circuit
breakers), keeps them in app.extensions and registers the blueprints.
"""
from flask import Flask


def create_app(session_factory=None, redis_client=None, config=None):
    """Create and configure the Flask application.

    session_factory and redis_client may be injected (tests, CLI); otherwise
    they are built from DATABASE_URL / REDIS_URL.
    """
    from sitecatalog.logging_config import configure_logging

    app = Flask(__name__)
    app.json.sort_keys = False
    if config:
        app.config.update(config)

    configure_logging(app)

    if session_factory is None:
        from sitecatalog.database import create_session_factory
        session_factory = create_session_factory()
    if redis_client is None:
        from sitecatalog.extensions import create_redis_client
        redis_client = create_redis_client()

    # Circuit breakers for the external catalog source
    from sitecatalog.services.circuit_breaker import init_breakers

    app.extensions['session_factory'] = session_factory
    app.extensions['redis'] = redis_client
    app.extensions['breakers'] = init_breakers(redis_client)

    # Register blueprints
    from sitecatalog.routes.health import bp as health_bp
    from sitecatalog.routes.websites import bp as websites_bp
    from sitecatalog.routes.sync import bp as sync_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(websites_bp)
    app.register_blueprint(sync_bp)

    # Import models so Base.metadata knows every table.
    # Schema is managed by Alembic; no create_all() here.
    import sitecatalog.models  # noqa: F401

    return app
