"""Routes package: Blueprint registration for all HTTP endpoints.

Each blueprint module defines a `bp` variable. This module provides
register_blueprints() which imports and registers them.
"""


def register_blueprints(app):
    """Import and register all blueprints on the Flask app."""
    from routes.jobs import bp as jobs_bp
    from routes.stream import bp as stream_bp
    from routes.system import bp as system_bp

    for blueprint in [
        jobs_bp,
        stream_bp,
        system_bp,
    ]:
        app.register_blueprint(blueprint)
