# routes/__init__.py
"""
Blueprint registration helper
"""

from flask import current_app, jsonify


def error_response(message, error=None, status=500):
    """
    JSON error body; internal detail is only included outside production

    Args:
        message: Human-readable error
        error: Underlying exception (its text becomes 'detail')
        status: HTTP status code
    """
    body = {'error': message}
    if error is not None and current_app.config.get('APP_ENV', 'development').lower() != 'production':
        body['detail'] = f"{type(error).__name__}: {error}"
    return jsonify(body), status


def register_blueprints(app):
    """Register all application blueprints"""
    from routes.health import health_bp
    from routes.imports import imports_bp
    from routes.admin import admin_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(imports_bp)
    app.register_blueprint(admin_bp)
