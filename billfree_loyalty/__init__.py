"""
BillFree Loyalty for Shopify
Flask application factory
"""
import os
import re
import logging
from flask import Flask

from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()
    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    db.init_app(app)
    migrate.init_app(app, db)

    # Customer account extensions and checkout run on Shopify-hosted origins
    cors_origins = [
        'https://admin.shopify.com',
        'https://extensions.shopifycdn.com',
        re.compile(r'https://.*\.myshopify\.com'),
    ]
    if config_name != 'production':
        cors_origins.append('http://localhost:3000')
    CORS(
        app,
        origins=cors_origins,
        allow_headers=['Content-Type', 'Authorization', 'X-Shop-Domain', 'Idempotency-Key']
    )

    register_blueprints(app)

    from .commands import init_app as init_commands
    init_commands(app)

    register_error_handlers(app)

    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'billfree-loyalty'}

    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api.loyalty import loyalty_bp
    from .api.settings import settings_bp

    # Customer account + checkout function routes
    app.register_blueprint(loyalty_bp, url_prefix='/api/loyalty')

    # Merchant settings routes
    app.register_blueprint(settings_bp, url_prefix='/api/settings')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.errors import ErrorCode, billfree_error_response, error_response
    from .utils.exceptions import BillFreeError

    @app.errorhandler(BillFreeError)
    def handle_billfree_error(error):
        return billfree_error_response(error)

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        return error_response('Internal server error', ErrorCode.INTERNAL_ERROR, 500)
