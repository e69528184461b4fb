"""Flask application factory and initialization."""
import logging

from flask import Flask, abort, g, jsonify, request
from pymongo.errors import PyMongoError

from backend.tourbook.config import Config
from backend.tourbook.errors import register_error_handlers
from backend.tourbook.extensions import init_extensions, limiter
from backend.tourbook import db

logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    """Create and configure the Flask application.

    Args:
        config_class: Configuration class to use

    Returns:
        Flask: Configured Flask application instance
    """
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.url_map.strict_slashes = False

    # Initialize Flask extensions
    init_extensions(app)

    # Indexes carry the uniqueness rules; a missing database must not block startup
    try:
        with app.app_context():
            db.ensure_indexes()
    except (db.DatabaseError, PyMongoError) as e:
        logger.warning(f"Could not ensure DB indexes at startup: {e}")

    register_error_handlers(app)

    @app.before_request
    def limit_body_size():
        """Reject oversized JSON and form bodies; uploads and the webhook use MAX_CONTENT_LENGTH."""
        length = request.content_length
        if length is None or request.blueprint == 'webhooks' or request.mimetype == 'multipart/form-data':
            return None
        if length > app.config['BODY_LIMIT_BYTES']:
            abort(413)
        return None

    @app.route('/api/health')
    @limiter.exempt
    def health_check():
        """Liveness check that also reports MongoDB status."""
        database = db.health_check()
        return jsonify({
            "status": "ok" if database["status"] == "healthy" else "degraded",
            "service": "tourbook-api",
            "database": database,
        })

    register_blueprints(app)

    @app.context_processor
    def inject_user():
        return {'user': g.get('current_user')}

    if app.debug:
        @app.before_request
        def log_request():
            logger.debug("%s %s", request.method, request.full_path)

    @app.after_request
    def after_request(response):
        """Add CORS and security headers to all responses."""
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PATCH, DELETE, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('X-Frame-Options', 'SAMEORIGIN')
        response.headers.setdefault('Referrer-Policy', 'no-referrer')
        return response

    return app


def register_blueprints(app):
    """Register Flask blueprints with the application.

    Args:
        app: Flask application instance
    """
    # Import blueprints here to avoid circular imports
    from backend.tourbook.blueprints.api.users.routes import users_bp
    from backend.tourbook.blueprints.api.tours.routes import tours_bp
    from backend.tourbook.blueprints.api.reviews.routes import reviews_bp
    from backend.tourbook.blueprints.api.bookings.routes import bookings_bp
    from backend.tourbook.blueprints.webhooks.routes import webhooks_bp
    from backend.tourbook.blueprints.web.routes import web_bp

    app.register_blueprint(users_bp, url_prefix='/api/v1/users')
    app.register_blueprint(tours_bp, url_prefix='/api/v1/tours')
    app.register_blueprint(reviews_bp, url_prefix='/api/v1/reviews')
    # Same review routes, scoped to one tour
    app.register_blueprint(reviews_bp, url_prefix='/api/v1/tours/<tour_id>/reviews', name='tour_reviews')
    app.register_blueprint(bookings_bp, url_prefix='/api/v1/bookings')

    # Webhook and page views carry no rate limit
    limiter.exempt(webhooks_bp)
    app.register_blueprint(webhooks_bp)

    limiter.exempt(web_bp)
    app.register_blueprint(web_bp)
