"""Flask extensions initialization (MongoDB connection, JWT, mail, rate limiter)."""
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mail import Mail

from . import db

jwt = JWTManager()
mail = Mail()
# Default limits come from RATELIMIT_DEFAULT in the app config
limiter = Limiter(key_func=get_remote_address)


def init_extensions(app):
    """Initialize Flask extensions with app context.

    Args:
        app: Flask application instance
    """
    jwt.init_app(app)
    mail.init_app(app)
    limiter.init_app(app)

    db.init_app(app)
