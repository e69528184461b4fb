"""Configuration settings and environment variables.

Values are loaded from environment variables (including a .env file).
The small helpers below parse integers and booleans while stripping inline
comments, so a .env line such as

    JWT_EXPIRES_IN_DAYS=90 # three months

does not crash startup. Parsing failures fall back to defaults with a warning.
"""

import os
import logging
from datetime import timedelta
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_logger = logging.getLogger(__name__)


def _clean(val: str) -> str:
    """Drop a trailing ``# comment`` and surrounding quotes: '"90" # days' -> '90'."""
    val = val.split('#', 1)[0].strip()
    if len(val) >= 2 and val[0] == val[-1] and val[0] in '"\'':
        val = val[1:-1]
    return val


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = _clean(os.environ.get(name, ''))
    return value or default


def _get_int_env(name: str, default: int) -> int:
    value = _get_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        _logger.warning("%s=%r is not an integer, using %s", name, value, default)
        return default


def _get_bool_env(name: str, default: bool) -> bool:
    value = _get_env(name)
    return default if value is None else value.lower() in ('true', '1', 'on', 'yes')


class Config:
    """Base configuration class with default settings."""

    # Flask settings
    SECRET_KEY = _get_env('SECRET_KEY') or 'dev-secret-key-change-in-production'
    DEBUG = False
    TESTING = False

    # Session token settings
    JWT_SECRET_KEY = _get_env('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ALGORITHM = 'HS256'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=_get_int_env('JWT_EXPIRES_IN_DAYS', 90))
    JWT_COOKIE_EXPIRES_IN_DAYS = _get_int_env('JWT_COOKIE_EXPIRES_IN_DAYS', 90)
    JWT_COOKIE_NAME = 'jwt'
    JWT_LOGOUT_SENTINEL = 'loggedout'

    # Password settings
    BCRYPT_ROUNDS = _get_int_env('BCRYPT_ROUNDS', 12)
    PASSWORD_RESET_EXPIRES_MINUTES = _get_int_env('PASSWORD_RESET_EXPIRES_MINUTES', 10)

    # MongoDB settings
    MONGO_URI = _get_env('MONGO_URI') or 'mongodb://localhost:27017/'
    MONGO_DB = _get_env('MONGO_DB') or 'tourbook'

    # Mail settings
    MAIL_SERVER = _get_env('MAIL_SERVER') or 'localhost'
    MAIL_PORT = _get_int_env('MAIL_PORT', 587)
    MAIL_USE_TLS = _get_bool_env('MAIL_USE_TLS', True)
    MAIL_USE_SSL = _get_bool_env('MAIL_USE_SSL', False)
    MAIL_USERNAME = _get_env('MAIL_USERNAME')
    MAIL_PASSWORD = _get_env('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = _get_env('MAIL_DEFAULT_SENDER') or 'no-reply@tourbook.local'
    EMAIL_FROM_NAME = _get_env('EMAIL_FROM_NAME') or 'Tourbook'

    # Payments
    STRIPE_SECRET_KEY = _get_env('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = _get_env('STRIPE_WEBHOOK_SECRET')
    STRIPE_CURRENCY = _get_env('STRIPE_CURRENCY') or 'usd'

    # Request bodies: JSON and urlencoded bodies are capped at BODY_LIMIT_KB,
    # everything (image uploads included) at MAX_UPLOAD_MB
    BODY_LIMIT_BYTES = _get_int_env('BODY_LIMIT_KB', 10) * 1024
    MAX_CONTENT_LENGTH = _get_int_env('MAX_UPLOAD_MB', 20) * 1024 * 1024

    # Uploaded images; defaults to <static>/img when unset
    IMAGE_ROOT = _get_env('IMAGE_ROOT')

    # Rate limiting
    RATELIMIT_ENABLED = _get_bool_env('RATELIMIT_ENABLED', True)
    RATELIMIT_STORAGE_URI = _get_env('RATELIMIT_STORAGE_URI') or 'memory://'
    RATELIMIT_DEFAULT = _get_env('RATELIMIT_DEFAULT') or '100 per hour'
    RATELIMIT_HEADERS_ENABLED = True


class DevelopmentConfig(Config):
    """Development configuration with debug mode enabled."""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration with security settings."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True


class TestingConfig(Config):
    """Testing configuration with test database."""
    TESTING = True
    MONGO_DB = 'tourbook_test'
    BCRYPT_ROUNDS = 4
    RATELIMIT_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    JWT_SECRET_KEY = 'test-secret-key'
    STRIPE_SECRET_KEY = 'sk_test_dummy'
    STRIPE_WEBHOOK_SECRET = 'whsec_test_secret'


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
