"""MongoDB access for the tour booking collections.

One ``MongoClient`` (and so one connection pool) is kept per application in
``app.extensions``; request code reaches the database through ``get_db()``.
Index creation lives here too because uniqueness of emails, tour names,
reviews per tour and Stripe sessions is enforced by MongoDB, not by Python.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from flask import current_app
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError, ServerSelectionTimeoutError

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'tourbook.mongo'


class DatabaseError(Exception):
    """Raised when MongoDB cannot be reached."""


def _connect(uri: str) -> MongoClient:
    client = MongoClient(
        uri,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
        socketTimeoutMS=20000,
        maxPoolSize=50,
        retryWrites=True,
    )
    try:
        client.admin.command('ping')
    except (ConnectionFailure, ServerSelectionTimeoutError) as e:
        client.close()
        logger.error(f"MongoDB at {uri} is unreachable: {e}")
        raise DatabaseError(f"Database connection failed: {e}") from e
    logger.info("Connected to MongoDB")
    return client


def get_mongo_client() -> MongoClient:
    """Return the application's client, connecting on first use.

    Raises:
        DatabaseError: If the server does not answer a ping
    """
    state = current_app.extensions.setdefault(EXTENSION_KEY, {})
    client = state.get('client')
    if client is None:
        client = state['client'] = _connect(current_app.config['MONGO_URI'])
    return client


def get_db() -> Database:
    return get_mongo_client()[current_app.config['MONGO_DB']]


def init_app(app) -> None:
    """Check the database once at startup; the app still boots if it is down."""
    app.extensions.setdefault(EXTENSION_KEY, {})
    with app.app_context():
        try:
            names = get_db().list_collection_names()
        except DatabaseError as e:
            logger.error(f"Database check at startup failed: {e}")
            return
    logger.info(f"Database '{app.config['MONGO_DB']}' ready with {len(names)} collections")


def health_check() -> Dict[str, Any]:
    """Ping the server and report its version and collection count."""
    try:
        client = get_mongo_client()
        client.admin.command('ping')
        version = client.server_info().get('version', 'unknown')
        collections = len(get_db().list_collection_names())
    except (DatabaseError, PyMongoError) as e:
        return {'status': 'unhealthy', 'error': str(e)}
    return {
        'status': 'healthy',
        'database': current_app.config['MONGO_DB'],
        'server_version': version,
        'collections': collections,
    }


def ensure_indexes() -> bool:
    """Create the unique, lookup and geo indexes used by the API.

    Returns False when the 2dsphere index cannot be built, which happens if
    stored tours carry invalid coordinates; the geo routes fail until fixed.
    """
    database = get_db()

    database.users.create_index([('email', ASCENDING)], unique=True)

    database.tours.create_index([('name', ASCENDING)], unique=True)
    database.tours.create_index([('slug', ASCENDING)])
    database.tours.create_index([('price', ASCENDING), ('ratingsAverage', DESCENDING)])

    database.reviews.create_index([('tour', ASCENDING), ('user', ASCENDING)], unique=True)

    database.bookings.create_index([('user', ASCENDING)])
    database.bookings.create_index([('stripeSessionId', ASCENDING)], unique=True, sparse=True)

    try:
        database.tours.create_index([('startLocation', GEOSPHERE)])
    except OperationFailure as e:
        logger.warning(f"2dsphere index on tours.startLocation not created: {e}")
        return False

    logger.info("Indexes verified")
    return True
