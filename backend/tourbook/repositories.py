"""Repository pattern for database operations.

This module provides repository classes for each collection, abstracting
database operations and providing a clean interface for the services. Every
repository carries its entity schema (for validation and hidden fields) and
an optional default filter that is applied to all reads.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from . import db
from .errors import ValidationError
from .schemas import BOOKING_SCHEMA, REVIEW_SCHEMA, TOUR_SCHEMA, USER_SCHEMA, Schema

logger = logging.getLogger(__name__)

VERSION_KEY = '__v'


def to_object_id(value: Any, field: str = '_id') -> ObjectId:
    """Convert `value` to an ObjectId or raise `ValidationError`."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {field}: {value}")


@dataclass
class Populate:
    """Explicit eager-load directive.

    A forward populate replaces the id (or list of ids) stored at `path` with
    the referenced documents. A virtual populate fills `path` with documents
    of `repo` whose `foreign_field` points back at the parent.
    """

    path: str
    repo: 'BaseRepository'
    fields: Optional[Sequence[str]] = None
    exclude: Sequence[str] = ()
    foreign_field: Optional[str] = None
    virtual: bool = False
    populate: Sequence['Populate'] = ()

    def shape(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        if self.fields:
            keep = set(self.fields) | {'_id'}
            return {k: v for k, v in doc.items() if k in keep}
        return self.repo.public(doc, drop=self.exclude)


class BaseRepository:
    """Base repository class with common database operations."""

    def __init__(self, collection_name: str, schema: Schema, default_filter: Optional[Dict[str, Any]] = None):
        """Initialize repository.

        Args:
            collection_name: Name of the MongoDB collection
            schema: Entity schema used for validation and output shaping
            default_filter: Filter merged into every read unless `unscoped`
        """
        self.collection_name = collection_name
        self.schema = schema
        self.default_filter = default_filter or {}

    @property
    def collection(self) -> Collection:
        database = db.get_db()
        return database[self.collection_name]

    def scoped(self, filter_dict: Optional[Dict[str, Any]], unscoped: bool = False) -> Dict[str, Any]:
        filter_dict = filter_dict or {}
        if unscoped or not self.default_filter:
            return filter_dict
        if not filter_dict:
            return dict(self.default_filter)
        return {'$and': [self.default_filter, filter_dict]}

    def public(self, doc: Optional[Dict[str, Any]], drop: Iterable[str] = (), keep: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
        """Strip hidden fields and the revision key from `doc`."""
        if doc is None:
            return None
        hidden = (set(self.schema.hidden_fields) | {VERSION_KEY} | set(drop)) - set(keep)
        return {k: v for k, v in doc.items() if k not in hidden}

    def find_one(self, filter_dict: Dict[str, Any], projection: Optional[Dict[str, int]] = None, unscoped: bool = False) -> Optional[Dict[str, Any]]:
        try:
            return self.collection.find_one(self.scoped(filter_dict, unscoped), projection)
        except PyMongoError as e:
            logger.error(f"Error finding document in {self.collection_name}: {e}")
            raise

    def find_by_id(self, doc_id: Any, unscoped: bool = False) -> Optional[Dict[str, Any]]:
        return self.find_one({'_id': to_object_id(doc_id)}, unscoped=unscoped)

    def find_many(
        self,
        filter_dict: Optional[Dict[str, Any]] = None,
        *,
        projection: Optional[Dict[str, int]] = None,
        sort: Optional[List[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        unscoped: bool = False,
    ) -> List[Dict[str, Any]]:
        try:
            cursor = self.collection.find(self.scoped(filter_dict, unscoped), projection)
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except PyMongoError as e:
            logger.error(f"Error finding documents in {self.collection_name}: {e}")
            raise

    def count_documents(self, filter_dict: Optional[Dict[str, Any]] = None, unscoped: bool = False) -> int:
        try:
            return self.collection.count_documents(self.scoped(filter_dict, unscoped))
        except PyMongoError as e:
            logger.error(f"Error counting documents in {self.collection_name}: {e}")
            raise

    def insert_one(self, document: Dict[str, Any]) -> ObjectId:
        document = {**document, VERSION_KEY: 0}
        try:
            result = self.collection.insert_one(document)
            return result.inserted_id
        except PyMongoError as e:
            logger.error(f"Error inserting document in {self.collection_name}: {e}")
            raise

    def update_one(self, filter_dict: Dict[str, Any], update_dict: Dict[str, Any], unscoped: bool = False) -> bool:
        """Apply a raw update operator document. No schema validation runs."""
        try:
            result = self.collection.update_one(self.scoped(filter_dict, unscoped), update_dict)
            return result.matched_count > 0
        except PyMongoError as e:
            logger.error(f"Error updating document in {self.collection_name}: {e}")
            raise

    def update_fields(self, doc_id: Any, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """`$set` validated fields, bump the revision and return the new document."""
        update: Dict[str, Any] = {'$inc': {VERSION_KEY: 1}}
        if fields:
            update['$set'] = fields
        try:
            return self.collection.find_one_and_update(
                self.scoped({'_id': to_object_id(doc_id)}),
                update,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error(f"Error updating document in {self.collection_name}: {e}")
            raise

    def delete_one(self, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Delete the first matching document and return it, or None."""
        try:
            return self.collection.find_one_and_delete(self.scoped(filter_dict))
        except PyMongoError as e:
            logger.error(f"Error deleting document in {self.collection_name}: {e}")
            raise

    def delete_many(self, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        try:
            return self.collection.delete_many(filter_dict or {}).deleted_count
        except PyMongoError as e:
            logger.error(f"Error deleting documents in {self.collection_name}: {e}")
            raise

    def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            return list(self.collection.aggregate(pipeline))
        except PyMongoError as e:
            logger.error(f"Error running aggregation on {self.collection_name}: {e}")
            raise

    def populate(self, docs: List[Dict[str, Any]], directives: Sequence[Populate]) -> List[Dict[str, Any]]:
        """Resolve `directives` on `docs` in place and return them."""
        for directive in directives:
            if directive.virtual:
                self._populate_virtual(docs, directive)
            else:
                self._populate_forward(docs, directive)
        return docs

    @staticmethod
    def _populate_forward(docs: List[Dict[str, Any]], directive: Populate) -> None:
        ids: List[ObjectId] = []
        for doc in docs:
            value = doc.get(directive.path)
            if isinstance(value, list):
                ids.extend(v for v in value if isinstance(v, ObjectId))
            elif isinstance(value, ObjectId):
                ids.append(value)
        if not ids:
            return
        related = directive.repo.find_many({'_id': {'$in': list(set(ids))}})
        directive.repo.populate(related, directive.populate)
        by_id = {r['_id']: directive.shape(r) for r in related}
        for doc in docs:
            value = doc.get(directive.path)
            if isinstance(value, list):
                doc[directive.path] = [by_id[v] for v in value if v in by_id]
            elif isinstance(value, ObjectId):
                doc[directive.path] = by_id.get(value)

    @staticmethod
    def _populate_virtual(docs: List[Dict[str, Any]], directive: Populate) -> None:
        parent_ids = [doc['_id'] for doc in docs if '_id' in doc]
        related = directive.repo.find_many({directive.foreign_field: {'$in': parent_ids}}) if parent_ids else []
        directive.repo.populate(related, directive.populate)
        grouped: Dict[Any, List[Dict[str, Any]]] = defaultdict(list)
        for item in related:
            key = item.get(directive.foreign_field)
            # A nested populate may already have replaced the key with a document
            if isinstance(key, dict):
                key = key.get('_id')
            grouped[key].append(directive.shape(item))
        for doc in docs:
            doc[directive.path] = grouped.get(doc.get('_id'), [])


class UsersRepository(BaseRepository):
    def __init__(self):
        super().__init__('users', USER_SCHEMA, default_filter={'active': {'$ne': False}})

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        if not email:
            return None
        return self.find_one({'email': str(email).strip().lower()})

    def find_by_reset_token(self, token_hash: str, now: datetime) -> Optional[Dict[str, Any]]:
        return self.find_one({
            'passwordResetToken': token_hash,
            'passwordResetExpires': {'$gt': now},
        })


class ToursRepository(BaseRepository):
    def __init__(self):
        super().__init__('tours', TOUR_SCHEMA, default_filter={'secretTour': {'$ne': True}})

    def find_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return self.find_one({'slug': slug})


class ReviewsRepository(BaseRepository):
    def __init__(self):
        super().__init__('reviews', REVIEW_SCHEMA)

    def rating_stats(self, tour_id: ObjectId) -> Optional[Dict[str, Any]]:
        """Return `{nRating, avgRating}` for a tour, or None without reviews."""
        rows = self.aggregate([
            {'$match': {'tour': tour_id}},
            {'$group': {
                '_id': '$tour',
                'nRating': {'$sum': 1},
                'avgRating': {'$avg': '$rating'},
            }},
        ])
        return rows[0] if rows else None


class BookingsRepository(BaseRepository):
    def __init__(self):
        super().__init__('bookings', BOOKING_SCHEMA)

    def find_by_user(self, user_id: ObjectId) -> List[Dict[str, Any]]:
        return self.find_many({'user': user_id})

    def find_by_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.find_one({'stripeSessionId': session_id})


users_repo = UsersRepository()
tours_repo = ToursRepository()
reviews_repo = ReviewsRepository()
bookings_repo = BookingsRepository()
