"""Generic resource handlers: create, read, update, delete and list.

`ResourceHandlers` wraps one repository and provides the five operations
every API resource shares. Entity specifics are injected as callbacks:

- `before_write(data, existing)` may rewrite the incoming payload (derive a
  slug, strip fields) before schema validation; `existing` is None on create.
- `after_write(doc, action)` runs after a successful create/update/delete
  (recompute tour ratings after a review changes).

`QueryFeatures` turns request query parameters into a Mongo filter, sort,
projection and page window.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from backend.tourbook.errors import NotFound, ValidationError, conflict_from_duplicate_key
from backend.tourbook.repositories import VERSION_KEY, BaseRepository, Populate, to_object_id
from backend.tourbook.schemas import Schema

logger = logging.getLogger(__name__)

RESERVED_KEYS = frozenset({'page', 'sort', 'limit', 'fields'})
COMPARISON_OPERATORS = frozenset({'gte', 'gt', 'lte', 'lt'})
DEFAULT_LIMIT = 100

_OPERATOR_KEY = re.compile(r'^(?P<field>[\w.]+)\[(?P<op>\w+)\]$')

BeforeWrite = Callable[[Dict[str, Any], Optional[Dict[str, Any]]], Dict[str, Any]]
AfterWrite = Callable[[Dict[str, Any], str], None]


def _positive_int(name: str, raw: Any, default: int) -> int:
    if raw is None or raw == '':
        return default
    try:
        value = int(str(raw))
    except ValueError:
        raise ValidationError(f"{name} must be a positive integer", errors={name: f"Invalid value {raw!r}"})
    if value < 1:
        raise ValidationError(f"{name} must be a positive integer", errors={name: f"Invalid value {raw!r}"})
    return value


class QueryFeatures:
    """Build filter, sort, projection and pagination from query parameters."""

    def __init__(self, args: Mapping[str, Any], schema: Schema):
        self.args = args
        self.schema = schema

    def filter(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        for key, raw in self.args.items():
            if key in RESERVED_KEYS:
                continue
            match = _OPERATOR_KEY.match(key)
            field, op = (match.group('field'), match.group('op')) if match else (key, None)
            if field.startswith('$'):
                raise ValidationError(f"Invalid filter field: {field}")
            if op is None:
                query[field] = self.schema.cast(field, raw)
                continue
            if op not in COMPARISON_OPERATORS:
                raise ValidationError(f"Unsupported filter operator: {op}")
            condition = query.get(field)
            if not isinstance(condition, dict):
                condition = {}
            condition[f'${op}'] = self.schema.cast(field, raw)
            query[field] = condition
        return query

    def sort(self) -> List[Tuple[str, int]]:
        raw = self.args.get('sort')
        if not raw:
            return [('_id', ASCENDING)]
        keys: List[Tuple[str, int]] = []
        for part in str(raw).split(','):
            part = part.strip()
            if not part:
                continue
            if part.startswith('-'):
                keys.append((part[1:], DESCENDING))
            else:
                keys.append((part, ASCENDING))
        return keys or [('_id', ASCENDING)]

    @property
    def requested_fields(self) -> List[str]:
        raw = self.args.get('fields')
        if not raw:
            return []
        return [f.strip() for f in str(raw).split(',') if f.strip()]

    def projection(self) -> Dict[str, int]:
        fields = self.requested_fields
        if not fields:
            return {VERSION_KEY: 0}
        excluded = [f[1:] for f in fields if f.startswith('-')]
        included = [f for f in fields if not f.startswith('-')]
        if excluded and included:
            raise ValidationError("Cannot mix field inclusion and exclusion")
        if excluded:
            return {f: 0 for f in excluded}
        return {f: 1 for f in included}

    def paginate(self) -> Tuple[int, int]:
        page = _positive_int('page', self.args.get('page'), 1)
        limit = _positive_int('limit', self.args.get('limit'), DEFAULT_LIMIT)
        return page, limit


class ResourceHandlers:
    """CRUD and list operations for one repository."""

    def __init__(
        self,
        repo: BaseRepository,
        *,
        before_write: Optional[BeforeWrite] = None,
        after_write: Optional[AfterWrite] = None,
        read_populate: Sequence[Populate] = (),
        list_populate: Sequence[Populate] = (),
    ):
        self.repo = repo
        self.before_write = before_write
        self.after_write = after_write
        self.read_populate = tuple(read_populate)
        self.list_populate = tuple(list_populate)

    def present(self, doc: Dict[str, Any], keep: Sequence[str] = ()) -> Dict[str, Any]:
        return self.repo.public(doc, keep=[k for k in keep if k == VERSION_KEY])

    def _prepare(self, payload: Mapping[str, Any], existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        data = {k: v for k, v in dict(payload).items() if k not in ('_id', VERSION_KEY)}
        if self.before_write is not None:
            data = self.before_write(data, existing)
        return data

    def create_one(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        cleaned = self.repo.schema.validate(self._prepare(payload, None))
        try:
            new_id = self.repo.insert_one(cleaned)
        except DuplicateKeyError as e:
            raise conflict_from_duplicate_key(e)

        doc = self.repo.find_by_id(new_id, unscoped=True)
        if self.after_write is not None:
            self.after_write(doc, 'create')
        return self.present(doc)

    def get_one(self, doc_id: Any, populate: Optional[Sequence[Populate]] = None) -> Dict[str, Any]:
        doc = self.repo.find_by_id(doc_id)
        if not doc:
            raise NotFound()
        self.repo.populate([doc], self.read_populate if populate is None else populate)
        return self.present(doc)

    def get_all(
        self,
        query_params: Mapping[str, Any],
        pre_filter: Optional[Dict[str, Any]] = None,
        populate: Optional[Sequence[Populate]] = None,
    ) -> Dict[str, Any]:
        features = QueryFeatures(query_params, self.repo.schema)
        query = features.filter()
        if pre_filter:
            query = {'$and': [pre_filter, query]} if query else dict(pre_filter)

        page, limit = features.paginate()
        skip = (page - 1) * limit
        if skip and skip >= self.repo.count_documents(query):
            raise NotFound("This page does not exist.")

        docs = self.repo.find_many(
            query,
            projection=features.projection(),
            sort=features.sort(),
            skip=skip,
            limit=limit,
        )
        self.repo.populate(docs, self.list_populate if populate is None else populate)
        keep = features.requested_fields
        data = [self.present(doc, keep=keep) for doc in docs]
        return {'results': len(data), 'data': data}

    def update_one(self, doc_id: Any, payload: Mapping[str, Any]) -> Dict[str, Any]:
        existing = self.repo.find_by_id(doc_id)
        if not existing:
            raise NotFound()

        cleaned = self.repo.schema.validate(self._prepare(payload, existing), existing=existing)
        try:
            updated = self.repo.update_fields(existing['_id'], cleaned)
        except DuplicateKeyError as e:
            raise conflict_from_duplicate_key(e)
        if not updated:
            raise NotFound()

        if self.after_write is not None:
            self.after_write(updated, 'update')
        return self.present(updated)

    def delete_one(self, doc_id: Any) -> None:
        deleted = self.repo.delete_one({'_id': to_object_id(doc_id)})
        if not deleted:
            raise NotFound()
        if self.after_write is not None:
            self.after_write(deleted, 'delete')
