"""Entity schemas: field types, defaults and validation rules.

Each collection has one `Schema`. `Schema.validate` casts and checks an
incoming payload and raises `ValidationError` with one message per failing
field; `Schema.cast` converts query-string values for filters. Fields marked
`hidden` are never serialized outward; `persist=False` fields are checked
but dropped before writing.
"""

from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass, field as dc_field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from .errors import ValidationError

# bcrypt only reads this many bytes and newer releases reject anything longer
PASSWORD_MAX_BYTES = 72
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

Check = Tuple[Callable[[Any, Mapping[str, Any]], bool], str]


class Role(str, enum.Enum):
    USER = 'user'
    GUIDE = 'guide'
    LEAD_GUIDE = 'lead-guide'
    ADMIN = 'admin'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_rating(value: float) -> float:
    # Half-up rounding to one decimal: 4.666 -> 4.7
    return math.floor(value * 10 + 0.5) / 10


class _CastError(Exception):
    pass


@dataclass
class Field:
    kind: str
    required: Optional[str] = None
    default: Any = None
    choices: Optional[Sequence[Any]] = None
    choices_message: Optional[str] = None
    min_value: Optional[Tuple[float, str]] = None
    max_value: Optional[Tuple[float, str]] = None
    min_length: Optional[Tuple[int, str]] = None
    max_length: Optional[Tuple[int, str]] = None
    trim: bool = False
    lowercase: bool = False
    item: Optional['Field'] = None
    checks: Sequence[Check] = ()
    setter: Optional[Callable[[Any], Any]] = None
    hidden: bool = False
    persist: bool = True

    def default_value(self) -> Any:
        return self.default() if callable(self.default) else self.default

    def cast(self, value: Any) -> Any:
        if value is None:
            return None
        kind = self.kind
        if kind == 'string':
            if isinstance(value, (dict, list)):
                raise _CastError
            value = str(value)
            if self.trim:
                value = value.strip()
            if self.lowercase:
                value = value.lower()
            return value
        if kind == 'number':
            if isinstance(value, bool):
                raise _CastError
            if isinstance(value, (int, float)):
                return value
            try:
                text = str(value).strip()
                return int(text) if re.fullmatch(r'-?\d+', text) else float(text)
            except (TypeError, ValueError):
                raise _CastError
        if kind == 'bool':
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in ('true', '1', 'yes'):
                return True
            if text in ('false', '0', 'no'):
                return False
            raise _CastError
        if kind == 'date':
            if isinstance(value, datetime):
                return value
            try:
                text = str(value).strip()
                if text.endswith('Z'):
                    text = text[:-1] + '+00:00'
                parsed = datetime.fromisoformat(text)
            except ValueError:
                raise _CastError
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        if kind == 'objectid':
            if isinstance(value, ObjectId):
                return value
            try:
                return ObjectId(str(value))
            except (InvalidId, TypeError):
                raise _CastError
        if kind == 'point':
            if not isinstance(value, dict):
                raise _CastError
            coords = value.get('coordinates')
            if not isinstance(coords, (list, tuple)) or len(coords) != 2:
                raise _CastError
            try:
                lng, lat = float(coords[0]), float(coords[1])
            except (TypeError, ValueError):
                raise _CastError
            if value.get('type', 'Point') != 'Point' or not (-180 <= lng <= 180 and -90 <= lat <= 90):
                raise _CastError
            point = {'type': 'Point', 'coordinates': [lng, lat]}
            for extra in ('address', 'description', 'day'):
                if value.get(extra) is not None:
                    point[extra] = value[extra]
            return point
        if kind == 'list':
            items = value if isinstance(value, (list, tuple)) else [value]
            return [self.item.cast(v) for v in items] if self.item else list(items)
        raise _CastError


@dataclass
class Schema:
    name: str
    fields: Dict[str, Field] = dc_field(default_factory=dict)

    @property
    def hidden_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if f.hidden]

    def cast(self, name: str, raw: Any) -> Any:
        """Cast a query-string value for `name`; unknown fields pass through."""
        spec = self.fields.get(name.split('.', 1)[0])
        if spec is None or '.' in name:
            return raw
        if spec.kind == 'list' and spec.item is not None:
            spec = spec.item
        if spec.kind == 'point':
            return raw
        try:
            return spec.cast(raw)
        except _CastError:
            raise ValidationError(f"Invalid {name}: {raw}", errors={name: f"Cast to {spec.kind} failed for value {raw!r}"})

    def validate(self, payload: Mapping[str, Any], *, existing: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Validate `payload` and return the cleaned document.

        Without `existing` this is a create: defaults are applied and required
        fields enforced. With `existing` it is a partial update: only the
        provided fields are returned, but cross-field checks see the merged
        document.
        """
        partial = existing is not None
        errors: Dict[str, str] = {}
        cleaned: Dict[str, Any] = {}

        for name, spec in self.fields.items():
            if name in payload:
                try:
                    value = spec.cast(payload[name])
                except _CastError:
                    errors[name] = f"Cast to {spec.kind} failed for value {payload[name]!r} at path {name!r}"
                    continue
            elif partial:
                continue
            else:
                value = spec.default_value()
            if spec.setter is not None and value is not None:
                value = spec.setter(value)
            cleaned[name] = value

        context = {**(existing or {}), **cleaned}
        for name, value in cleaned.items():
            if name in errors:
                continue
            message = self._check_field(name, self.fields[name], value, context)
            if message:
                errors[name] = message

        if errors:
            raise ValidationError(
                "Invalid input data. " + ". ".join(errors.values()),
                errors=errors,
            )

        return {
            name: value for name, value in cleaned.items()
            if self.fields[name].persist and not (value is None and name not in payload)
        }

    @staticmethod
    def _check_field(name: str, spec: Field, value: Any, context: Mapping[str, Any]) -> Optional[str]:
        if value is None or value == '' or value == []:
            if spec.required:
                return spec.required
            return None
        if spec.choices is not None and value not in spec.choices:
            return spec.choices_message or f"{name} must be one of: {', '.join(map(str, spec.choices))}"
        if spec.min_value is not None and value < spec.min_value[0]:
            return spec.min_value[1]
        if spec.max_value is not None and value > spec.max_value[0]:
            return spec.max_value[1]
        if spec.min_length is not None and len(value) < spec.min_length[0]:
            return spec.min_length[1]
        if spec.max_length is not None and len(value) > spec.max_length[0]:
            return spec.max_length[1]
        for check, message in spec.checks:
            if not check(value, context):
                return message.replace('{VALUE}', str(value))
        return None


def _is_email(value: str, _ctx) -> bool:
    return bool(EMAIL_PATTERN.match(value))


def _passwords_match(value: str, ctx) -> bool:
    return value == ctx.get('password')


def _fits_bcrypt(value: str, _ctx) -> bool:
    return len(value.encode('utf-8')) <= PASSWORD_MAX_BYTES


def _letters_only(value: str, _ctx) -> bool:
    return value.replace(' ', '').isalpha()


def _discount_below_price(value: float, ctx) -> bool:
    price = ctx.get('price')
    return price is None or value < price


USER_SCHEMA = Schema('User', {
    'name': Field('string', required='Please tell us your name!', trim=True),
    'email': Field(
        'string', required='Please provide your email', trim=True, lowercase=True,
        checks=[(_is_email, 'Please provide a valid email')],
    ),
    'photo': Field('string', default='default.jpg'),
    'role': Field(
        'string', default=Role.USER.value, choices=[r.value for r in Role],
        choices_message='Role is either: user, guide, lead-guide, admin',
    ),
    'password': Field(
        'string', required='Please provide a password',
        min_length=(8, 'A password must have at least 8 characters'), hidden=True,
        checks=[(_fits_bcrypt, f'A password must not be longer than {PASSWORD_MAX_BYTES} bytes')],
    ),
    'passwordConfirm': Field(
        'string', required='Please confirm your password', persist=False,
        checks=[(_passwords_match, 'Passwords are not the same!')],
    ),
    'passwordChangedAt': Field('date'),
    'passwordResetToken': Field('string', hidden=True),
    'passwordResetExpires': Field('date', hidden=True),
    'active': Field('bool', default=True, hidden=True),
})

TOUR_SCHEMA = Schema('Tour', {
    'name': Field(
        'string', required='A tour must have a name', trim=True,
        min_length=(10, 'A tour name must have more or equal then 10 characters'),
        max_length=(40, 'A tour name must have less or equal then 40 characters'),
        checks=[(_letters_only, 'Tour name must only contain letters')],
    ),
    'slug': Field('string'),
    'duration': Field('number', required='A tour must have a duration'),
    'maxGroupSize': Field('number', required='A tour must have a group size'),
    'difficulty': Field(
        'string', required='A tour must have a difficulty',
        choices=['easy', 'medium', 'difficult'],
        choices_message='Difficulty is either: easy, medium, difficult',
    ),
    'ratingsAverage': Field(
        'number', default=4.5, setter=round_rating,
        min_value=(1, 'Rating must be above 1.0'), max_value=(5, 'Rating must be below 5.0'),
    ),
    'ratingsQuantity': Field('number', default=0),
    'price': Field('number', required='A tour must have a price'),
    'priceDiscount': Field(
        'number', checks=[(_discount_below_price, 'Discount price ({VALUE}) should be below regular price')],
    ),
    'summary': Field('string', required='A tour must have a summary', trim=True),
    'description': Field('string', trim=True),
    'imageCover': Field('string', required='A tour must have a cover image'),
    'images': Field('list', default=list, item=Field('string')),
    'createdAt': Field('date', default=utcnow, hidden=True),
    'startDates': Field('list', default=list, item=Field('date')),
    'secretTour': Field('bool', default=False),
    'startLocation': Field('point'),
    'locations': Field('list', default=list, item=Field('point')),
    'guides': Field('list', default=list, item=Field('objectid')),
})

REVIEW_SCHEMA = Schema('Review', {
    'review': Field('string', required='Review can not be empty!', trim=True),
    'rating': Field(
        'number', min_value=(1, 'Rating must be above 1.0'), max_value=(5, 'Rating must be below 5.0'),
    ),
    'createdAt': Field('date', default=utcnow),
    'tour': Field('objectid', required='Review must belong to a tour.'),
    'user': Field('objectid', required='Review must belong to a user'),
})

BOOKING_SCHEMA = Schema('Booking', {
    'tour': Field('objectid', required='Booking must belong to a Tour!'),
    'user': Field('objectid', required='Booking must belong to a User!'),
    'price': Field('number', required='Booking must have a price.'),
    'createdAt': Field('date', default=utcnow),
    'paid': Field('bool', default=True),
    'stripeSessionId': Field('string'),
})


def parse_role(value: Any) -> Optional[Role]:
    """Return the `Role` for a stored role string, or None when unknown."""
    try:
        return Role(value)
    except ValueError:
        return None
