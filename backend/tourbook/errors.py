"""Error taxonomy and the centralized error translator.

Route handlers and services raise `AppError` subclasses; library errors
(duplicate keys, malformed ObjectIds, werkzeug HTTP errors) are mapped onto
the same taxonomy here. API requests get a JSON body, browser navigation
gets the rendered error view.
"""

from __future__ import annotations

import logging
import re
import traceback
from typing import Any, Dict, Optional

from bson.errors import InvalidId
from flask import current_app, jsonify, render_template, request
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for operational errors that are safe to show to clients."""

    def __init__(self, message: str, *, status: int = 400, code: str = "error") -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    @property
    def status_label(self) -> str:
        return "fail" if 400 <= self.status < 500 else "error"


class ValidationError(AppError):
    """Raised when incoming data fails validation.

    `errors` maps field names to messages when the failure is field-level.
    """

    def __init__(self, message: str, *, errors: Optional[Dict[str, str]] = None, code: str = "validation_failed") -> None:
        super().__init__(message, status=400, code=code)
        self.errors = errors or {}


class Unauthenticated(AppError):
    def __init__(self, message: str = "You are not logged in! Please log in to get access.") -> None:
        super().__init__(message, status=401, code="unauthenticated")


class Forbidden(AppError):
    def __init__(self, message: str = "You do not have permission to perform this action") -> None:
        super().__init__(message, status=403, code="forbidden")


class NotFound(AppError):
    def __init__(self, message: str = "No document found with that ID") -> None:
        super().__init__(message, status=404, code="not_found")


class Conflict(AppError):
    """Raised when a unique constraint is violated."""

    def __init__(self, message: str, *, errors: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message, status=409, code="conflict")
        self.errors = errors or {}


class InvalidOrExpiredToken(AppError):
    def __init__(self, message: str = "Token is invalid or has expired") -> None:
        super().__init__(message, status=400, code="invalid_or_expired_token")


class DeliveryError(AppError):
    def __init__(self, message: str = "There was an error sending the email. Try again later!") -> None:
        super().__init__(message, status=500, code="delivery_failed")


class UpstreamError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status=502, code="upstream_error")


_DUP_KEY_RE = re.compile(r'dup key: \{\s*(?P<body>.*?)\s*\}')


def conflict_from_duplicate_key(error: DuplicateKeyError) -> Conflict:
    """Translate a unique-index violation into a `Conflict` with field errors."""
    details = getattr(error, 'details', None) or {}
    key_value = details.get('keyValue') or {}
    if key_value:
        fields = {name: f"Duplicate value {value!r}" for name, value in key_value.items()}
        shown = ', '.join(f"{name}: {value!r}" for name, value in key_value.items())
    else:
        match = _DUP_KEY_RE.search(str(error))
        shown = match.group('body') if match else 'unknown'
        fields = {}
    return Conflict(f"Duplicate field value: {shown}. Please use another value!", errors=fields)


def _wants_json() -> bool:
    path = request.path or ''
    return path.startswith('/api') or path.startswith('/webhook')


def _render(error: AppError, *, detail: Optional[Dict[str, Any]] = None):
    if _wants_json():
        body: Dict[str, Any] = {"status": error.status_label, "message": error.message}
        extra = getattr(error, 'errors', None)
        if extra:
            body["errors"] = extra
        if detail:
            body.update(detail)
        return jsonify(body), error.status

    return render_template('error.html', title='Something went wrong!', msg=error.message), error.status


def register_error_handlers(app) -> None:
    """Attach the centralized error translator to `app`."""

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.status >= 500:
            logger.error("%s: %s", type(error).__name__, error.message)
        return _render(error)

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(error: DuplicateKeyError):
        return _render(conflict_from_duplicate_key(error))

    @app.errorhandler(InvalidId)
    def handle_invalid_id(error: InvalidId):
        return _render(ValidationError(f"Invalid _id: {error}"))

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        if error.code == 404:
            message = f"Can't find {request.path} on this server!"
        elif error.code == 413:
            message = "Request body is too large!"
        elif error.code == 429:
            message = "Too many requests from this IP, please try again in an hour!"
        else:
            message = error.description or error.name
        return _render(AppError(message, status=error.code or 500, code=error.name.lower().replace(' ', '_')))

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        detail = None
        if current_app.debug:
            detail = {"error": repr(error), "trace": traceback.format_exc()}
            message = str(error) or type(error).__name__
        else:
            message = "Something went very wrong!"
        return _render(AppError(message, status=500, code="internal_server_error"), detail=detail)
