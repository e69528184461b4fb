"""JSON serialization helpers shared by the API blueprints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from flask import jsonify, request


def sanitize_for_json(obj):
    """Recursively convert types that Flask/json can't serialize (ObjectId, datetime)."""
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def success(data: Optional[Dict[str, Any]] = None, *, status: int = 200, results: Optional[int] = None, **extra):
    """Build the standard `{status: success, ...}` JSON response."""
    if status == 204:
        return '', 204
    body: Dict[str, Any] = {"status": "success"}
    if results is not None:
        body["results"] = results
    body.update(extra)
    if data is not None:
        body["data"] = data
    return jsonify(sanitize_for_json(body)), status


def request_payload() -> Dict[str, Any]:
    """Return the JSON body, or the form fields for multipart/urlencoded requests."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return dict(data)
    return request.form.to_dict()
