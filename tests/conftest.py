"""Shared fixtures: an app on an in-memory Mongo, recorded outgoing mail and user helpers."""

from __future__ import annotations

import smtplib
from typing import Any, Callable, Dict, Iterator, List

import mongomock
import pytest
from bson import ObjectId
from flask import Flask

from backend.tourbook import create_app, db
from backend.tourbook.config import TestingConfig
from backend.tourbook.extensions import mail
from backend.tourbook.repositories import tours_repo, users_repo
from backend.tourbook.services.auth import tokens
from backend.tourbook.services.auth.passwords import hash_password
from backend.tourbook.services.resources import tour_handlers

PASSWORD = "pass1234"


@pytest.fixture(name="app")
def fixture_app(monkeypatch, tmp_path) -> Flask:
    client = mongomock.MongoClient()
    monkeypatch.setattr(db, "get_mongo_client", lambda: client)
    app = create_app(TestingConfig)
    app.config["IMAGE_ROOT"] = str(tmp_path / "img")
    return app


@pytest.fixture(name="outbox", autouse=True)
def fixture_outbox() -> Iterator[List[Any]]:
    with mail.record_messages() as outbox:
        yield outbox


@pytest.fixture(name="mail_down")
def fixture_mail_down(app: Flask, monkeypatch) -> None:
    """Make every delivery attempt fail while connecting to the SMTP server."""
    def refuse(*args: Any, **kwargs: Any):
        raise ConnectionRefusedError("mail server unavailable")

    app.extensions["mail"].suppress = False
    monkeypatch.setattr(smtplib, "SMTP", refuse)


@pytest.fixture(name="client")
def fixture_client(app: Flask):
    return app.test_client()


@pytest.fixture(name="make_user")
def fixture_make_user(app: Flask) -> Callable[..., Dict[str, Any]]:
    def _make(name: str = "Test User", email: str | None = None, role: str = "user", **extra: Any) -> Dict[str, Any]:
        doc = {
            "name": name,
            "email": email or f"{ObjectId()}@example.com",
            "role": role,
            "photo": "default.jpg",
            "active": True,
            **extra,
        }
        with app.app_context():
            doc["password"] = hash_password(PASSWORD)
            user_id = users_repo.insert_one(doc)
            return users_repo.find_by_id(user_id, unscoped=True)

    return _make


@pytest.fixture(name="auth_header")
def fixture_auth_header(app: Flask) -> Callable[[Dict[str, Any]], Dict[str, str]]:
    def _header(user: Dict[str, Any]) -> Dict[str, str]:
        with app.app_context():
            token = tokens.issue(user["_id"])
        return {"Authorization": f"Bearer {token}"}

    return _header


def tour_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "name": "The Forest Hiker",
        "duration": 5,
        "maxGroupSize": 25,
        "difficulty": "easy",
        "price": 397,
        "summary": "Breathtaking hike through the Canadian Banff National Park",
        "imageCover": "tour-1-cover.jpg",
        "startDates": ["2027-04-25T09:00:00Z", "2027-07-20T09:00:00Z"],
        "startLocation": {"type": "Point", "coordinates": [-115.570154, 51.178456], "description": "Banff, CAN"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture(name="make_tour")
def fixture_make_tour(app: Flask) -> Callable[..., Dict[str, Any]]:
    def _make(**overrides: Any) -> Dict[str, Any]:
        with app.app_context():
            created = tour_handlers.create_one(tour_payload(**overrides))
            if overrides.get("secretTour"):
                return tours_repo.find_by_id(created["_id"], unscoped=True)
            return tours_repo.find_by_id(created["_id"])

    return _make


@pytest.fixture(name="tour_data")
def fixture_tour_data() -> Callable[..., Dict[str, Any]]:
    return tour_payload
