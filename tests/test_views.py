"""Server-rendered pages and the soft login check."""

from __future__ import annotations

from typing import Any, Callable, Dict

from flask import Flask
from pymongo.errors import ServerSelectionTimeoutError

from backend.tourbook.repositories import bookings_repo, users_repo

from conftest import PASSWORD


def _login(client, email: str) -> None:
    resp = client.post("/api/v1/users/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200


def test_overview_lists_public_tours(client, make_tour: Callable[..., Dict[str, Any]]) -> None:
    make_tour(name="The Forest Hiker")
    make_tour(name="The Hidden Valley", secretTour=True)

    resp = client.get("/")
    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert "The Forest Hiker" in html
    assert "The Hidden Valley" not in html
    assert "Log in" in html
    assert "/tour/the-forest-hiker" in html


def test_tour_page_by_slug(
    client, make_tour: Callable[..., Dict[str, Any]], make_user: Callable[..., Dict[str, Any]]
) -> None:
    guide = make_user(name="Miyah Myles", role="lead-guide")
    make_tour(guides=[str(guide["_id"])])

    resp = client.get("/tour/the-forest-hiker")
    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert "The Forest Hiker tour" in html
    assert "Miyah Myles" in html
    assert "Lead guide" in html
    assert "Log in to book tour" in html


def test_unknown_tour_page_renders_error_view(client) -> None:
    resp = client.get("/tour/no-such-tour")
    assert resp.status_code == 404
    assert resp.mimetype == "text/html"
    assert "There is no tour with that name." in resp.get_data(as_text=True)


def test_account_page_requires_login(client) -> None:
    resp = client.get("/me")
    assert resp.status_code == 401
    assert "You are not logged in!" in resp.get_data(as_text=True)


def test_logged_in_pages(client, make_user: Callable[..., Dict[str, Any]], make_tour) -> None:
    make_user(name="Kim Park", email="kim@example.com")
    make_tour()
    _login(client, "kim@example.com")

    overview = client.get("/").get_data(as_text=True)
    assert "Log out" in overview
    assert "Kim" in overview

    tour_page = client.get("/tour/the-forest-hiker").get_data(as_text=True)
    assert "Book tour now!" in tour_page

    account = client.get("/me")
    assert account.status_code == 200
    assert 'value="kim@example.com"' in account.get_data(as_text=True)


def test_invalid_cookie_leaves_visitor_anonymous(client, make_user: Callable[..., Dict[str, Any]]) -> None:
    make_user(email="kim@example.com")
    _login(client, "kim@example.com")
    client.get("/api/v1/users/logout")

    html = client.get("/").get_data(as_text=True)
    assert "Log in" in html
    assert "Log out" not in html


def test_my_tours_shows_only_booked_tours(
    app: Flask, client, make_user: Callable[..., Dict[str, Any]], make_tour: Callable[..., Dict[str, Any]]
) -> None:
    user = make_user(email="kim@example.com")
    booked = make_tour(name="The Booked Journey")
    make_tour(name="The Other Journey")
    with app.app_context():
        bookings_repo.insert_one({"tour": booked["_id"], "user": user["_id"], "price": 397, "paid": True})

    _login(client, "kim@example.com")
    html = client.get("/my-tours?alert=booking").get_data(as_text=True)
    assert "The Booked Journey" in html
    assert "The Other Journey" not in html
    assert "Your booking was successful!" in html


def test_submit_user_data_form(client, make_user: Callable[..., Dict[str, Any]]) -> None:
    make_user(name="Kim Park", email="kim@example.com")
    _login(client, "kim@example.com")

    resp = client.post("/submit-user-data", data={"name": "Kimberly Park", "email": "kim@example.com"})
    assert resp.status_code == 200
    assert 'value="Kimberly Park"' in resp.get_data(as_text=True)


def test_pages_stay_anonymous_when_user_lookup_fails(
    client, monkeypatch, make_user: Callable[..., Dict[str, Any]]
) -> None:
    make_user(email="kim@example.com")
    _login(client, "kim@example.com")

    def unreachable(*args: Any, **kwargs: Any):
        raise ServerSelectionTimeoutError("no servers available")

    monkeypatch.setattr(users_repo, "find_one", unreachable)

    resp = client.get("/login")
    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert "Log in" in html
    assert "Log out" not in html
