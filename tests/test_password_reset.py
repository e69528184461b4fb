"""Forgot-password and reset-by-token flow."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

from flask import Flask

from backend.tourbook.repositories import users_repo

from conftest import PASSWORD

TOKEN_RE = re.compile(r"resetPassword/([0-9a-f]{64})")


def _mailed_token(message: Any) -> str:
    text = message.body
    match = TOKEN_RE.search(text)
    assert match, text
    return match.group(1)


def _reset(client, token: str, password: str = "brandnew123", confirm: str = "brandnew123"):
    return client.patch(
        f"/api/v1/users/resetPassword/{token}",
        json={"password": password, "passwordConfirm": confirm},
    )


def test_forgot_password_mails_link_and_stores_hash(
    app: Flask, client, make_user: Callable[..., Dict[str, Any]], outbox: List[Any]
) -> None:
    user = make_user(email="ana@example.com")

    resp = client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "success", "message": "Token sent to email!"}

    assert len(outbox) == 1
    assert outbox[0].subject.startswith("Your password reset token (valid for only 10 minutes)")
    token = _mailed_token(outbox[0])

    with app.app_context():
        stored = users_repo.find_by_id(user["_id"])
    assert stored["passwordResetToken"] != token
    assert len(stored["passwordResetToken"]) == 64
    assert stored["passwordResetExpires"] is not None


def test_forgot_password_unknown_email(client, outbox: List[Any]) -> None:
    resp = client.post("/api/v1/users/forgotPassword", json={"email": "nobody@example.com"})
    assert resp.status_code == 404
    assert resp.get_json()["message"] == "There is no user with that email address."
    assert outbox == []


def test_forgot_password_delivery_failure_clears_token(
    app: Flask, client, make_user: Callable[..., Dict[str, Any]], mail_down
) -> None:
    user = make_user(email="ana@example.com")

    resp = client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    assert resp.status_code == 500
    body = resp.get_json()
    assert body["status"] == "error"
    assert body["message"] == "There was an error sending the email. Try again later!"

    with app.app_context():
        stored = users_repo.find_by_id(user["_id"])
    assert "passwordResetToken" not in stored
    assert "passwordResetExpires" not in stored


def test_reset_password_with_valid_token(
    app: Flask, client, make_user: Callable[..., Dict[str, Any]], outbox: List[Any]
) -> None:
    user = make_user(email="ana@example.com")
    client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    token = _mailed_token(outbox[0])

    resp = _reset(client, token)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["token"]
    assert body["data"]["user"]["email"] == "ana@example.com"

    with app.app_context():
        stored = users_repo.find_by_id(user["_id"])
    assert "passwordResetToken" not in stored
    assert "passwordResetExpires" not in stored
    assert stored["passwordChangedAt"] is not None

    me = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200

    assert client.post("/api/v1/users/login", json={"email": "ana@example.com", "password": PASSWORD}).status_code == 401
    assert client.post("/api/v1/users/login", json={"email": "ana@example.com", "password": "brandnew123"}).status_code == 200


def test_reset_token_is_single_use(client, make_user: Callable[..., Dict[str, Any]], outbox: List[Any]) -> None:
    make_user(email="ana@example.com")
    client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    token = _mailed_token(outbox[0])

    assert _reset(client, token).status_code == 200
    again = _reset(client, token)
    assert again.status_code == 400
    assert again.get_json()["message"] == "Token is invalid or has expired"


def test_only_latest_reset_token_works(client, make_user: Callable[..., Dict[str, Any]], outbox: List[Any]) -> None:
    make_user(email="ana@example.com")
    client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    first, second = _mailed_token(outbox[0]), _mailed_token(outbox[1])

    assert _reset(client, first).status_code == 400
    assert _reset(client, second).status_code == 200


def test_expired_reset_token_rejected(
    app: Flask, client, make_user: Callable[..., Dict[str, Any]], outbox: List[Any]
) -> None:
    user = make_user(email="ana@example.com")
    client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    token = _mailed_token(outbox[0])

    with app.app_context():
        users_repo.update_one(
            {"_id": user["_id"]},
            {"$set": {"passwordResetExpires": datetime.now(timezone.utc) - timedelta(minutes=1)}},
        )

    resp = _reset(client, token)
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Token is invalid or has expired"


def test_reset_with_mismatched_passwords_keeps_token(
    client, make_user: Callable[..., Dict[str, Any]], outbox: List[Any]
) -> None:
    make_user(email="ana@example.com")
    client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    token = _mailed_token(outbox[0])

    bad = _reset(client, token, confirm="something-else")
    assert bad.status_code == 400
    assert bad.get_json()["errors"]["passwordConfirm"] == "Passwords are not the same!"

    assert _reset(client, token).status_code == 200


def test_reset_rejects_overlong_password_and_keeps_token(
    client, make_user: Callable[..., Dict[str, Any]], outbox: List[Any]
) -> None:
    make_user(email="ana@example.com")
    client.post("/api/v1/users/forgotPassword", json={"email": "ana@example.com"})
    token = _mailed_token(outbox[0])

    too_long = "p" * 80
    bad = _reset(client, token, password=too_long, confirm=too_long)
    assert bad.status_code == 400
    assert bad.get_json()["errors"]["password"] == "A password must not be longer than 72 bytes"

    assert _reset(client, token).status_code == 200
