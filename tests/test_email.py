"""Outgoing mail rendering and delivery through Flask-Mail."""

from __future__ import annotations

from typing import Any, List

import pytest
from flask import Flask

from backend.tourbook.errors import DeliveryError
from backend.tourbook.services.email import Email, html_to_text


def test_html_to_text_keeps_links_and_paragraphs() -> None:
    markup = "<html><head><style>p {}</style></head><body><p>Hi Ana,</p><p>Go to <a href='x'>http://x/y</a></p></body></html>"
    assert html_to_text(markup) == "Hi Ana,\nGo to http://x/y"


def test_welcome_message_has_html_and_text_parts(app: Flask) -> None:
    user = {"email": "ana@example.com", "name": "Ana Lucia Costa"}
    with app.test_request_context():
        message = Email(user, "http://localhost/me").build("welcome", "Welcome to the Tourbook Family!")

    assert message.recipients == ["ana@example.com"]
    assert message.sender == "Tourbook <no-reply@tourbook.local>"
    assert message.subject == "Welcome to the Tourbook Family!"
    assert "Hi Ana," in message.body
    assert "http://localhost/me" in message.html


def test_send_records_message(app: Flask, outbox: List[Any]) -> None:
    with app.test_request_context():
        Email({"email": "ana@example.com", "name": "Ana"}, "http://localhost/me").send_welcome()
    assert len(outbox) == 1
    assert outbox[0].subject == "Welcome to the Tourbook Family!"


def test_send_failure_becomes_delivery_error(app: Flask, mail_down, outbox: List[Any]) -> None:
    with app.test_request_context():
        with pytest.raises(DeliveryError) as excinfo:
            Email({"email": "ana@example.com", "name": "Ana"}, "http://localhost").send_password_reset()
    assert excinfo.value.status == 500
    assert isinstance(excinfo.value.__cause__, ConnectionRefusedError)
    assert outbox == []
