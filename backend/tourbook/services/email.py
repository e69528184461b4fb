"""Transactional email through Flask-Mail.

`Email` renders a Jinja template from `templates/email/` into an HTML body
with a plain-text alternative and sends it with the app's `mail` extension.
Any delivery failure surfaces as `DeliveryError`; callers decide whether it
is fatal.
"""

from __future__ import annotations

import html
import logging
import re
import smtplib
from typing import Any, Dict

from flask import current_app, render_template
from flask_mail import BadHeaderError, Message

from backend.tourbook.errors import DeliveryError
from backend.tourbook.extensions import mail

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r'<[^>]+>')
_BLANK_LINES_RE = re.compile(r'\n\s*\n+')

# What mail.send raises when the SMTP conversation fails
MAIL_ERRORS = (smtplib.SMTPException, OSError, BadHeaderError)


def html_to_text(markup: str) -> str:
    text = re.sub(r'(?is)<(style|head)[^>]*>.*?</\1>', '', markup)
    text = re.sub(r'(?i)<br\s*/?>|</p>|</h\d>|</li>', '\n', text)
    text = html.unescape(_TAG_RE.sub('', text))
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub('\n\n', '\n'.join(lines)).strip()


class Email:
    """Outgoing message for one user, pointing at `url`."""

    def __init__(self, user: Dict[str, Any], url: str):
        self.to = user['email']
        self.first_name = (user.get('name') or '').split(' ')[0]
        self.url = url
        self.sender = (
            current_app.config.get('EMAIL_FROM_NAME') or 'Tourbook',
            current_app.config['MAIL_DEFAULT_SENDER'],
        )

    def build(self, template: str, subject: str) -> Message:
        body = render_template(
            f'email/{template}.html',
            first_name=self.first_name,
            url=self.url,
            subject=subject,
        )
        return Message(
            subject=subject,
            recipients=[self.to],
            sender=self.sender,
            body=html_to_text(body),
            html=body,
        )

    def send(self, template: str, subject: str) -> None:
        message = self.build(template, subject)
        logger.info("Sending %s email to %s", template, self.to)
        try:
            mail.send(message)
        except MAIL_ERRORS as e:
            logger.exception("Failed to send %s email to %s", template, self.to)
            raise DeliveryError() from e

    def send_welcome(self) -> None:
        self.send('welcome', 'Welcome to the Tourbook Family!')

    def send_password_reset(self) -> None:
        minutes = current_app.config.get('PASSWORD_RESET_EXPIRES_MINUTES', 10)
        self.send('password_reset', f'Your password reset token (valid for only {minutes} minutes)')
