"""
Outgoing email through Flask-Mail.
"""

import logging
import smtplib

from flask_mail import Mail, Message
from markupsafe import escape

from supermarket.errors import DispatchFailure

log = logging.getLogger(__name__)

mail = Mail()


class Mailer:
    """``send(to, subject, body_html)``; raises DispatchFailure when delivery fails."""

    def __init__(self, mail_ext=mail):
        self.mail = mail_ext

    def send(self, to, subject, body_html):
        msg = Message(subject=subject, recipients=[to], html=body_html)
        try:
            self.mail.send(msg)
        except (smtplib.SMTPException, OSError) as exc:
            log.error("Mail to %s failed: %s", to, exc)
            raise DispatchFailure() from exc


def otp_email(username, code, ttl_seconds):
    """Subject and HTML body for a verification code."""
    minutes = max(1, ttl_seconds // 60)
    subject = "Your Supermarket verification code"
    body = (
        f"<p>Hello {escape(username)},</p>"
        f"<p>Your verification code is: <strong>{code}</strong></p>"
        f"<p>It will expire in {minutes} minute{'s' if minutes != 1 else ''}.</p>"
    )
    return subject, body
