"""Transactional email notifications for account lifecycle events.

The auth service treats delivery as best effort: a notifier is called once
per event and its outcome never changes the result of the transition.

SmtpNotifier renders HTML bodies from Jinja2 templates and sends them with
smtplib off the event loop. LogNotifier only logs the links and is meant for
local development.
"""

from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from urllib.parse import quote, urlencode

import structlog
from anyio import to_thread
from jinja2 import Environment, FileSystemLoader, select_autoescape

if TYPE_CHECKING:
    from accounts.auth.settings import MailSettings

logger = structlog.get_logger()

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


class NotificationKind(StrEnum):
    SIGNUP_CONFIRMATION = "signup_confirmation"
    ACCOUNT_ACTIVATED = "account_activated"
    PASSWORD_RESET = "password_reset"
    PASSWORD_RESET_DONE = "password_reset_done"
    EMAIL_CHANGE_CONFIRMATION = "email_change_confirmation"
    PASSWORD_CHANGED = "password_changed"


SUBJECTS = {
    NotificationKind.SIGNUP_CONFIRMATION: "Confirm your registration",
    NotificationKind.ACCOUNT_ACTIVATED: "Your account is active",
    NotificationKind.PASSWORD_RESET: "Reset your password",
    NotificationKind.PASSWORD_RESET_DONE: "Password updated",
    NotificationKind.EMAIL_CHANGE_CONFIRMATION: "Confirm your new email address",
    NotificationKind.PASSWORD_CHANGED: "Your password was changed",
}


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    recipient: str
    token: str | None = None  # action token or email-change id, when the mail carries a link


@runtime_checkable
class Notifier(Protocol):
    """One-way delivery of lifecycle notifications."""

    async def notify(self, notification: Notification) -> None: ...


@dataclass(frozen=True)
class LinkBuilder:
    """Build the URLs embedded in emails from the configured API and client origins."""

    api_url: str
    client_url: str

    def link_for(self, notification: Notification) -> str:
        api = self.api_url.rstrip("/")
        client = self.client_url.rstrip("/")
        token = notification.token or ""
        match notification.kind:
            case NotificationKind.SIGNUP_CONFIRMATION:
                return f"{api}/auth/verify-email/{quote(token, safe='')}"
            case NotificationKind.PASSWORD_RESET:
                return f"{client}/reset-password/{quote(token, safe='')}"
            case NotificationKind.EMAIL_CHANGE_CONFIRMATION:
                return f"{client}/profile/confirm-email?{urlencode({'token': token})}"
            case NotificationKind.ACCOUNT_ACTIVATED | NotificationKind.PASSWORD_RESET_DONE:
                return f"{client}/sign-in"
            case NotificationKind.PASSWORD_CHANGED:
                return client


def create_mail_templates() -> Environment:
    """Create the Jinja2 environment for email bodies."""
    return Environment(loader=FileSystemLoader(str(TEMPLATES_DIR)), autoescape=select_autoescape(["html"]))


class SmtpNotifier:
    """Send notifications as HTML email through an SMTP relay."""

    def __init__(self, settings: MailSettings, links: LinkBuilder) -> None:
        self._settings = settings
        self._links = links
        self._templates = create_mail_templates()

    def build_message(self, notification: Notification) -> EmailMessage:
        """Render the email for a notification."""
        link = self._links.link_for(notification)
        template = self._templates.get_template(f"{notification.kind.value}.html")
        html = template.render(link=link)

        msg = EmailMessage()
        msg["Subject"] = SUBJECTS[notification.kind]
        msg["From"] = self._settings.sender
        msg["To"] = notification.recipient
        msg.set_content(f"{SUBJECTS[notification.kind]}\n\n{link}\n")
        msg.add_alternative(html, subtype="html")
        return msg

    async def notify(self, notification: Notification) -> None:
        msg = self.build_message(notification)
        await to_thread.run_sync(self._dispatch_smtp, msg)
        logger.info("email sent", kind=notification.kind)

    def _dispatch_smtp(self, msg: EmailMessage) -> None:
        """Open an SMTP connection, authenticate if configured, send, and close."""
        settings = self._settings
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_seconds) as smtp:
            if settings.use_tls:
                smtp.starttls()
            if settings.username:
                smtp.login(settings.username, settings.password)
            smtp.send_message(msg)


class LogNotifier:
    """Log notification links instead of sending mail (local development only)."""

    def __init__(self, links: LinkBuilder) -> None:
        self._links = links

    async def notify(self, notification: Notification) -> None:
        logger.info(
            "notification not sent, mail backend is 'log'",
            kind=notification.kind,
            recipient=notification.recipient,
            link=self._links.link_for(notification),
        )


def get_notifier(settings: MailSettings, links: LinkBuilder) -> Notifier:
    """Return a Notifier for the configured mail backend ("smtp" or "log")."""
    if settings.backend == "smtp":
        return SmtpNotifier(settings, links)
    if settings.backend == "log":
        return LogNotifier(links)
    raise ValueError(f"Unknown mail backend: {settings.backend!r}")
