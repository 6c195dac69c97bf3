"""
Mail transports for Action Hub notifications.

send() returns True on delivery and False on failure. Transports may also
raise; the dispatcher treats an exception as a failure for that recipient.
"""
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

from ... import config

logger = logging.getLogger(__name__)


class MailTransport:
    """Interface for a single-recipient send."""

    def send(
        self,
        to_email: str,
        to_name: Optional[str],
        subject_context: str,
        body: str,
        payload: Dict[str, Any],
    ) -> bool:
        raise NotImplementedError


def compose_subject(subject_context: str, payload: Dict[str, Any]) -> str:
    title = payload.get("title") or subject_context
    return f"{subject_context}: {title}" if title != subject_context else subject_context


def compose_text(to_name: Optional[str], body: str, payload: Dict[str, Any]) -> str:
    lines = [f"Hi {to_name}," if to_name else "Hello,", "", body, ""]
    if payload.get("title"):
        lines.append(f"Alert: {payload['title']}")
    if payload.get("city"):
        lines.append(f"Location: {payload['city']}")
    if payload.get("expectedStart"):
        lines.append(f"Expected start: {payload['expectedStart']}")
    if payload.get("expectedEnd"):
        lines.append(f"Expected end: {payload['expectedEnd']}")
    if payload.get("status"):
        lines.append(f"Status: {payload['status']}")
    if payload.get("description"):
        lines.extend(["", payload["description"]])
    if payload.get("link"):
        lines.extend(["", f"View in Action Hub: {payload['link']}"])
    return "\n".join(lines)


def compose_html(to_name: Optional[str], body: str, payload: Dict[str, Any]) -> str:
    text = html.escape(compose_text(to_name, body, payload)).replace("\n", "<br>")
    link = payload.get("link")
    button = (
        f'<p style="margin: 24px 0;"><a href="{html.escape(link)}" '
        f'style="background: #1f6feb; color: white; padding: 10px 24px; '
        f'text-decoration: none; border-radius: 5px;">Open Action Hub</a></p>'
        if link else ""
    )
    return (
        '<html><body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<p>{text}</p>{button}</body></html>"
    )


class SmtpMailTransport(MailTransport):
    """Delivers through an SMTP relay (STARTTLS)."""

    def __init__(
        self,
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        user: str = config.SMTP_USER,
        password: str = config.SMTP_PASS,
        from_email: str = config.EMAIL_FROM,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.timeout = timeout

    def send(self, to_email, to_name, subject_context, body, payload) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = compose_subject(subject_context, payload)
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.attach(MIMEText(compose_text(to_name, body, payload), "plain"))
        msg.attach(MIMEText(compose_html(to_name, body, payload), "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"Failed to send email to {to_email}: {e}")
            return False

        logger.info(f"Email sent successfully to {to_email}")
        return True


class LoggingMailTransport(MailTransport):
    """Development transport: logs the message instead of sending it."""

    def send(self, to_email, to_name, subject_context, body, payload) -> bool:
        logger.info(f"DEV MODE - Would send email to {to_email}")
        logger.info(f"Subject: {compose_subject(subject_context, payload)}")
        logger.debug(f"Content: {compose_text(to_name, body, payload)[:200]}...")
        return True


def default_transport() -> MailTransport:
    if config.SMTP_USER:
        return SmtpMailTransport()
    return LoggingMailTransport()
