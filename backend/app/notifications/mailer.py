"""
mailer.py — Email copies of leave events (SMTP side-channel).

Email is not part of the WhatsApp fallback chain. It runs next to it:
the applicant gets an email for every status change and the reviewer for
every new application, whichever WhatsApp channel (if any) delivered.

Delivery mechanism:
    • SMTP with STARTTLS and optional login (smtplib)
    • multipart/alternative: plain text + HTML
    • The blocking SMTP session runs in a worker thread

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATES
═══════════════════════════════════════════════════════════════════════════

    Subject: Leave Application Approved - sick
    Body:
        ┌─────────────────────────────────────────┐
        │  GVPCEW Leave Management System          │
        │  Leave Application Approved              │
        ├─────────────────────────────────────────┤
        │  Dear Asha Rao,                          │
        │  Leave Type / Status / Reviewed by       │
        │  Comments (when given)                   │
        └─────────────────────────────────────────┘

    Subject: New Leave Application - Asha Rao
        Applicant / Leave Type / Duration

SMTP_HOST and a sender address (SMTP_FROM_EMAIL, else SMTP_USER) are
both required; without them the notifier reports ``configured = False``
and the service skips email.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Union

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.errors import ConfigurationMissingError, TransportFailureError
from backend.app.notifications.models import LeaveStatus

logger = logging.getLogger(__name__)

CHANNEL = "email"

_STATUS_COLOUR = {
    LeaveStatus.APPROVED: "#059669",   # green
    LeaveStatus.REJECTED: "#DC2626",   # red
}


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    plain: str
    html: str


def _wrap_html(institution_short_name: str, inner: str) -> str:
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;">
      <h2 style="color:#2563EB;">{html.escape(institution_short_name)} Leave Management System</h2>
      {inner}
      <div style="margin-top:30px;padding-top:20px;border-top:1px solid #e5e7eb;color:#6b7280;font-size:12px;">
        <p>This is an automated message from {html.escape(institution_short_name)} Leave Management System.</p>
      </div>
    </div>
    """


def build_status_email(
    applicant_name: str,
    leave_type: str,
    status: Union[str, LeaveStatus],
    reviewer_name: str,
    comments: str = "",
    *,
    institution_short_name: str = default_settings.INSTITUTION_SHORT_NAME,
) -> RenderedEmail:
    """Applicant-facing email for an approved or rejected application."""
    st = LeaveStatus(str(getattr(status, "value", status)).strip().lower())
    title = st.value.capitalize()
    colour = _STATUS_COLOUR[st]

    plain_lines = [
        f"{institution_short_name} Leave Management System",
        f"Leave Application {title}",
        "",
        f"Dear {applicant_name},",
        f"Your leave application has been {st.value}.",
        "",
        f"Leave Type: {leave_type}",
        f"Status: {title}",
        f"Reviewed by: {reviewer_name}",
    ]
    if comments:
        plain_lines.append(f"Comments: {comments}")

    comments_html = (
        f"<p><strong>Comments:</strong> {html.escape(comments)}</p>" if comments else ""
    )
    inner = f"""
      <h3 style="color:{colour};">Leave Application {title}</h3>
      <p>Dear {html.escape(applicant_name)},</p>
      <p>Your leave application has been <strong style="color:{colour};">{st.value}</strong>.</p>
      <div style="background-color:#f3f4f6;padding:20px;border-radius:8px;margin:20px 0;">
        <p><strong>Leave Type:</strong> {html.escape(leave_type)}</p>
        <p><strong>Status:</strong> <span style="color:{colour};">{title}</span></p>
        <p><strong>Reviewed by:</strong> {html.escape(reviewer_name)}</p>
        {comments_html}
      </div>
      <p>You can view the complete details by logging into the Leave Management System.</p>
    """
    return RenderedEmail(
        subject=f"Leave Application {title} - {leave_type}",
        plain="\n".join(plain_lines),
        html=_wrap_html(institution_short_name, inner),
    )


def build_application_email(
    applicant_name: str,
    leave_type: str,
    date_range_start: str,
    date_range_end: str,
    *,
    institution_short_name: str = default_settings.INSTITUTION_SHORT_NAME,
) -> RenderedEmail:
    """Reviewer-facing email for a newly submitted application."""
    plain = "\n".join([
        f"{institution_short_name} Leave Management System",
        "New Leave Application Received",
        "",
        f"Applicant: {applicant_name}",
        f"Leave Type: {leave_type}",
        f"Duration: {date_range_start} to {date_range_end}",
        "",
        "Please log in to the Leave Management System to review this application.",
    ])
    inner = f"""
      <h3>New Leave Application Received</h3>
      <p>A new leave application has been submitted and requires your review:</p>
      <div style="background-color:#f3f4f6;padding:20px;border-radius:8px;margin:20px 0;">
        <p><strong>Applicant:</strong> {html.escape(applicant_name)}</p>
        <p><strong>Leave Type:</strong> {html.escape(leave_type)}</p>
        <p><strong>Duration:</strong> {html.escape(date_range_start)} to {html.escape(date_range_end)}</p>
      </div>
      <p>Please log in to the Leave Management System to review and process this application.</p>
    """
    return RenderedEmail(
        subject=f"New Leave Application - {applicant_name}",
        plain=plain,
        html=_wrap_html(institution_short_name, inner),
    )


class EmailNotifier:
    """Sends rendered emails over SMTP."""

    def __init__(
        self,
        *,
        host: Optional[str] = None,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_address: Optional[str] = None,
        use_tls: bool = True,
        timeout_seconds: float = 20.0,
        sender_name: str = "GVPCEW LMS",
    ) -> None:
        self.host = (host or "").strip() or None
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address or username
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds
        self.sender_name = sender_name

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "EmailNotifier":
        cfg = config or default_settings
        return cls(
            host=cfg.SMTP_HOST,
            port=cfg.SMTP_PORT,
            username=cfg.SMTP_USER,
            password=cfg.SMTP_PASSWORD,
            from_address=cfg.SMTP_FROM_EMAIL,
            use_tls=cfg.SMTP_TLS,
            timeout_seconds=cfg.SMTP_TIMEOUT_SECONDS,
            sender_name=f"{cfg.INSTITUTION_SHORT_NAME} LMS",
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_address)

    def _build_message(self, to: str, email: RenderedEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = email.subject
        msg["From"] = f'"{self.sender_name}" <{self.from_address}>'
        msg["To"] = to
        msg.set_content(email.plain)
        msg.add_alternative(email.html, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        """Blocking SMTP session; run off the event loop."""
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, to: str, email: RenderedEmail) -> None:
        """
        Send one email.

        Raises
        ------
        ConfigurationMissingError
            No SMTP host or sender address.
        TransportFailureError
            SMTP refused the message or the server was unreachable.
        """
        if not self.configured:
            raise ConfigurationMissingError(CHANNEL, "SMTP not configured")

        msg = self._build_message(to, email)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "Email '%s' to %s failed: %s", email.subject, to, exc,
                extra={"channel": CHANNEL},
            )
            raise TransportFailureError(CHANNEL, str(exc)) from exc

        logger.info("Email '%s' sent to %s", email.subject, to, extra={"channel": CHANNEL})
