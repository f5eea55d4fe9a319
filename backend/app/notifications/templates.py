"""
templates.py — Message rendering for leave notifications.

Every function here is pure: same arguments, same string, no I/O. The
institution header and footer come from settings, which are resolved once
at import time, so rendering never touches the environment.

═══════════════════════════════════════════════════════════════════════════
STATUS-CHANGE TEMPLATE
═══════════════════════════════════════════════════════════════════════════

    🏫 *GVPCEW Leave Management System*

    ✅ *Leave Application APPROVED*

    👤 *Student:* Asha Rao
    📅 *Leave Type:* sick
    🗓️ *Duration:* 2024-03-01 to 2024-03-03

    👨‍💼 *Reviewed by:* Dr. Menon
    💬 *Comments:* Get well soon

    ✨ Your leave application has been approved. ...

    📱 *Gayatri Vidya Parishad College of Engineering for Women*

WhatsApp renders *text* as bold; other channels show the asterisks as-is.
"""

from __future__ import annotations

import re
from typing import Sequence, Union

from backend.app.core.config import settings
from backend.app.core.errors import MalformedRequestError
from backend.app.notifications.models import LeaveStatus

_GUIDANCE = {
    LeaveStatus.APPROVED: (
        "Your leave application has been approved. Please ensure all pending "
        "work is completed before your leave period."
    ),
    LeaveStatus.REJECTED: (
        "Your leave application has been rejected. Please contact your "
        "supervisor for more details."
    ),
}

_STATUS_ICON = {
    LeaveStatus.APPROVED: "✅",
    LeaveStatus.REJECTED: "❌",
}

DateRange = Union[str, Sequence[str]]


def _coerce_status(status: Union[str, LeaveStatus]) -> LeaveStatus:
    if isinstance(status, LeaveStatus):
        return status
    try:
        return LeaveStatus(str(status).strip().lower())
    except ValueError as exc:
        raise MalformedRequestError(
            f"status must be one of {[s.value for s in LeaveStatus]}",
            field="status",
        ) from exc


def format_date_range(date_range: DateRange) -> str:
    """Render a (start, end) pair as "start to end"; strings pass through."""
    if isinstance(date_range, str):
        return date_range
    parts = [str(p) for p in date_range]
    if len(parts) == 1 or (len(parts) == 2 and parts[0] == parts[1]):
        return parts[0]
    if len(parts) != 2:
        raise MalformedRequestError(
            "date_range must be a string or a (start, end) pair",
            field="date_range",
        )
    return f"{parts[0]} to {parts[1]}"


def format_status_change_message(
    applicant_name: str,
    leave_type: str,
    date_range: DateRange,
    status: Union[str, LeaveStatus],
    reviewer_name: str,
    comments: str = "",
    *,
    institution_name: str = settings.INSTITUTION_NAME,
    institution_short_name: str = settings.INSTITUTION_SHORT_NAME,
) -> str:
    """
    Build the applicant-facing status-change message.

    Parameters
    ----------
    applicant_name, leave_type : str
        Must be non-empty.
    date_range : str | (str, str)
        Either a preformatted duration or a (start, end) pair.
    status : LeaveStatus | str
        "approved" or "rejected" (case-insensitive).
    reviewer_name, comments : str
        May be empty; rendered as-is.

    Returns
    -------
    str
        The rendered body. Contains every argument literally.

    Raises
    ------
    MalformedRequestError
        If applicant_name or leave_type is empty, or status is unknown.
    """
    if not applicant_name or not applicant_name.strip():
        raise MalformedRequestError("applicant_name is required", field="applicant_name")
    if not leave_type or not leave_type.strip():
        raise MalformedRequestError("leave_type is required", field="leave_type")

    st = _coerce_status(status)
    duration = format_date_range(date_range)

    lines = [
        f"🏫 *{institution_short_name} Leave Management System*",
        "",
        f"{_STATUS_ICON[st]} *Leave Application {st.value.upper()}*",
        "",
        f"👤 *Student:* {applicant_name}",
        f"📅 *Leave Type:* {leave_type}",
        f"🗓️ *Duration:* {duration}",
        "",
        f"👨‍💼 *Reviewed by:* {reviewer_name}",
        f"💬 *Comments:* {comments}",
        "",
        f"✨ {_GUIDANCE[st]}",
        "",
        f"📱 *{institution_name}*",
    ]
    return "\n".join(lines)


def format_application_alert(
    reviewer_name: str,
    applicant_name: str,
    leave_type: str,
    date_range_start: str,
    date_range_end: str,
    leave_days: int,
    *,
    institution_name: str = settings.INSTITUTION_NAME,
    institution_short_name: str = settings.INSTITUTION_SHORT_NAME,
) -> str:
    """Reviewer-facing alert for a newly submitted application."""
    if not applicant_name or not applicant_name.strip():
        raise MalformedRequestError("applicant_name is required", field="applicant_name")
    if not leave_type or not leave_type.strip():
        raise MalformedRequestError("leave_type is required", field="leave_type")

    day_word = "day" if leave_days == 1 else "days"
    lines = [
        f"🔔 *{institution_short_name} Leave Management Alert*",
        "",
        f"Dear {reviewer_name},",
        "",
        "A new leave application requires your review:",
        "",
        f"👤 *Applicant:* {applicant_name}",
        f"📝 *Leave Type:* {leave_type}",
        f"📅 *Duration:* {format_date_range((date_range_start, date_range_end))}"
        f" ({leave_days} {day_word})",
        "",
        "Please log in to the Leave Management System to review this application.",
        "",
        "---",
        f"*{institution_name}*",
    ]
    return "\n".join(lines)


def format_destination_for_log(destination: str, redact: bool = True) -> str:
    """
    Mask all but the last four digits of a phone-like destination.

    "+91 98765 43210" → "+********3210" when redact is True; only the
    last four digits survive, whatever the country code.
    """
    if not redact:
        return destination
    digits = re.sub(r"\D", "", destination)
    if len(digits) <= 4:
        return "*" * len(digits)
    prefix = "+" if destination.strip().startswith("+") else ""
    hidden = len(digits) - 4
    return f"{prefix}{'*' * hidden}{digits[-4:]}"
