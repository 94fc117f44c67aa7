"""
Deterministic note templates for ATS writeback.
Same params always give the same text, so the idempotency key derived from
the note body is stable across retries.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from schedsync.schemas.records import (
    BookedNoteParams,
    CancelledNoteParams,
    LinkCreatedNoteParams,
    RescheduledNoteParams,
)


def format_utc(value: datetime) -> str:
    """2024-01-15T14:00:00.000Z"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_local(value: datetime, tz_name: str) -> str:
    """Mon, Jan 15, 2024, 9:00 AM EST - falls back to UTC for unknown zone names."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    try:
        local = value.astimezone(ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError):
        local = value.astimezone(timezone.utc)
    hour = local.hour % 12 or 12
    return (
        f"{local:%a}, {local:%b} {local.day}, {local.year}, "
        f"{hour}:{local:%M} {local:%p} {local.tzname()}"
    )


def _interviewers(emails: list[str]) -> str:
    return ", ".join(emails)


def format_link_created_note(params: LinkCreatedNoteParams) -> str:
    lines = [
        "=== SCHEDULING LINK CREATED ===",
        "",
        f"Scheduling Request ID: {params.scheduling_request_id}",
        f"Application ID: {params.application_id or 'N/A'}",
        "",
        f"Public Link: {params.public_link}",
        "",
        f"Interview Type: {params.interview_type}",
        f"Duration: {params.duration_minutes} minutes",
        "",
        f"Interviewer(s): {_interviewers(params.interviewer_emails)}",
        f"Organizer: {params.organizer_email}",
        "",
        "Available Window:",
        f"  Start: {format_utc(params.window_start)} (UTC)",
        f"  End: {format_utc(params.window_end)} (UTC)",
        f"  Candidate Timezone: {params.candidate_timezone}",
        "",
        "================================",
    ]
    return "\n".join(lines)


def format_booked_note(params: BookedNoteParams) -> str:
    tz = params.candidate_timezone
    lines = [
        "=== INTERVIEW BOOKED ===",
        "",
        f"Scheduling Request ID: {params.scheduling_request_id}",
        f"Booking ID: {params.booking_id}",
        f"Application ID: {params.application_id or 'N/A'}",
        "",
        "Scheduled Time (UTC):",
        f"  Start: {format_utc(params.scheduled_start_utc)}",
        f"  End: {format_utc(params.scheduled_end_utc)}",
        "",
        f"Scheduled Time ({tz}):",
        f"  Start: {format_local(params.scheduled_start_utc, tz)}",
        f"  End: {format_local(params.scheduled_end_utc, tz)}",
        "",
        f"Interviewer(s): {_interviewers(params.interviewer_emails)}",
        f"Organizer: {params.organizer_email}",
        "",
        f"Calendar Event ID: {params.calendar_event_id or 'N/A'}",
        f"Join URL: {params.join_url or 'N/A'}",
        "",
        "========================",
    ]
    return "\n".join(lines)


def format_cancelled_note(params: CancelledNoteParams) -> str:
    lines = [
        "=== INTERVIEW CANCELLED ===",
        "",
        f"Scheduling Request ID: {params.scheduling_request_id}",
        f"Booking ID: {params.booking_id or 'N/A'}",
        f"Application ID: {params.application_id or 'N/A'}",
        "",
        f"Cancelled By: {params.cancelled_by}",
        f"Reason: {params.reason}",
        "",
        f"Interviewer(s): {_interviewers(params.interviewer_emails)}",
        f"Organizer: {params.organizer_email}",
        "",
        "===========================",
    ]
    return "\n".join(lines)


def format_rescheduled_note(params: RescheduledNoteParams) -> str:
    tz = params.candidate_timezone
    lines = [
        "=== INTERVIEW RESCHEDULED ===",
        "",
        f"Scheduling Request ID: {params.scheduling_request_id}",
        f"Booking ID: {params.booking_id}",
        f"Application ID: {params.application_id or 'N/A'}",
        "",
        "Previous Time (UTC):",
        f"  Start: {format_utc(params.old_start_utc)}",
        f"  End: {format_utc(params.old_end_utc)}",
        "",
        "New Time (UTC):",
        f"  Start: {format_utc(params.new_start_utc)}",
        f"  End: {format_utc(params.new_end_utc)}",
        "",
        f"New Time ({tz}):",
        f"  Start: {format_local(params.new_start_utc, tz)}",
        f"  End: {format_local(params.new_end_utc, tz)}",
        "",
        f"Interviewer(s): {_interviewers(params.interviewer_emails)}",
        f"Organizer: {params.organizer_email}",
        "",
        f"Calendar Event ID: {params.calendar_event_id or 'N/A'}",
        f"Reason: {params.reason or 'Not specified'}",
        "",
        "=============================",
    ]
    return "\n".join(lines)
