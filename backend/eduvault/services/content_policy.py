from __future__ import annotations

from datetime import datetime, timezone


# Exam-window states that follow approval still count as approved content.
APPROVED_FAMILY = frozenset({"approved", "scheduled", "active", "expired", "completed"})

_DISPLAY_TYPES = {
    "video": "video",
    "notes": "notes",
    "cat": "cats",
    "assignment": "assignments",
    "pastExam": "pastExams",
    "exam": "exams",
}


def default_is_premium(content_type: str) -> bool:
    # Assignments and lecture material are open; cats, exams and past papers are premium.
    return content_type in {"cat", "exam", "pastExam"}


def record_status(status) -> str:
    """Collapse any stored status into pending / approved / rejected."""
    value = str(getattr(status, "value", status) or "").strip().lower()
    if value in APPROVED_FAMILY:
        return "approved"
    if value == "rejected":
        return "rejected"
    return "pending"


def is_approved(status) -> bool:
    return str(getattr(status, "value", status) or "").strip().lower() in APPROVED_FAMILY


def display_type(content_type: str) -> str:
    return _DISPLAY_TYPES.get(content_type, content_type)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
