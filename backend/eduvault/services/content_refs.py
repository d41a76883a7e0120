"""Addressing modes for reviewer actions.

A reviewer request names a content item through loose identifiers (assessment
id, topic id, course/unit path, content type). ``addressing_modes`` turns those
into the ordered list of places the item may live; the approval service walks
the list and stops at the first repository that claims the item.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from eduvault.core import errors


VIDEO = "video"
NOTES = "notes"
TOPIC_CONTENT_TYPES = (VIDEO, NOTES)
ASSESSMENT_TYPES = ("cat", "assignment", "pastExam", "exam")

_TYPE_ALIASES = {
    "video": VIDEO,
    "lecture_video": VIDEO,
    "lectureVideo": VIDEO,
    "notes": NOTES,
    "cat": "cat",
    "cats": "cat",
    "assignment": "assignment",
    "assignments": "assignment",
    "pastExam": "pastExam",
    "pastExams": "pastExam",
    "past_exam": "pastExam",
    "past_exams": "pastExam",
    "exam": "exam",
    "exams": "exam",
}


@dataclass(frozen=True)
class ByAssessmentId:
    assessment_id: str


@dataclass(frozen=True)
class ByTopicContent:
    topic_id: str
    content_type: str


@dataclass(frozen=True)
class ByEmbeddedLegacy:
    course_id: str
    unit_id: str
    content_type: str
    topic_id: str | None = None
    item_id: str | None = None


AddressingMode = ByAssessmentId | ByTopicContent | ByEmbeddedLegacy


def canonical_content_type(value: str | None) -> str | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    canonical = _TYPE_ALIASES.get(raw) or _TYPE_ALIASES.get(raw.lower())
    if canonical is None:
        raise errors.ValidationError("unsupported content type", content_type=raw)
    return canonical


def as_uuid(value) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        return None


def _clean(value) -> str | None:
    raw = str(value or "").strip()
    return raw or None


def identifiers(ref) -> dict:
    """The identifiers a request supplied, echoed back in not-found errors."""
    out = {}
    for field in ("assessment_id", "course_id", "unit_id", "topic_id", "content_id", "content_type"):
        value = _clean(getattr(ref, field, None))
        if value is not None:
            out[field] = value
    return out


def addressing_modes(ref) -> list[AddressingMode]:
    """Build the priority-ordered addressing modes for one request.

    Order is fixed: assessment id, then topic + type, then the embedded course
    tree. An item stored under more than one path is therefore only ever acted
    on through the first one.
    """
    assessment_id = _clean(getattr(ref, "assessment_id", None))
    course_id = _clean(getattr(ref, "course_id", None))
    unit_id = _clean(getattr(ref, "unit_id", None))
    topic_id = _clean(getattr(ref, "topic_id", None))
    content_id = _clean(getattr(ref, "content_id", None))
    content_type = canonical_content_type(getattr(ref, "content_type", None))

    modes: list[AddressingMode] = []
    if assessment_id:
        modes.append(ByAssessmentId(assessment_id=assessment_id))

    if topic_id and content_type in TOPIC_CONTENT_TYPES:
        modes.append(ByTopicContent(topic_id=topic_id, content_type=content_type))

    if course_id and unit_id and content_type:
        if content_type in TOPIC_CONTENT_TYPES and topic_id:
            modes.append(
                ByEmbeddedLegacy(course_id=course_id, unit_id=unit_id, content_type=content_type, topic_id=topic_id)
            )
        elif content_type in ASSESSMENT_TYPES and (content_id or assessment_id):
            modes.append(
                ByEmbeddedLegacy(
                    course_id=course_id,
                    unit_id=unit_id,
                    content_type=content_type,
                    item_id=content_id or assessment_id,
                )
            )

    if not modes:
        raise errors.ValidationError(
            "assessment_id, topic_id with content_type, or course_id/unit_id with content_type is required",
            **identifiers(ref),
        )
    return modes
