"""Student-facing content feed.

Approval is re-checked on every call from the stored status; premium gating is
per academic year, so a subscription for one year never unlocks another. A
descriptor the student cannot open never carries the file name or link URL.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from urllib.parse import quote

from sqlalchemy.orm import Session

from eduvault.services.content_policy import is_approved
from eduvault.services.content_repository import ContentRepository, FeedEntry
from eduvault.services.legacy_repository import LegacyRepository
from eduvault.services.normalized_repository import NormalizedRepository


@dataclass
class ContentDescriptor:
    id: str
    type: str
    kind: str
    source: str
    title: str
    unit_id: str
    unit_code: str | None
    unit_name: str
    year: int
    semester: int | None
    is_premium: bool
    has_access: bool
    can_view: bool
    can_download: bool
    requires_subscription: bool
    course_id: str | None = None
    description: str | None = None
    topic_id: str | None = None
    topic_title: str | None = None
    topic_number: int | None = None
    filename: str | None = None
    url: str | None = None
    file_url: str | None = None
    mime_type: str | None = None
    upload_date: datetime | None = None
    due_date: datetime | None = None
    total_marks: int | None = None
    duration_minutes: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


def _legacy_file_url(entry: FeedEntry) -> str | None:
    if not entry.course_id:
        return None
    base = f"/student/files/legacy/{quote(entry.course_id, safe='')}/{quote(entry.unit_id, safe='')}"
    if entry.kind == "assessment":
        return f"{base}/assessments/{quote(entry.id, safe='')}"
    if entry.kind in {"video", "notes"} and entry.topic_id:
        return f"{base}/topics/{quote(entry.topic_id, safe='')}/{entry.kind}"
    return None


def _file_url(entry: FeedEntry) -> str | None:
    if entry.source == LegacyRepository.source:
        return _legacy_file_url(entry)
    if entry.source != NormalizedRepository.source:
        return None
    if entry.kind == "assessment":
        return f"/student/files/assessments/{entry.id}"
    if entry.kind in {"video", "notes"}:
        return f"/student/files/assets/{entry.id}"
    return None


def describe(entry: FeedEntry, *, has_subscription: bool) -> ContentDescriptor:
    """Apply the gating rules for one approved feed entry."""
    premium = bool(entry.is_premium)
    unlocked = not premium or bool(has_subscription)

    if entry.kind == "notes":
        # Notes are readable by everyone; premium only gates the download.
        can_view, can_download = True, unlocked
    elif entry.kind == "assessment" and entry.content_type == "assignment":
        can_view, can_download = True, True
    elif entry.kind == "assessment":
        # Cats, exams and past papers are never downloadable.
        can_view, can_download = unlocked, False
    else:
        # Videos stream only; links are disclosed only when unlocked.
        can_view, can_download = unlocked, False

    has_access = can_view
    requires_subscription = premium and not has_subscription and entry.content_type != "assignment"

    return ContentDescriptor(
        id=entry.id,
        type=entry.content_type,
        kind=entry.kind,
        source=entry.source,
        title=entry.title,
        course_id=entry.course_id,
        description=entry.description,
        unit_id=entry.unit_id,
        unit_code=entry.unit_code,
        unit_name=entry.unit_name,
        year=entry.year,
        semester=entry.semester,
        topic_id=entry.topic_id,
        topic_title=entry.topic_title,
        topic_number=entry.topic_number,
        is_premium=premium,
        has_access=has_access,
        can_view=can_view,
        can_download=can_download,
        requires_subscription=requires_subscription,
        filename=entry.filename if has_access else None,
        url=entry.url if has_access else None,
        file_url=_file_url(entry) if has_access else None,
        mime_type=entry.mime_type,
        upload_date=entry.upload_date,
        due_date=entry.due_date,
        total_marks=entry.total_marks,
        duration_minutes=entry.duration_minutes,
        start_time=entry.start_time,
        end_time=entry.end_time,
    )


def is_live(entry: FeedEntry) -> bool:
    return bool(entry.is_active) and is_approved(entry.status)


class AccessResolver:
    def __init__(self, db: Session, *, repositories: list[ContentRepository] | None = None):
        self.db = db
        self.repositories = repositories if repositories is not None else [LegacyRepository(db), NormalizedRepository(db)]

    def resolve(
        self,
        course_id: str,
        *,
        year: int | None = None,
        semester: int | None = None,
        subscriptions_by_year: dict[int, bool] | None = None,
    ) -> list[ContentDescriptor]:
        subs = subscriptions_by_year or {}
        out: list[ContentDescriptor] = []
        for repository in self.repositories:
            for entry in repository.feed(course_id, year=year, semester=semester):
                if not is_live(entry):
                    continue
                out.append(describe(entry, has_subscription=bool(subs.get(int(entry.year), False))))
        return sorted(out, key=lambda d: d.upload_date or datetime.min, reverse=True)

    def resolve_assessments(
        self,
        *,
        has_subscription: Callable[[str, int], bool],
        course_id: str | None = None,
        unit_id: str | None = None,
        content_types: set[str] | None = None,
        year: int | None = None,
        semester: int | None = None,
    ) -> list[ContentDescriptor]:
        """Approved assessments across courses, gated per (course, year).

        ``has_subscription`` is asked at most once per course and year.
        """
        entries = NormalizedRepository(self.db).assessment_feed(
            course_id=course_id,
            unit_id=unit_id,
            content_types=content_types,
            year=year,
            semester=semester,
        )
        checked: dict[tuple[str, int], bool] = {}
        out: list[ContentDescriptor] = []
        for entry in entries:
            if not is_live(entry):
                continue
            key = (str(entry.course_id), int(entry.year))
            if key not in checked:
                checked[key] = bool(has_subscription(*key))
            out.append(describe(entry, has_subscription=checked[key]))
        return sorted(
            out,
            key=lambda d: (d.due_date or datetime.min, d.upload_date or datetime.min),
            reverse=True,
        )
