"""Merged review queue over both storage shapes.

Legacy and normalized items are not identity-matched against each other: the
two populations were split by a one-time cutover, so an item lives in exactly
one of them.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from eduvault.core.config import settings
from eduvault.models.user import User, UserRole
from eduvault.services.content_policy import naive_utc, record_status, utcnow
from eduvault.services.content_repository import (
    UNKNOWN_UPLOADER,
    ContentItem,
    ContentRepository,
    ScanResult,
)
from eduvault.services.legacy_repository import LegacyRepository
from eduvault.services.normalized_repository import NormalizedRepository


log = logging.getLogger(__name__)


@dataclass
class PendingQueue:
    pending_content: list[ContentItem]
    stats: dict
    units_missing_assessments: list[dict] = field(default_factory=list)
    units_with_assessments: list[dict] = field(default_factory=list)
    legacy_pending: int = 0
    legacy_window_days: int = 30
    total_pending: int = 0
    total_pending_including_legacy: int = 0
    course_count: int = 0
    include_legacy: bool = False


def months_before(moment: datetime, months: int) -> datetime:
    """Calendar-month subtraction, clamping the day to the target month."""
    index = moment.year * 12 + (moment.month - 1) - int(months)
    year, month0 = divmod(index, 12)
    month = month0 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _sort_key(item: ContentItem) -> datetime:
    return item.upload_date or datetime.min


def sort_newest_first(items: list[ContentItem]) -> list[ContentItem]:
    # Undated items sink to the end; sorted() keeps scan order for ties.
    return sorted(items, key=_sort_key, reverse=True)


def empty_stats() -> dict:
    return {"pending": 0, "approved": 0, "rejected": 0, "total": 0}


def apply_queue_filters(
    items: list[ContentItem],
    *,
    institution: str | None = None,
    course_id: str | None = None,
    unit_id: str | None = None,
    uploader_id: str | None = None,
    type: str | None = None,
    assessment_type: str | None = None,
) -> list[ContentItem]:
    out = []
    for item in items:
        if institution and str(item.institution or "") != str(institution):
            continue
        if course_id and str(item.course_id or "") != str(course_id):
            continue
        if unit_id and str(item.unit_id or "") != str(unit_id):
            continue
        if uploader_id and str(item.uploaded_by or "") != str(uploader_id):
            continue
        if type and str(type) not in {item.type, item.content_type}:
            continue
        if assessment_type and str(item.assessment_type or "") != str(assessment_type):
            continue
        out.append(item)
    return out


class ReconciliationEngine:
    def __init__(self, db: Session, *, repositories: list[ContentRepository] | None = None, now: datetime | None = None):
        self.db = db
        self.repositories = repositories if repositories is not None else [LegacyRepository(db), NormalizedRepository(db)]
        self._now = now

    def now(self) -> datetime:
        return naive_utc(self._now) if self._now is not None else utcnow()

    def _scan(self) -> ScanResult:
        merged = ScanResult()
        for repository in self.repositories:
            part = repository.scan()
            merged.items.extend(part.items)
            merged.units.extend(part.units)
            merged.course_ids |= part.course_ids
        return merged

    def _uploader_directory(self) -> dict[str, User]:
        users = self.db.scalars(
            select(User).where(
                User.role.in_([UserRole.mini_admin, UserRole.super_admin]),
                User.is_active.is_(True),
            )
        ).all()
        return {str(u.id): u for u in users}

    def _attach_uploaders(self, items: list[ContentItem]) -> None:
        directory = self._uploader_directory()
        for item in items:
            user = directory.get(str(item.uploaded_by or ""))
            if user is None:
                item.uploader_name = UNKNOWN_UPLOADER
                item.uploader_email = None
                continue
            item.uploader_name = user.display_name or ("Super admin" if user.role == UserRole.super_admin else "Mini admin")
            item.uploader_email = user.email

    @staticmethod
    def _stats(items: list[ContentItem]) -> dict:
        stats = empty_stats()
        for item in items:
            stats[record_status(item.status)] += 1
            stats["total"] += 1
        return stats

    @staticmethod
    def _unit_completeness(scan: ScanResult) -> tuple[list[dict], list[dict]]:
        missing: dict[str, dict] = {}
        with_assessments: list[dict] = []
        for cov in scan.units:
            unit = {
                "unit_id": cov.unit_id,
                "unit_code": cov.unit_code,
                "unit_name": cov.unit_name,
                "year": cov.year,
                "semester": cov.semester,
                "source": cov.source,
            }
            if cov.total_assessments == 0:
                group = missing.setdefault(
                    cov.course_id, {"course_id": cov.course_id, "course_name": cov.course_name, "units": []}
                )
                group["units"].append(unit)
            else:
                with_assessments.append(
                    {"course_id": cov.course_id, "course_name": cov.course_name, **unit, "counts": dict(cov.counts)}
                )
        return list(missing.values()), with_assessments

    def build_pending_content(
        self,
        *,
        include_legacy: bool = False,
        legacy_window_months: int | None = None,
        uploader_scope: set[str] | None = None,
        include_non_pending: bool = False,
    ) -> PendingQueue:
        months = int(legacy_window_months if legacy_window_months is not None else settings.legacy_window_months)
        now = self.now()
        cutoff = months_before(now, months)

        scan = self._scan()
        stats = self._stats(scan.items)

        candidates = [
            item for item in scan.items if include_non_pending or record_status(item.status) == "pending"
        ]
        if uploader_scope is not None:
            scope = {str(s) for s in uploader_scope}
            candidates = [item for item in candidates if item.uploaded_by and str(item.uploaded_by) in scope]
        self._attach_uploaders(candidates)

        all_sorted = sort_newest_first(candidates)
        if include_legacy:
            visible = all_sorted
        else:
            visible = [item for item in all_sorted if item.upload_date is not None and item.upload_date >= cutoff]

        missing, with_assessments = self._unit_completeness(scan)

        queue = PendingQueue(
            pending_content=visible,
            stats=stats,
            units_missing_assessments=missing,
            units_with_assessments=with_assessments,
            legacy_pending=len(all_sorted) - len(visible),
            legacy_window_days=months * 30,
            total_pending=len(visible),
            total_pending_including_legacy=len(all_sorted),
            course_count=len(scan.course_ids),
            include_legacy=bool(include_legacy),
        )
        log.info(
            "pending queue built: courses=%s visible=%s including_legacy=%s window_months=%s missing_assessment_courses=%s",
            queue.course_count,
            queue.total_pending,
            queue.total_pending_including_legacy,
            months,
            len(missing),
        )
        return queue

    def build_approved_content(self) -> list[ContentItem]:
        items = [item for item in self._scan().items if record_status(item.status) == "approved"]
        self._attach_uploaders(items)
        return sorted(items, key=lambda i: i.review_date or i.upload_date or datetime.min, reverse=True)

    def aggregate_stats(self) -> dict:
        return self._stats(self._scan().items)
