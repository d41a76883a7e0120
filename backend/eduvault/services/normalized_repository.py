from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from eduvault.models.assessment import Assessment, AssessmentStatus, AssessmentType
from eduvault.models.content_asset import ContentAsset, ContentAssetType, ContentStatus, OwnerType
from eduvault.models.course import Course
from eduvault.models.topic import ExternalResource, Topic
from eduvault.models.unit import Unit
from eduvault.services.content_policy import display_type, naive_utc
from eduvault.services.content_refs import NOTES, VIDEO, ByAssessmentId, ByTopicContent, as_uuid
from eduvault.services.content_repository import (
    ContentHandle,
    ContentItem,
    ContentRepository,
    FeedEntry,
    ScanResult,
    UnitCoverage,
)
from eduvault.services.storage import BlobRef


log = logging.getLogger(__name__)

_TOPIC_ASSET_TYPES = (ContentAssetType.video, ContentAssetType.notes)
_TOPIC_LABELS = {VIDEO: "Lecture video", NOTES: "Notes"}
_COVERAGE_KEYS = {"cat": "cats", "assignment": "assignments", "pastExam": "past_exams", "exam": "exams"}


def _str(value) -> str | None:
    return str(value) if value is not None else None


def _value(status) -> str:
    return str(getattr(status, "value", status) or "pending")


def _history_entry(action: str, *, by, at, notes: str | None) -> dict:
    return {"action": action, "by": _str(by), "at": at.isoformat(), "notes": notes}


def assessment_blob_ref(assessment: Assessment) -> BlobRef | None:
    image = dict(assessment.image_file or {})
    return BlobRef.of(blob_id=image.get("blob_id"), file_path=image.get("file_path"))


class NormalizedRepository(ContentRepository):
    source = "normalized"

    def __init__(self, db: Session):
        self.db = db
        # Deleted rows stay visible to queries until the session flushes.
        self._deleted_assets: set[uuid.UUID] = set()

    def _context(self, *, course_id=None, unit_id=None) -> tuple[Course | None, Unit | None]:
        unit = self.db.get(Unit, unit_id) if unit_id is not None else None
        if course_id is None and unit is not None:
            course_id = unit.course_id
        course = self.db.get(Course, course_id) if course_id is not None else None
        return course, unit

    def _base_item(self, course: Course | None, unit: Unit | None, **kwargs) -> ContentItem:
        return ContentItem(
            source=self.source,
            course_id=_str(course.id) if course is not None else None,
            course_name=course.name if course is not None else "Unknown Course",
            institution=course.institution if course is not None else None,
            unit_id=_str(unit.id) if unit is not None else None,
            unit_code=unit.unit_code if unit is not None else None,
            unit_name=unit.unit_name if unit is not None else "Unknown Unit",
            year=unit.year if unit is not None else None,
            semester=unit.semester if unit is not None else None,
            **kwargs,
        )

    def _asset_item(self, asset: ContentAsset, topic: Topic | None, unit: Unit | None, course: Course | None) -> ContentItem:
        content_type = _value(asset.type)
        topic_title = topic.title if topic is not None else None
        return self._base_item(
            course,
            unit,
            id=str(asset.id),
            kind="topic_content",
            content_type=content_type,
            type=display_type(content_type),
            status=_value(asset.status),
            title=asset.title or f"{topic_title or 'Topic'} ({_TOPIC_LABELS.get(content_type, content_type)})",
            description=asset.description,
            topic_id=str(asset.owner_id),
            topic_title=topic_title,
            topic_number=topic.topic_number if topic is not None else None,
            is_premium=bool(asset.is_premium),
            filename=asset.filename,
            uploaded_by=_str(asset.uploaded_by),
            upload_date=naive_utc(asset.upload_date),
            reviewed_by=_str(asset.reviewed_by),
            review_date=naive_utc(asset.review_date),
            review_notes=asset.review_notes,
            reference={"topic_id": str(asset.owner_id), "content_type": content_type},
        )

    def _assessment_item(self, assessment: Assessment, unit: Unit | None, course: Course | None) -> ContentItem:
        content_type = _value(assessment.type)
        image = dict(assessment.image_file or {})
        return self._base_item(
            course,
            unit,
            id=str(assessment.id),
            kind="assessment",
            content_type=content_type,
            type=display_type(content_type),
            assessment_type=content_type,
            status=_value(assessment.status),
            title=assessment.title,
            description=assessment.description,
            is_premium=bool(assessment.is_premium),
            filename=image.get("filename"),
            uploaded_by=_str(assessment.uploaded_by),
            upload_date=naive_utc(assessment.upload_date),
            due_date=naive_utc(assessment.due_date),
            reviewed_by=_str(assessment.reviewed_by),
            review_date=naive_utc(assessment.review_date),
            review_notes=assessment.review_notes,
            reference={"assessment_id": str(assessment.id)},
        )

    def _coverage(self, unit: Unit, course: Course | None, assessments: list[Assessment]) -> UnitCoverage:
        cov = UnitCoverage(
            course_id=str(unit.course_id),
            course_name=course.name if course is not None else "Unknown Course",
            unit_id=str(unit.id),
            unit_code=unit.unit_code,
            unit_name=unit.unit_name,
            year=unit.year,
            semester=unit.semester,
            source=self.source,
            topic_count=len(unit.topic_ids or []),
        )
        for a in assessments:
            key = _COVERAGE_KEYS.get(_value(a.type))
            if key:
                cov.counts[key] += 1
        return cov

    def scan(self) -> ScanResult:
        result = ScanResult()
        courses = {c.id: c for c in self.db.scalars(select(Course).order_by(Course.created_at, Course.id)).all()}
        units = list(
            self.db.scalars(
                select(Unit).order_by(Unit.course_id, Unit.year, Unit.semester, Unit.unit_code, Unit.id)
            ).all()
        )
        units_by_id = {u.id: u for u in units}

        assessments = list(
            self.db.scalars(
                select(Assessment)
                .where(Assessment.deleted_at.is_(None))
                .order_by(Assessment.upload_date, Assessment.id)
            ).all()
        )
        assets = [
            a
            for a in self.db.scalars(
                select(ContentAsset)
                .where(ContentAsset.owner_type == OwnerType.topic, ContentAsset.type.in_(_TOPIC_ASSET_TYPES))
                .order_by(ContentAsset.upload_date, ContentAsset.id)
            ).all()
            if a.id not in self._deleted_assets
        ]

        owner_ids = {a.owner_id for a in assets}
        topics = {}
        if owner_ids:
            topics = {t.id: t for t in self.db.scalars(select(Topic).where(Topic.id.in_(owner_ids))).all()}

        by_unit: dict[uuid.UUID, list[Assessment]] = {}
        for a in assessments:
            by_unit.setdefault(a.unit_id, []).append(a)

        for unit in units:
            result.units.append(self._coverage(unit, courses.get(unit.course_id), by_unit.get(unit.id, [])))
            result.course_ids.add(str(unit.course_id))

        for asset in assets:
            topic = topics.get(asset.owner_id)
            unit = units_by_id.get(asset.unit_id or (topic.unit_id if topic is not None else None))
            course = courses.get(asset.course_id or (unit.course_id if unit is not None else None))
            result.items.append(self._asset_item(asset, topic, unit, course))

        for assessment in assessments:
            unit = units_by_id.get(assessment.unit_id)
            result.items.append(self._assessment_item(assessment, unit, courses.get(assessment.course_id)))

        return result

    def topic_asset(self, topic: Topic, content_type: str) -> ContentAsset | None:
        """The current video / notes asset of a topic: the pointer first, else the newest row."""
        pointer = topic.lecture_video_id if content_type == VIDEO else topic.notes_id
        if pointer is not None and pointer not in self._deleted_assets:
            asset = self.db.get(ContentAsset, pointer)
            if asset is not None:
                return asset
        rows = self.db.scalars(
            select(ContentAsset)
            .where(
                ContentAsset.owner_type == OwnerType.topic,
                ContentAsset.owner_id == topic.id,
                ContentAsset.type == ContentAssetType(content_type),
            )
            .order_by(ContentAsset.upload_date.desc(), ContentAsset.id)
        ).all()
        return next((a for a in rows if a.id not in self._deleted_assets), None)

    def locate(self, mode) -> ContentHandle | None:
        match mode:
            case ByAssessmentId(assessment_id=assessment_id):
                aid = as_uuid(assessment_id)
                if aid is None:
                    return None
                assessment = self.db.get(Assessment, aid)
                if assessment is None or assessment.deleted_at is not None:
                    return None
                course, unit = self._context(course_id=assessment.course_id, unit_id=assessment.unit_id)
                return ContentHandle(repository=self, item=self._assessment_item(assessment, unit, course), target=assessment)
            case ByTopicContent(topic_id=topic_id, content_type=content_type):
                tid = as_uuid(topic_id)
                if tid is None:
                    return None
                topic = self.db.get(Topic, tid)
                if topic is None:
                    return None
                asset = self.topic_asset(topic, content_type)
                if asset is None:
                    return None
                course, unit = self._context(course_id=asset.course_id, unit_id=asset.unit_id or topic.unit_id)
                return ContentHandle(repository=self, item=self._asset_item(asset, topic, unit, course), target=asset)
            case _:
                return None

    def approve(self, handle, *, reviewer_id, notes, is_premium, now) -> None:
        target = handle.target
        if isinstance(target, Assessment):
            target.status = AssessmentStatus.approved
            target.approval_history = list(target.approval_history or []) + [
                _history_entry("approved", by=reviewer_id, at=now, notes=notes)
            ]
        else:
            target.status = ContentStatus.approved
            topic = self.db.get(Topic, target.owner_id)
            if topic is not None:
                if target.type == ContentAssetType.video:
                    topic.lecture_video_id = target.id
                elif target.type == ContentAssetType.notes:
                    topic.notes_id = target.id
        target.is_active = True
        target.reviewed_by = as_uuid(reviewer_id)
        target.review_date = now
        target.review_notes = notes
        if is_premium is not None:
            target.is_premium = bool(is_premium)

    def reject(self, handle, *, reviewer_id, notes, now) -> None:
        target = handle.target
        if isinstance(target, Assessment):
            target.status = AssessmentStatus.rejected
            target.approval_history = list(target.approval_history or []) + [
                _history_entry("rejected", by=reviewer_id, at=now, notes=notes)
            ]
        else:
            target.status = ContentStatus.rejected
        target.is_active = False
        target.reviewed_by = as_uuid(reviewer_id)
        target.review_date = now
        target.review_notes = notes

    def delete(self, handle, *, now) -> list[BlobRef]:
        target = handle.target
        if isinstance(target, Assessment):
            target.deleted_at = now
            target.is_active = False
            sid = str(target.id)
            unit = self.db.get(Unit, target.unit_id)
            if unit is not None and sid in (unit.assessment_ids or []):
                unit.assessment_ids = [x for x in unit.assessment_ids if x != sid]
            course = self.db.get(Course, target.course_id)
            if course is not None and sid in (course.assessment_ids or []):
                course.assessment_ids = [x for x in course.assessment_ids if x != sid]
            ref = assessment_blob_ref(target)
            return [ref] if ref is not None else []

        topic = self.db.get(Topic, target.owner_id)
        if topic is not None:
            if topic.lecture_video_id == target.id:
                topic.lecture_video_id = None
            if topic.notes_id == target.id:
                topic.notes_id = None
        ref = BlobRef.of(blob_id=target.blob_id, file_path=target.file_path)
        self._deleted_assets.add(target.id)
        self.db.delete(target)
        return [ref] if ref is not None else []

    def _units(self, course_id, *, year=None, semester=None) -> list[Unit]:
        cid = as_uuid(course_id)
        if cid is None:
            return []
        stmt = select(Unit).where(Unit.course_id == cid)
        if year is not None:
            stmt = stmt.where(Unit.year == year)
        if semester is not None:
            stmt = stmt.where(Unit.semester == semester)
        return list(self.db.scalars(stmt.order_by(Unit.year, Unit.semester, Unit.unit_code, Unit.id)).all())

    @staticmethod
    def _unit_info(unit: Unit) -> dict:
        return {
            "course_id": str(unit.course_id),
            "unit_id": str(unit.id),
            "unit_code": unit.unit_code,
            "unit_name": unit.unit_name,
            "year": unit.year,
            "semester": unit.semester,
        }

    def asset_entry(self, asset: ContentAsset, topic: Topic | None, unit: Unit) -> FeedEntry:
        content_type = _value(asset.type)
        topic_title = topic.title if topic is not None else None
        return FeedEntry(
            id=str(asset.id),
            source=self.source,
            kind=content_type,
            content_type=content_type,
            title=asset.title or f"{topic_title or 'Topic'} ({_TOPIC_LABELS.get(content_type, content_type)})",
            description=asset.description,
            status=_value(asset.status),
            is_active=bool(asset.is_active),
            is_premium=bool(asset.is_premium),
            topic_id=str(asset.owner_id),
            topic_title=topic_title,
            topic_number=topic.topic_number if topic is not None else None,
            filename=asset.filename,
            file_path=asset.file_path,
            blob_id=asset.blob_id,
            mime_type=asset.mime_type,
            upload_date=naive_utc(asset.upload_date),
            **self._unit_info(unit),
        )

    def assessment_entry(self, assessment: Assessment, unit: Unit) -> FeedEntry:
        image = dict(assessment.image_file or {})
        return FeedEntry(
            id=str(assessment.id),
            source=self.source,
            kind="assessment",
            content_type=_value(assessment.type),
            title=assessment.title,
            description=assessment.description,
            status=_value(assessment.status),
            is_active=bool(assessment.is_active) and assessment.deleted_at is None,
            is_premium=bool(assessment.is_premium),
            filename=image.get("filename"),
            file_path=image.get("file_path"),
            blob_id=image.get("blob_id"),
            mime_type=image.get("mime_type"),
            upload_date=naive_utc(assessment.upload_date),
            due_date=naive_utc(assessment.due_date),
            total_marks=assessment.total_marks,
            duration_minutes=assessment.duration_minutes,
            start_time=naive_utc(assessment.start_time),
            end_time=naive_utc(assessment.end_time),
            **self._unit_info(unit),
        )

    def feed(self, course_id, *, year=None, semester=None) -> list[FeedEntry]:
        units = self._units(course_id, year=year, semester=semester)
        if not units:
            return []
        units_by_id = {u.id: u for u in units}
        topics = list(
            self.db.scalars(
                select(Topic).where(Topic.unit_id.in_(units_by_id.keys())).order_by(Topic.topic_number, Topic.id)
            ).all()
        )

        entries: list[FeedEntry] = []
        for topic in topics:
            unit = units_by_id[topic.unit_id]
            for content_type in (VIDEO, NOTES):
                asset = self.topic_asset(topic, content_type)
                if asset is not None:
                    entries.append(self.asset_entry(asset, topic, unit))

        if topics:
            topics_by_id = {t.id: t for t in topics}
            links = self.db.scalars(
                select(ExternalResource)
                .where(ExternalResource.topic_id.in_(topics_by_id.keys()))
                .order_by(ExternalResource.upload_date, ExternalResource.id)
            ).all()
            for link in links:
                topic = topics_by_id[link.topic_id]
                entries.append(
                    FeedEntry(
                        id=str(link.id),
                        source=self.source,
                        kind="link",
                        content_type="link",
                        title=link.title,
                        description=link.description,
                        status=_value(link.status),
                        is_active=True,
                        is_premium=bool(link.is_premium),
                        topic_id=str(topic.id),
                        topic_title=topic.title,
                        topic_number=topic.topic_number,
                        url=link.url,
                        upload_date=naive_utc(link.upload_date),
                        **self._unit_info(units_by_id[topic.unit_id]),
                    )
                )

        assessments = self.db.scalars(
            select(Assessment)
            .where(Assessment.unit_id.in_(units_by_id.keys()), Assessment.deleted_at.is_(None))
            .order_by(Assessment.upload_date, Assessment.id)
        ).all()
        for assessment in assessments:
            entries.append(self.assessment_entry(assessment, units_by_id[assessment.unit_id]))
        return entries

    def assessment_feed(
        self,
        *,
        course_id=None,
        unit_id=None,
        content_types: set[str] | None = None,
        year: int | None = None,
        semester: int | None = None,
    ) -> list[FeedEntry]:
        """Assessments across every course, narrowed by whichever filters are given."""
        stmt = (
            select(Assessment, Unit)
            .join(Unit, Unit.id == Assessment.unit_id)
            .where(Assessment.deleted_at.is_(None), Assessment.is_active.is_(True))
        )
        for column, raw in ((Assessment.course_id, course_id), (Assessment.unit_id, unit_id)):
            if raw is None:
                continue
            value = as_uuid(raw)
            if value is None:
                return []
            stmt = stmt.where(column == value)
        if content_types:
            stmt = stmt.where(Assessment.type.in_([AssessmentType(t) for t in sorted(content_types)]))
        if year is not None:
            stmt = stmt.where(Unit.year == year)
        if semester is not None:
            stmt = stmt.where(Unit.semester == semester)
        rows = self.db.execute(stmt.order_by(Assessment.upload_date, Assessment.id)).all()
        return [self.assessment_entry(assessment, unit) for assessment, unit in rows]

    def list_units(self, course_id) -> list[UnitCoverage]:
        units = self._units(course_id)
        if not units:
            return []
        course = self.db.get(Course, units[0].course_id)
        assessments = self.db.scalars(
            select(Assessment).where(
                Assessment.unit_id.in_([u.id for u in units]), Assessment.deleted_at.is_(None)
            )
        ).all()
        by_unit: dict[uuid.UUID, list[Assessment]] = {}
        for a in assessments:
            by_unit.setdefault(a.unit_id, []).append(a)
        return [self._coverage(u, course, by_unit.get(u.id, [])) for u in units]

    def commit(self) -> None:
        # Row changes are tracked by the session itself.
        self._deleted_assets.clear()
