"""Content embedded in the course row.

The embedded tree is parsed into pydantic value models, mutated in memory and
written back wholesale by ``commit``: one write per course no matter how many
items a request touched. Historical records vary in which keys point at the
binary, so ``LegacyAsset`` keeps unknown keys and checks several candidates.
A unit that does not parse is left out of every listing but written back
unchanged; unreadable dates read as undated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, WrapValidator
from sqlalchemy import select
from sqlalchemy.orm import Session

from eduvault.models.course import Course
from eduvault.services.content_policy import default_is_premium, display_type, naive_utc
from eduvault.services.content_refs import NOTES, VIDEO, ByEmbeddedLegacy, as_uuid
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

ASSET_REFERENCE_KEYS = (
    "filename",
    "file_path",
    "filePath",
    "file_url",
    "fileUrl",
    "secure_url",
    "secureUrl",
    "url",
    "blob_id",
    "cloudinary_id",
    "cloudinaryId",
    "public_id",
    "publicId",
)

_TOPIC_FIELDS = {VIDEO: "lecture_video", NOTES: "notes"}
_TOPIC_LABELS = {VIDEO: "Lecture video", NOTES: "Notes"}

# (content type, attribute on LegacyAssessments, coverage key)
_EMBEDDED_ASSESSMENTS = (
    ("cat", "cats", "cats"),
    ("assignment", "assignments", "assignments"),
    ("pastExam", "past_exams", "past_exams"),
)


def _lenient_datetime(value: Any, handler) -> datetime | None:
    # Old records carry "" or free text in date fields; those read as undated.
    try:
        return handler(value)
    except pydantic.ValidationError:
        return None


LenientDatetime = Annotated[datetime | None, WrapValidator(_lenient_datetime)]


class LegacyModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class LegacyAsset(LegacyModel):
    title: str | None = None
    filename: str | None = None
    file_path: str | None = None
    blob_id: str | None = None
    mime_type: str | None = None
    status: str | None = None
    is_premium: bool | None = None
    uploaded_by: str | None = None
    upload_date: LenientDatetime = None
    reviewed_by: str | None = None
    review_date: LenientDatetime = None
    review_notes: str | None = None

    def reference_value(self) -> str | None:
        data = self.model_dump()
        for key in ASSET_REFERENCE_KEYS:
            value = str(data.get(key) or "").strip()
            if value:
                return value
        return None

    def local_path(self) -> str | None:
        """Media-root path for records that predate the blob store."""
        data = self.model_dump()
        for value in (self.file_path, data.get("filePath"), self.filename):
            value = str(value or "").strip()
            if value:
                return value
        return None

    def blob_ref(self) -> BlobRef | None:
        data = self.model_dump()
        return BlobRef.of(
            blob_id=self.blob_id,
            file_path=self.file_path or data.get("filePath"),
        )


class LegacyLink(LegacyModel):
    id: str | None = None
    title: str = ""
    url: str = ""
    description: str | None = None
    is_premium: bool = False
    # Links predate review; they were published directly.
    status: str = "approved"
    upload_date: LenientDatetime = None


class LegacyTopicContent(LegacyModel):
    lecture_video: LegacyAsset | None = None
    notes: LegacyAsset | None = None
    youtube_resources: list[LegacyLink] = Field(default_factory=list)


class LegacyTopic(LegacyModel):
    id: str
    topic_number: int | None = None
    title: str = ""
    description: str | None = None
    content: LegacyTopicContent = Field(default_factory=LegacyTopicContent)


class LegacyAssessment(LegacyAsset):
    id: str
    description: str | None = None
    due_date: LenientDatetime = None
    total_marks: int | None = None


class LegacyAssessments(LegacyModel):
    cats: list[LegacyAssessment] = Field(default_factory=list)
    assignments: list[LegacyAssessment] = Field(default_factory=list)
    past_exams: list[LegacyAssessment] = Field(default_factory=list)


class LegacyUnit(LegacyModel):
    id: str
    year: int = 1
    semester: int | None = None
    unit_code: str | None = None
    unit_name: str = "Unknown Unit"
    topics: list[LegacyTopic] = Field(default_factory=list)
    assessments: LegacyAssessments = Field(default_factory=LegacyAssessments)


@dataclass
class LegacyAggregate:
    course: Course
    # Stored order; entries that fail to parse stay as raw values.
    slots: list[LegacyUnit | Any]
    dirty: bool = False

    @property
    def units(self) -> list[LegacyUnit]:
        return [s for s in self.slots if isinstance(s, LegacyUnit)]


@dataclass
class LegacyTarget:
    aggregate: LegacyAggregate
    unit: LegacyUnit
    content_type: str
    entry: LegacyAsset
    topic: LegacyTopic | None = None


def _premium(entry, content_type: str) -> bool:
    if entry.is_premium is None:
        return default_is_premium(content_type)
    return bool(entry.is_premium)


class LegacyRepository(ContentRepository):
    source = "legacy"

    def __init__(self, db: Session):
        self.db = db
        self._aggregates: dict[str, LegacyAggregate] = {}

    def _load(self, course: Course) -> LegacyAggregate:
        key = str(course.id)
        agg = self._aggregates.get(key)
        if agg is None:
            raw_units = course.units if isinstance(course.units, list) else []
            if course.units and not raw_units:
                log.warning("legacy units column is not a list: course_id=%s", key)
            agg = LegacyAggregate(course=course, slots=[self._parse_unit(key, i, raw) for i, raw in enumerate(raw_units)])
            self._aggregates[key] = agg
        return agg

    @staticmethod
    def _parse_unit(course_id: str, index: int, raw: Any) -> LegacyUnit | Any:
        if not isinstance(raw, dict):
            log.warning("legacy unit skipped: course_id=%s index=%s reason=not an object", course_id, index)
            return raw
        try:
            return LegacyUnit.model_validate(raw)
        except pydantic.ValidationError as e:
            log.warning(
                "legacy unit skipped: course_id=%s index=%s unit_id=%s errors=%s",
                course_id,
                index,
                raw.get("id"),
                e.error_count(),
            )
            return raw

    def _courses(self) -> list[Course]:
        return list(self.db.scalars(select(Course).order_by(Course.created_at, Course.id)).all())

    def _course(self, course_id) -> Course | None:
        cid = as_uuid(course_id)
        if cid is None:
            return None
        return self.db.get(Course, cid)

    def _coverage(self, course: Course, unit: LegacyUnit) -> UnitCoverage:
        cov = UnitCoverage(
            course_id=str(course.id),
            course_name=course.name,
            unit_id=unit.id,
            unit_code=unit.unit_code,
            unit_name=unit.unit_name,
            year=unit.year,
            semester=unit.semester,
            source=self.source,
            topic_count=len(unit.topics),
        )
        for _, attr, key in _EMBEDDED_ASSESSMENTS:
            cov.counts[key] = len(getattr(unit.assessments, attr))
        return cov

    def _base_item(self, course: Course, unit: LegacyUnit, **kwargs) -> ContentItem:
        return ContentItem(
            source=self.source,
            course_id=str(course.id),
            course_name=course.name,
            institution=course.institution,
            unit_id=unit.id,
            unit_code=unit.unit_code,
            unit_name=unit.unit_name,
            year=unit.year,
            semester=unit.semester,
            **kwargs,
        )

    def _topic_item(self, course: Course, unit: LegacyUnit, topic: LegacyTopic, content_type: str, asset: LegacyAsset) -> ContentItem:
        return self._base_item(
            course,
            unit,
            id=f"{topic.id}:{content_type}",
            kind="topic_content",
            content_type=content_type,
            type=display_type(content_type),
            status=asset.status or "pending",
            title=asset.title or f"{topic.title} ({_TOPIC_LABELS[content_type]})",
            topic_id=topic.id,
            topic_title=topic.title,
            topic_number=topic.topic_number,
            is_premium=_premium(asset, content_type),
            filename=asset.filename or asset.reference_value(),
            uploaded_by=asset.uploaded_by,
            upload_date=naive_utc(asset.upload_date),
            reviewed_by=asset.reviewed_by,
            review_date=naive_utc(asset.review_date),
            review_notes=asset.review_notes,
            reference={
                "course_id": str(course.id),
                "unit_id": unit.id,
                "topic_id": topic.id,
                "content_type": content_type,
            },
        )

    def _assessment_item(self, course: Course, unit: LegacyUnit, content_type: str, entry: LegacyAssessment) -> ContentItem:
        return self._base_item(
            course,
            unit,
            id=entry.id,
            kind="assessment",
            content_type=content_type,
            type=display_type(content_type),
            assessment_type=content_type,
            status=entry.status or "pending",
            title=entry.title or "Untitled assessment",
            description=entry.description,
            is_premium=_premium(entry, content_type),
            filename=entry.filename or entry.reference_value(),
            uploaded_by=entry.uploaded_by,
            upload_date=naive_utc(entry.upload_date),
            due_date=naive_utc(entry.due_date),
            reviewed_by=entry.reviewed_by,
            review_date=naive_utc(entry.review_date),
            review_notes=entry.review_notes,
            reference={
                "course_id": str(course.id),
                "unit_id": unit.id,
                "content_id": entry.id,
                "content_type": content_type,
            },
        )

    def scan(self) -> ScanResult:
        result = ScanResult()
        for course in self._courses():
            agg = self._load(course)
            result.course_ids.add(str(course.id))
            for unit in agg.units:
                result.units.append(self._coverage(course, unit))
                for topic in unit.topics:
                    for content_type, field in _TOPIC_FIELDS.items():
                        asset = getattr(topic.content, field)
                        if asset is None or asset.reference_value() is None:
                            continue
                        result.items.append(self._topic_item(course, unit, topic, content_type, asset))
                for content_type, attr, _ in _EMBEDDED_ASSESSMENTS:
                    for entry in getattr(unit.assessments, attr):
                        result.items.append(self._assessment_item(course, unit, content_type, entry))
        return result

    def locate(self, mode) -> ContentHandle | None:
        match mode:
            case ByEmbeddedLegacy(course_id=course_id, unit_id=unit_id, content_type=content_type, topic_id=topic_id, item_id=item_id):
                course = self._course(course_id)
                if course is None:
                    return None
                agg = self._load(course)
                unit = next((u for u in agg.units if u.id == unit_id), None)
                if unit is None:
                    return None

                if content_type in _TOPIC_FIELDS:
                    topic = next((t for t in unit.topics if t.id == topic_id), None)
                    if topic is None:
                        return None
                    asset = getattr(topic.content, _TOPIC_FIELDS[content_type])
                    if asset is None or asset.reference_value() is None:
                        return None
                    return ContentHandle(
                        repository=self,
                        item=self._topic_item(course, unit, topic, content_type, asset),
                        target=LegacyTarget(aggregate=agg, unit=unit, topic=topic, content_type=content_type, entry=asset),
                    )

                attr = next((a for ct, a, _ in _EMBEDDED_ASSESSMENTS if ct == content_type), None)
                if attr is None:
                    return None
                entry = next((e for e in getattr(unit.assessments, attr) if e.id == item_id), None)
                if entry is None:
                    return None
                return ContentHandle(
                    repository=self,
                    item=self._assessment_item(course, unit, content_type, entry),
                    target=LegacyTarget(aggregate=agg, unit=unit, content_type=content_type, entry=entry),
                )
            case _:
                return None

    def _remove(self, target: LegacyTarget) -> None:
        if target.topic is not None:
            setattr(target.topic.content, _TOPIC_FIELDS[target.content_type], None)
        else:
            attr = next(a for ct, a, _ in _EMBEDDED_ASSESSMENTS if ct == target.content_type)
            remaining = [e for e in getattr(target.unit.assessments, attr) if e is not target.entry]
            setattr(target.unit.assessments, attr, remaining)
        target.aggregate.dirty = True

    def approve(self, handle, *, reviewer_id, notes, is_premium, now) -> None:
        target: LegacyTarget = handle.target
        entry = target.entry
        entry.status = "approved"
        entry.reviewed_by = str(reviewer_id)
        entry.review_date = now
        entry.review_notes = notes
        if is_premium is not None:
            entry.is_premium = bool(is_premium)
        target.aggregate.dirty = True

    def reject(self, handle, *, reviewer_id, notes, now) -> None:
        # Embedded content has no rejected resting state.
        self._remove(handle.target)
        log.info(
            "legacy content rejected and removed: course_id=%s item=%s reviewer=%s",
            handle.item.course_id,
            handle.item.id,
            reviewer_id,
        )

    def delete(self, handle, *, now) -> list[BlobRef]:
        target: LegacyTarget = handle.target
        self._remove(target)
        ref = target.entry.blob_ref()
        return [ref] if ref is not None else []

    def feed(self, course_id, *, year=None, semester=None) -> list[FeedEntry]:
        course = self._course(course_id)
        if course is None:
            return []
        entries: list[FeedEntry] = []
        for unit in self._load(course).units:
            if year is not None and unit.year != year:
                continue
            if semester is not None and unit.semester != semester:
                continue
            unit_info = {
                "course_id": str(course.id),
                "unit_id": unit.id,
                "unit_code": unit.unit_code,
                "unit_name": unit.unit_name,
                "year": unit.year,
                "semester": unit.semester,
            }
            for topic in unit.topics:
                topic_info = {"topic_id": topic.id, "topic_title": topic.title, "topic_number": topic.topic_number}
                for content_type, field in _TOPIC_FIELDS.items():
                    asset = getattr(topic.content, field)
                    if asset is None or asset.reference_value() is None:
                        continue
                    entries.append(
                        FeedEntry(
                            id=f"{topic.id}:{content_type}",
                            source=self.source,
                            kind=content_type,
                            content_type=content_type,
                            title=asset.title or f"{topic.title} ({_TOPIC_LABELS[content_type]})",
                            status=asset.status or "pending",
                            is_active=True,
                            is_premium=_premium(asset, content_type),
                            filename=asset.filename or asset.reference_value(),
                            file_path=asset.local_path(),
                            blob_id=asset.blob_id,
                            mime_type=asset.mime_type,
                            upload_date=naive_utc(asset.upload_date),
                            **unit_info,
                            **topic_info,
                        )
                    )
                for index, link in enumerate(topic.content.youtube_resources):
                    entries.append(
                        FeedEntry(
                            id=link.id or f"{topic.id}:link:{index}",
                            source=self.source,
                            kind="link",
                            content_type="link",
                            title=link.title or "External resource",
                            description=link.description,
                            status=link.status,
                            is_active=True,
                            is_premium=bool(link.is_premium),
                            url=link.url,
                            upload_date=naive_utc(link.upload_date),
                            **unit_info,
                            **topic_info,
                        )
                    )
            for content_type, attr, _ in _EMBEDDED_ASSESSMENTS:
                for entry in getattr(unit.assessments, attr):
                    entries.append(
                        FeedEntry(
                            id=entry.id,
                            source=self.source,
                            kind="assessment",
                            content_type=content_type,
                            title=entry.title or "Untitled assessment",
                            description=entry.description,
                            status=entry.status or "pending",
                            is_active=True,
                            is_premium=_premium(entry, content_type),
                            filename=entry.filename or entry.reference_value(),
                            file_path=entry.local_path(),
                            blob_id=entry.blob_id,
                            mime_type=entry.mime_type,
                            upload_date=naive_utc(entry.upload_date),
                            due_date=naive_utc(entry.due_date),
                            total_marks=entry.total_marks,
                            **unit_info,
                        )
                    )
        return entries

    def file_entry(self, course_id, unit_id: str, entry_id: str) -> FeedEntry | None:
        """The feed entry behind one stored binary; links have none."""
        for entry in self.feed(course_id):
            if entry.unit_id == unit_id and entry.id == entry_id and entry.kind != "link":
                return entry
        return None

    def list_units(self, course_id) -> list[UnitCoverage]:
        course = self._course(course_id)
        if course is None:
            return []
        return [self._coverage(course, unit) for unit in self._load(course).units]

    def commit(self) -> None:
        for agg in self._aggregates.values():
            if not agg.dirty:
                continue
            # Reassigning the whole column is what marks the row dirty.
            agg.course.units = [
                s.model_dump(mode="json", exclude_none=True) if isinstance(s, LegacyUnit) else s for s in agg.slots
            ]
            agg.dirty = False
            log.info("legacy aggregate saved: course_id=%s units=%s", agg.course.id, len(agg.slots))
