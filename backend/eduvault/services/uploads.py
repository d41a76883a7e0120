from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO

from sqlalchemy import select
from sqlalchemy.orm import Session

from eduvault.core import errors
from eduvault.core.config import settings
from eduvault.models.assessment import Assessment, AssessmentStatus, AssessmentType
from eduvault.models.content_asset import ContentAsset, ContentAssetType, ContentStatus, OwnerType
from eduvault.models.course import Course
from eduvault.models.topic import ExternalResource, Topic
from eduvault.models.unit import Unit
from eduvault.models.user import User, UserRole
from eduvault.services import storage
from eduvault.services.content_policy import default_is_premium, naive_utc, utcnow
from eduvault.services.content_refs import ASSESSMENT_TYPES, TOPIC_CONTENT_TYPES, VIDEO, as_uuid, canonical_content_type
from eduvault.services.storage import BlobRef


log = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {
    "video": {".mp4", ".webm", ".mov", ".mkv", ".avi", ".m4v"},
    "notes": {".pdf", ".doc", ".docx", ".ppt", ".pptx", ".txt"},
    "assessment": {".pdf", ".doc", ".docx", ".jpg", ".jpeg", ".png", ".webp"},
}

AUTO_APPROVAL_NOTE = "Auto-approved: super admin upload"


@dataclass
class UploadedFile:
    stream: BinaryIO
    filename: str
    content_type: str | None = None


def _link(obj, attr: str, item_id) -> None:
    sid = str(item_id)
    current = list(getattr(obj, attr) or [])
    if sid not in current:
        setattr(obj, attr, current + [sid])


def _stream_size(stream: BinaryIO) -> int:
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return int(size)


class UploadGateway:
    def __init__(self, db: Session, *, now: datetime | None = None):
        self.db = db
        self._now = now
        # Binaries replaced by this request; removed after commit.
        self.released: list[BlobRef] = []
        # Binaries written by this request; removed if it never commits.
        self.stored: list[BlobRef] = []

    def now(self) -> datetime:
        return naive_utc(self._now) if self._now is not None else utcnow()

    def _location(self, course_id, unit_id, topic_id=None) -> tuple[Course, Unit, Topic | None]:
        course = self.db.get(Course, as_uuid(course_id)) if as_uuid(course_id) else None
        if course is None:
            raise errors.NotFoundError("course not found", course_id=str(course_id))
        unit = self.db.get(Unit, as_uuid(unit_id)) if as_uuid(unit_id) else None
        if unit is None or unit.course_id != course.id:
            raise errors.NotFoundError("unit not found in course", course_id=str(course_id), unit_id=str(unit_id))
        topic = None
        if topic_id is not None:
            topic = self.db.get(Topic, as_uuid(topic_id)) if as_uuid(topic_id) else None
            if topic is None or topic.unit_id != unit.id:
                raise errors.NotFoundError(
                    "topic not found in unit", course_id=str(course_id), unit_id=str(unit_id), topic_id=str(topic_id)
                )
        return course, unit, topic

    @staticmethod
    def _check_file(upload: UploadedFile, kind: str) -> int:
        ext = os.path.splitext(str(upload.filename or ""))[1].lower()
        if ext not in ALLOWED_EXTENSIONS[kind]:
            raise errors.ValidationError("unsupported file type", filename=upload.filename, kind=kind)
        size = _stream_size(upload.stream)
        if size <= 0:
            raise errors.ValidationError("uploaded file is empty", filename=upload.filename)
        if size > int(settings.upload_max_bytes):
            raise errors.ValidationError("uploaded file is too large", filename=upload.filename, size=size)
        return size

    def _store(self, upload: UploadedFile, *, course: Course, unit: Unit) -> str:
        blob_id = storage.put_blob(
            upload.stream,
            prefix=f"content/{course.id}/{unit.id}",
            filename=upload.filename,
            content_type=upload.content_type,
        )
        self.stored.append(BlobRef(blob_id=blob_id))
        return blob_id

    def _review_fields(self, uploader: User) -> dict:
        # Super admin uploads publish immediately, reviewed by the uploader.
        if uploader.role == UserRole.super_admin:
            return {
                "status": "approved",
                "reviewed_by": uploader.id,
                "review_date": self.now(),
                "review_notes": AUTO_APPROVAL_NOTE,
            }
        return {"status": "pending", "reviewed_by": None, "review_date": None, "review_notes": None}

    def upload_topic_content(
        self,
        *,
        course_id,
        unit_id,
        topic_id,
        content_type: str,
        upload: UploadedFile,
        uploader: User,
        title: str | None = None,
        description: str | None = None,
        is_premium: bool | None = None,
    ) -> ContentAsset:
        content_type = canonical_content_type(content_type)
        if content_type not in TOPIC_CONTENT_TYPES:
            raise errors.ValidationError("topic uploads accept video or notes", content_type=content_type)
        course, unit, topic = self._location(course_id, unit_id, topic_id)
        size = self._check_file(upload, content_type)
        blob_id = self._store(upload, course=course, unit=unit)
        now = self.now()
        asset_type = ContentAssetType(content_type)

        live = list(
            self.db.scalars(
                select(ContentAsset)
                .where(
                    ContentAsset.owner_type == OwnerType.topic,
                    ContentAsset.owner_id == topic.id,
                    ContentAsset.type == asset_type,
                    ContentAsset.status.in_([ContentStatus.pending, ContentStatus.approved]),
                    ContentAsset.is_active.is_(True),
                )
                .order_by(ContentAsset.upload_date.desc(), ContentAsset.id)
            ).all()
        )
        asset = live[0] if live else None
        for extra in live[1:]:
            self.released.append(BlobRef.of(blob_id=extra.blob_id, file_path=extra.file_path))
            self.db.delete(extra)

        if asset is None:
            asset = ContentAsset(id=uuid.uuid4(), type=asset_type, owner_type=OwnerType.topic, owner_id=topic.id)
            self.db.add(asset)
        else:
            self.released.append(BlobRef.of(blob_id=asset.blob_id, file_path=asset.file_path))
            log.info("replacing %s asset_id=%s topic_id=%s", content_type, asset.id, topic.id)

        review = self._review_fields(uploader)
        asset.course_id = course.id
        asset.unit_id = unit.id
        asset.title = title or f"{topic.title} - {'Lecture video' if content_type == VIDEO else 'Notes'}"
        asset.description = description
        asset.filename = upload.filename
        asset.blob_id = blob_id
        asset.file_path = None
        asset.file_size = size
        asset.mime_type = upload.content_type
        asset.is_premium = default_is_premium(content_type) if is_premium is None else bool(is_premium)
        asset.is_active = True
        asset.uploaded_by = uploader.id
        asset.upload_date = now
        asset.status = ContentStatus(review["status"])
        asset.reviewed_by = review["reviewed_by"]
        asset.review_date = review["review_date"]
        asset.review_notes = review["review_notes"]

        if content_type == VIDEO:
            topic.lecture_video_id = asset.id
        else:
            topic.notes_id = asset.id
        _link(unit, "topic_ids", topic.id)
        _link(course, "unit_ids", unit.id)
        _link(course, "topic_ids", topic.id)

        self.db.flush()
        log.info(
            "topic %s uploaded: asset_id=%s topic_id=%s status=%s uploader=%s",
            content_type,
            asset.id,
            topic.id,
            review["status"],
            uploader.id,
        )
        return asset

    def upload_assessment(
        self,
        *,
        course_id,
        unit_id,
        assessment_type: str,
        upload: UploadedFile,
        uploader: User,
        title: str,
        description: str | None = None,
        due_date: datetime | None = None,
        total_marks: int | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        duration_minutes: int | None = None,
        is_premium: bool | None = None,
    ) -> Assessment:
        assessment_type = canonical_content_type(assessment_type)
        if assessment_type not in ASSESSMENT_TYPES:
            raise errors.ValidationError("unsupported assessment type", assessment_type=assessment_type)
        if not str(title or "").strip():
            raise errors.ValidationError("title is required")
        if start_time and end_time and naive_utc(end_time) <= naive_utc(start_time):
            raise errors.ValidationError("end_time must be after start_time")

        course, unit, _ = self._location(course_id, unit_id)
        size = self._check_file(upload, "assessment")
        blob_id = self._store(upload, course=course, unit=unit)
        review = self._review_fields(uploader)

        assessment = Assessment(
            id=uuid.uuid4(),
            type=AssessmentType(assessment_type),
            course_id=course.id,
            unit_id=unit.id,
            title=str(title).strip(),
            description=description,
            image_file={
                "filename": upload.filename,
                "original_name": upload.filename,
                "mime_type": upload.content_type,
                "size": size,
                "blob_id": blob_id,
            },
            due_date=due_date,
            total_marks=total_marks,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=duration_minutes,
            status=AssessmentStatus(review["status"]),
            is_active=True,
            is_premium=default_is_premium(assessment_type) if is_premium is None else bool(is_premium),
            approval_history=[],
            uploaded_by=uploader.id,
            upload_date=self.now(),
            reviewed_by=review["reviewed_by"],
            review_date=review["review_date"],
            review_notes=review["review_notes"],
        )
        self.db.add(assessment)

        _link(unit, "assessment_ids", assessment.id)
        _link(course, "assessment_ids", assessment.id)
        _link(course, "unit_ids", unit.id)

        self.db.flush()
        log.info(
            "assessment uploaded: assessment_id=%s type=%s unit_id=%s status=%s uploader=%s",
            assessment.id,
            assessment_type,
            unit.id,
            review["status"],
            uploader.id,
        )
        return assessment

    def add_topic_link(
        self,
        *,
        course_id,
        unit_id,
        topic_id,
        title: str,
        url: str,
        uploader: User,
        description: str | None = None,
        is_premium: bool = False,
    ) -> ExternalResource:
        url = str(url or "").strip()
        if not url.lower().startswith(("http://", "https://")):
            raise errors.ValidationError("url must be an http(s) link", url=url)
        if not str(title or "").strip():
            raise errors.ValidationError("title is required")
        _, _, topic = self._location(course_id, unit_id, topic_id)

        link = ExternalResource(
            id=uuid.uuid4(),
            topic_id=topic.id,
            title=str(title).strip(),
            url=url,
            description=description,
            is_premium=bool(is_premium),
            status=ContentStatus(self._review_fields(uploader)["status"]),
            uploaded_by=uploader.id,
            upload_date=self.now(),
        )
        self.db.add(link)
        self.db.flush()
        return link
