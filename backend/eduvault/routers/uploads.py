from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from eduvault.core.audit_log import audit_log
from eduvault.core.rate_limit import rate_limit
from eduvault.core.security import require_roles
from eduvault.db.session import get_db
from eduvault.models.user import User, UserRole
from eduvault.schemas.upload import LinkCreateRequest, LinkOut, UploadedAssessmentOut, UploadedAssetOut
from eduvault.services.blob_cleanup_jobs import schedule_blob_deletion
from eduvault.services.uploads import UploadedFile, UploadGateway

router = APIRouter(prefix="/uploads", tags=["uploads"])

log = logging.getLogger(__name__)


@contextmanager
def _discard_blobs_on_failure(db: Session, gateway: UploadGateway):
    try:
        yield
    except Exception:
        db.rollback()
        log.warning("upload aborted: discarding stored blobs=%s", len(gateway.stored))
        schedule_blob_deletion(gateway.stored)
        raise


def _topic_upload(
    *,
    request: Request,
    db: Session,
    user: User,
    content_type: str,
    course_id: str,
    unit_id: str,
    topic_id: str,
    file: UploadFile,
    title: str | None,
    description: str | None,
    is_premium: bool | None,
) -> UploadedAssetOut:
    gateway = UploadGateway(db)
    with _discard_blobs_on_failure(db, gateway):
        asset = gateway.upload_topic_content(
            course_id=course_id,
            unit_id=unit_id,
            topic_id=topic_id,
            content_type=content_type,
            upload=UploadedFile(stream=file.file, filename=file.filename or "", content_type=file.content_type),
            uploader=user,
            title=title,
            description=description,
            is_premium=is_premium,
        )
        audit_log(
            db=db,
            request=request,
            event_type="content_uploaded",
            actor_user_id=user.id,
            meta={"asset_id": str(asset.id), "topic_id": topic_id, "type": content_type, "status": asset.status.value},
        )
        db.commit()
    schedule_blob_deletion(gateway.released)
    return UploadedAssetOut(
        asset_id=str(asset.id),
        topic_id=str(asset.owner_id),
        type=asset.type.value,
        status=asset.status.value,
        is_premium=bool(asset.is_premium),
        filename=asset.filename,
        upload_date=asset.upload_date,
    )


@router.post("/courses/{course_id}/units/{unit_id}/topics/{topic_id}/video", response_model=UploadedAssetOut, status_code=201)
def upload_topic_video(
    request: Request,
    course_id: str,
    unit_id: str,
    topic_id: str,
    file: UploadFile = File(...),
    title: str | None = Form(default=None),
    description: str | None = Form(default=None),
    is_premium: bool | None = Form(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.mini_admin)),
    _: object = rate_limit(key_prefix="upload_content", limit=30, window_seconds=60),
):
    return _topic_upload(
        request=request,
        db=db,
        user=user,
        content_type="video",
        course_id=course_id,
        unit_id=unit_id,
        topic_id=topic_id,
        file=file,
        title=title,
        description=description,
        is_premium=is_premium,
    )


@router.post("/courses/{course_id}/units/{unit_id}/topics/{topic_id}/notes", response_model=UploadedAssetOut, status_code=201)
def upload_topic_notes(
    request: Request,
    course_id: str,
    unit_id: str,
    topic_id: str,
    file: UploadFile = File(...),
    title: str | None = Form(default=None),
    description: str | None = Form(default=None),
    is_premium: bool | None = Form(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.mini_admin)),
    _: object = rate_limit(key_prefix="upload_content", limit=30, window_seconds=60),
):
    return _topic_upload(
        request=request,
        db=db,
        user=user,
        content_type="notes",
        course_id=course_id,
        unit_id=unit_id,
        topic_id=topic_id,
        file=file,
        title=title,
        description=description,
        is_premium=is_premium,
    )


@router.post("/courses/{course_id}/units/{unit_id}/assessments", response_model=UploadedAssessmentOut, status_code=201)
def upload_assessment(
    request: Request,
    course_id: str,
    unit_id: str,
    file: UploadFile = File(...),
    assessment_type: str = Form(...),
    title: str = Form(...),
    description: str | None = Form(default=None),
    due_date: datetime | None = Form(default=None),
    total_marks: int | None = Form(default=None),
    start_time: datetime | None = Form(default=None),
    end_time: datetime | None = Form(default=None),
    duration_minutes: int | None = Form(default=None),
    is_premium: bool | None = Form(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.mini_admin)),
    _: object = rate_limit(key_prefix="upload_assessment", limit=30, window_seconds=60),
):
    gateway = UploadGateway(db)
    with _discard_blobs_on_failure(db, gateway):
        assessment = gateway.upload_assessment(
            course_id=course_id,
            unit_id=unit_id,
            assessment_type=assessment_type,
            upload=UploadedFile(stream=file.file, filename=file.filename or "", content_type=file.content_type),
            uploader=user,
            title=title,
            description=description,
            due_date=due_date,
            total_marks=total_marks,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=duration_minutes,
            is_premium=is_premium,
        )
        audit_log(
            db=db,
            request=request,
            event_type="assessment_uploaded",
            actor_user_id=user.id,
            meta={"assessment_id": str(assessment.id), "unit_id": unit_id, "type": assessment.type.value},
        )
        db.commit()
    return UploadedAssessmentOut(
        assessment_id=str(assessment.id),
        unit_id=str(assessment.unit_id),
        type=assessment.type.value,
        status=assessment.status.value,
        is_premium=bool(assessment.is_premium),
        title=assessment.title,
        upload_date=assessment.upload_date,
    )


@router.post("/courses/{course_id}/units/{unit_id}/topics/{topic_id}/links", response_model=LinkOut, status_code=201)
def add_topic_link(
    request: Request,
    course_id: str,
    unit_id: str,
    topic_id: str,
    body: LinkCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.super_admin)),
):
    link = UploadGateway(db).add_topic_link(
        course_id=course_id,
        unit_id=unit_id,
        topic_id=topic_id,
        title=body.title,
        url=body.url,
        description=body.description,
        is_premium=body.is_premium,
        uploader=user,
    )
    audit_log(
        db=db,
        request=request,
        event_type="topic_link_added",
        actor_user_id=user.id,
        meta={"link_id": str(link.id), "topic_id": topic_id},
    )
    db.commit()
    return LinkOut(
        link_id=str(link.id),
        topic_id=str(link.topic_id),
        title=link.title,
        url=link.url,
        status=link.status.value,
        is_premium=bool(link.is_premium),
    )
