from __future__ import annotations

import mimetypes
from dataclasses import asdict
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from eduvault.core import errors
from eduvault.core.audit_log import audit_log
from eduvault.core.rate_limit import rate_limit
from eduvault.core.security import get_current_user
from eduvault.db.session import get_db
from eduvault.models.assessment import Assessment
from eduvault.models.content_asset import ContentAsset, OwnerType
from eduvault.models.course import Course
from eduvault.models.topic import Topic
from eduvault.models.unit import Unit
from eduvault.models.user import User, UserRole
from eduvault.schemas.access import (
    ContentDescriptorOut,
    CourseContentOut,
    CourseInfoOut,
    SemesterOut,
    StudentAssessmentOut,
    StudentAssessmentsOut,
    SubscriptionInfoOut,
    UnitsStructureOut,
    UnitSummaryOut,
    YearOut,
)
from eduvault.services import storage
from eduvault.services.access import AccessResolver, describe, is_live
from eduvault.services.content_refs import ASSESSMENT_TYPES, TOPIC_CONTENT_TYPES, as_uuid, canonical_content_type
from eduvault.services.content_repository import FeedEntry
from eduvault.services.legacy_repository import LegacyRepository
from eduvault.services.normalized_repository import NormalizedRepository
from eduvault.services.subscriptions import has_active_subscription, subscription_info, subscriptions_by_year

router = APIRouter(prefix="/student", tags=["student"])

_STAFF_ROLES = {UserRole.mini_admin, UserRole.super_admin}
_ASSESSMENT_GROUPS = {"cat": "cats", "exam": "exams", "pastExam": "past_exams", "assignment": "assignments"}


def _course_or_404(db: Session, course_id: str) -> Course:
    cid = as_uuid(course_id)
    course = db.get(Course, cid) if cid else None
    if course is None or not course.is_active:
        raise HTTPException(status_code=404, detail="course not found")
    return course


def _course_info(course: Course) -> CourseInfoOut:
    return CourseInfoOut(id=str(course.id), name=course.name, code=course.code, institution=course.institution)


def _subscriptions(db: Session, user: User, course: Course, year: int | None = None) -> dict[int, bool]:
    subs = subscriptions_by_year(db, user_id=user.id, course_id=course.id, year=year)
    if user.role in _STAFF_ROLES:
        # Staff review content, so they see every year unlocked.
        return {y: True for y in subs}
    return subs


@router.get("/courses/{course_id}/content", response_model=CourseContentOut)
def course_content(
    course_id: str,
    year: int | None = None,
    semester: int | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    course = _course_or_404(db, course_id)
    subs = _subscriptions(db, user, course, year)
    content = AccessResolver(db).resolve(str(course.id), year=year, semester=semester, subscriptions_by_year=subs)
    premium = sum(1 for c in content if c.is_premium)
    return CourseContentOut(
        course=_course_info(course),
        content=[ContentDescriptorOut.model_validate(c, from_attributes=True) for c in content],
        total_content=len(content),
        premium_content=premium,
        free_content=len(content) - premium,
        subscriptions=subs,
        subscription_info=SubscriptionInfoOut(**subscription_info()),
    )


@router.get("/courses/{course_id}/units", response_model=UnitsStructureOut)
def course_units(
    course_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    course = _course_or_404(db, course_id)
    subs = _subscriptions(db, user, course)

    grouped: dict[int | None, dict[int | None, list[UnitSummaryOut]]] = {}
    for repository in (LegacyRepository(db), NormalizedRepository(db)):
        for unit in repository.list_units(str(course.id)):
            summary = UnitSummaryOut.model_validate(unit, from_attributes=True)
            grouped.setdefault(unit.year, {}).setdefault(unit.semester, []).append(summary)

    def _order(value: int | None) -> tuple[int, int]:
        return (1, 0) if value is None else (0, int(value))

    years = []
    for year in sorted(grouped, key=_order):
        semesters = [
            SemesterOut(semester=sem, units=sorted(units, key=lambda u: (u.unit_code or "", u.unit_name)))
            for sem, units in sorted(grouped[year].items(), key=lambda kv: _order(kv[0]))
        ]
        years.append(YearOut(year=year, has_subscription=bool(subs.get(year, False)) if year else False, semesters=semesters))
    return UnitsStructureOut(course=_course_info(course), years=years)


def _has_year_access(db: Session, user: User, course_id, year: int | None) -> bool:
    if user.role in _STAFF_ROLES:
        return True
    if course_id is None or year is None:
        return False
    return has_active_subscription(db, user_id=user.id, course_id=course_id, year=int(year))


def _serve(entry: FeedEntry, *, download: bool, db: Session, user: User):
    if not is_live(entry):
        raise HTTPException(status_code=404, detail="content not found")
    descriptor = describe(entry, has_subscription=_has_year_access(db, user, entry.course_id, entry.year))
    if download and not descriptor.can_download:
        raise HTTPException(status_code=403, detail="download not permitted")
    if not descriptor.can_view:
        raise HTTPException(status_code=403, detail="subscription required")

    filename = entry.filename or "file"
    disposition = "attachment" if download else "inline"
    headers = {"Content-Disposition": f"{disposition}; filename*=UTF-8''{quote(filename)}"}

    if entry.blob_id:
        chunks, content_type, length = storage.open_blob(entry.blob_id)
        if length is not None:
            headers["Content-Length"] = str(length)
        return StreamingResponse(
            chunks,
            media_type=entry.mime_type or content_type or "application/octet-stream",
            headers=headers,
        )

    if entry.file_path:
        path = storage.resolve_media_path(entry.file_path)
        if not path.is_file():
            raise HTTPException(status_code=404, detail="file not found")
        media_type = entry.mime_type or mimetypes.guess_type(str(path))[0] or "application/octet-stream"
        return FileResponse(path, media_type=media_type, headers=headers)

    raise HTTPException(status_code=404, detail="file not found")


@router.get("/files/assets/{asset_id}")
def asset_file(
    request: Request,
    asset_id: str,
    download: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="student_file", limit=120, window_seconds=60),
):
    aid = as_uuid(asset_id)
    asset = db.get(ContentAsset, aid) if aid else None
    if asset is None or asset.owner_type != OwnerType.topic:
        raise HTTPException(status_code=404, detail="content not found")
    topic = db.get(Topic, asset.owner_id)
    unit = db.get(Unit, topic.unit_id) if topic is not None else None
    if unit is None:
        raise HTTPException(status_code=404, detail="content not found")

    entry = NormalizedRepository(db).asset_entry(asset, topic, unit)
    response = _serve(entry, download=download, db=db, user=user)
    if download:
        audit_log(
            db=db,
            request=request,
            event_type="content_downloaded",
            actor_user_id=user.id,
            meta={"asset_id": asset_id, "type": entry.content_type},
        )
        db.commit()
    return response


@router.get("/files/assessments/{assessment_id}")
def assessment_file(
    request: Request,
    assessment_id: str,
    download: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="student_file", limit=120, window_seconds=60),
):
    aid = as_uuid(assessment_id)
    assessment = db.get(Assessment, aid) if aid else None
    unit = db.get(Unit, assessment.unit_id) if assessment is not None else None
    if unit is None:
        raise HTTPException(status_code=404, detail="content not found")

    entry = NormalizedRepository(db).assessment_entry(assessment, unit)
    response = _serve(entry, download=download, db=db, user=user)
    if download:
        audit_log(
            db=db,
            request=request,
            event_type="assessment_downloaded",
            actor_user_id=user.id,
            meta={"assessment_id": assessment_id, "type": entry.content_type},
        )
        db.commit()
    return response


def _legacy_file(request: Request, *, db: Session, user: User, course_id: str, unit_id: str, entry_id: str, download: bool):
    course = _course_or_404(db, course_id)
    entry = LegacyRepository(db).file_entry(str(course.id), unit_id, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="content not found")
    response = _serve(entry, download=download, db=db, user=user)
    if download:
        audit_log(
            db=db,
            request=request,
            event_type="content_downloaded",
            actor_user_id=user.id,
            meta={"course_id": str(course.id), "unit_id": unit_id, "entry_id": entry_id, "type": entry.content_type},
        )
        db.commit()
    return response


@router.get("/files/legacy/{course_id}/{unit_id}/topics/{topic_id}/{content_type}")
def legacy_topic_file(
    request: Request,
    course_id: str,
    unit_id: str,
    topic_id: str,
    content_type: str,
    download: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="student_file", limit=120, window_seconds=60),
):
    content_type = canonical_content_type(content_type)
    if content_type not in TOPIC_CONTENT_TYPES:
        raise HTTPException(status_code=404, detail="content not found")
    return _legacy_file(
        request,
        db=db,
        user=user,
        course_id=course_id,
        unit_id=unit_id,
        entry_id=f"{topic_id}:{content_type}",
        download=download,
    )


@router.get("/files/legacy/{course_id}/{unit_id}/assessments/{content_id}")
def legacy_assessment_file(
    request: Request,
    course_id: str,
    unit_id: str,
    content_id: str,
    download: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="student_file", limit=120, window_seconds=60),
):
    return _legacy_file(
        request, db=db, user=user, course_id=course_id, unit_id=unit_id, entry_id=content_id, download=download
    )


def _list_assessments(db: Session, user: User, **filters) -> StudentAssessmentsOut:
    subscribed: dict[tuple[str, int], bool] = {}

    def has_subscription(course_id: str, year: int) -> bool:
        subscribed[(course_id, year)] = _has_year_access(db, user, course_id, year)
        return subscribed[(course_id, year)]

    descriptors = AccessResolver(db).resolve_assessments(has_subscription=has_subscription, **filters)
    course_ids = {as_uuid(d.course_id) for d in descriptors} - {None}
    courses = {str(c.id): c for c in db.scalars(select(Course).where(Course.id.in_(course_ids))).all()} if course_ids else {}

    items = []
    for d in descriptors:
        course = courses.get(str(d.course_id))
        items.append(
            StudentAssessmentOut.model_validate(
                {
                    **asdict(d),
                    "course_name": course.name if course is not None else None,
                    "course_code": course.code if course is not None else None,
                    "has_subscription": subscribed.get((str(d.course_id), int(d.year)), False),
                }
            )
        )

    grouped: dict[str, list[StudentAssessmentOut]] = {key: [] for key in _ASSESSMENT_GROUPS.values()}
    for item in items:
        grouped[_ASSESSMENT_GROUPS[item.type]].append(item)
    return StudentAssessmentsOut(
        assessments=items,
        grouped=grouped,
        total_count=len(items),
        premium_count=sum(1 for i in items if i.is_premium),
        accessible_count=sum(1 for i in items if i.has_access),
    )


@router.get("/assessments", response_model=StudentAssessmentsOut)
def student_assessments(
    course_id: str | None = None,
    unit_id: str | None = None,
    assessment_type: str | None = Query(default=None, alias="type"),
    year: int | None = None,
    semester: int | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    content_type = canonical_content_type(assessment_type) if assessment_type else None
    if content_type is not None and content_type not in ASSESSMENT_TYPES:
        raise errors.ValidationError("unsupported assessment type", type=assessment_type)
    return _list_assessments(
        db,
        user,
        course_id=course_id,
        unit_id=unit_id,
        content_types={content_type} if content_type else None,
        year=year,
        semester=semester,
    )


@router.get("/cats", response_model=StudentAssessmentsOut)
def student_cats(
    course_id: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _list_assessments(db, user, course_id=course_id, content_types={"cat"})


@router.get("/exams", response_model=StudentAssessmentsOut)
def student_exams(
    course_id: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _list_assessments(db, user, course_id=course_id, content_types={"exam", "pastExam"})
