from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from eduvault.core.audit_log import audit_log
from eduvault.core.rate_limit import rate_limit
from eduvault.core.security import require_roles
from eduvault.db.session import get_db
from eduvault.models.user import User, UserRole
from eduvault.schemas.content import (
    ApprovedContentOut,
    ApproveRequest,
    ContentItemOut,
    ContentStatusOut,
    DeleteFailureOut,
    DeleteRequest,
    DeleteResultOut,
    ExamWindowOut,
    ExamWindowRequest,
    PendingQueueOut,
    RejectRequest,
    ReviewResultOut,
    StatsOut,
)
from eduvault.services.approval import ApprovalService
from eduvault.services.blob_cleanup_jobs import schedule_blob_deletion
from eduvault.services.content_refs import identifiers
from eduvault.services.content_policy import record_status
from eduvault.services.reconciliation import ReconciliationEngine, apply_queue_filters, empty_stats

router = APIRouter(prefix="/content-approval", tags=["content-approval"])


@router.get("/pending", response_model=PendingQueueOut)
def pending_content(
    include_legacy: bool = False,
    institution: str | None = None,
    course_id: str | None = None,
    unit_id: str | None = None,
    uploader_id: str | None = None,
    type: str | None = None,
    assessment_type: str | None = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.super_admin)),
):
    queue = ReconciliationEngine(db).build_pending_content(include_legacy=include_legacy)
    queue.pending_content = apply_queue_filters(
        queue.pending_content,
        institution=institution,
        course_id=course_id,
        unit_id=unit_id,
        uploader_id=uploader_id,
        type=type,
        assessment_type=assessment_type,
    )
    queue.total_pending = len(queue.pending_content)
    return PendingQueueOut.model_validate(queue, from_attributes=True)


@router.post("/approve", response_model=ReviewResultOut)
def approve_content(
    request: Request,
    body: ApproveRequest,
    include_legacy: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.super_admin)),
    _: object = rate_limit(key_prefix="content_approve", limit=120, window_seconds=60),
):
    result = ApprovalService(db).approve(
        body,
        reviewer=user,
        notes=body.notes,
        is_premium=body.is_premium,
        include_legacy=include_legacy,
    )
    audit_log(
        db=db,
        request=request,
        event_type="content_approved",
        actor_user_id=user.id,
        meta={"source": result.item.source, "item_id": result.item.id, "type": result.item.content_type, **identifiers(body)},
    )
    db.commit()
    return ReviewResultOut(
        message=f"{result.item.type} approved",
        item=ContentItemOut.model_validate(result.item, from_attributes=True),
        pending=PendingQueueOut.model_validate(result.pending, from_attributes=True),
    )


@router.post("/reject", response_model=ReviewResultOut)
def reject_content(
    request: Request,
    body: RejectRequest,
    include_legacy: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.super_admin)),
    _: object = rate_limit(key_prefix="content_reject", limit=120, window_seconds=60),
):
    result = ApprovalService(db).reject(body, reviewer=user, notes=body.notes, include_legacy=include_legacy)
    audit_log(
        db=db,
        request=request,
        event_type="content_rejected",
        actor_user_id=user.id,
        meta={
            "source": result.item.source,
            "item_id": result.item.id,
            "type": result.item.content_type,
            "notes": body.notes,
            **identifiers(body),
        },
    )
    db.commit()
    return ReviewResultOut(
        message=f"{result.item.type} rejected",
        item=ContentItemOut.model_validate(result.item, from_attributes=True),
        pending=PendingQueueOut.model_validate(result.pending, from_attributes=True),
    )


@router.delete("/delete", response_model=DeleteResultOut)
def delete_content(
    request: Request,
    body: DeleteRequest = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.mini_admin)),
    _: object = rate_limit(key_prefix="content_delete", limit=60, window_seconds=60),
):
    service = ApprovalService(db)
    refs = body.references()
    outcome = service.delete(refs, requester=user)
    audit_log(
        db=db,
        request=request,
        event_type="content_deleted",
        actor_user_id=user.id,
        meta={"requested": len(refs), "deleted": outcome.deleted_count, "failed": len(outcome.failures)},
    )
    db.commit()
    schedule_blob_deletion(service.released)

    message = f"Deleted {outcome.deleted_count} item(s)"
    if outcome.failures:
        message += f", {len(outcome.failures)} failed"
    return DeleteResultOut(
        message=message,
        deleted_count=outcome.deleted_count,
        failures=[DeleteFailureOut.model_validate(f, from_attributes=True) for f in outcome.failures],
    )


@router.get("/approved", response_model=ApprovedContentOut)
def approved_content(
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.super_admin)),
):
    items = ReconciliationEngine(db).build_approved_content()
    return ApprovedContentOut(
        items=[ContentItemOut.model_validate(i, from_attributes=True) for i in items],
        total=len(items),
    )


@router.get("/stats", response_model=StatsOut)
def content_stats(
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.super_admin)),
):
    return StatsOut(**ReconciliationEngine(db).aggregate_stats())


@router.get("/status", response_model=ContentStatusOut)
def my_content_status(
    include_legacy: bool = True,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.mini_admin)),
):
    # Mini admins see their own uploads; super admins see everything.
    scope = None if user.role == UserRole.super_admin else {str(user.id)}
    queue = ReconciliationEngine(db).build_pending_content(
        include_legacy=include_legacy,
        uploader_scope=scope,
        include_non_pending=True,
    )
    items = [ContentItemOut.model_validate(i, from_attributes=True) for i in queue.pending_content]
    stats = empty_stats()
    for item in queue.pending_content:
        stats[record_status(item.status)] += 1
        stats["total"] += 1
    return ContentStatusOut(items=items, stats=StatsOut(**stats), total=len(items))


@router.post("/assessments/{assessment_id}/window", response_model=ExamWindowOut)
def change_exam_window(
    request: Request,
    assessment_id: str,
    body: ExamWindowRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.super_admin)),
):
    assessment = ApprovalService(db).transition_exam_window(assessment_id, body.state, actor=user, notes=body.notes)
    audit_log(
        db=db,
        request=request,
        event_type="exam_window_changed",
        actor_user_id=user.id,
        meta={"assessment_id": assessment_id, "state": body.state},
    )
    db.commit()
    return ExamWindowOut(
        assessment_id=str(assessment.id),
        status=assessment.status.value,
        approval_history=list(assessment.approval_history or []),
    )
