from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from eduvault.core import errors
from eduvault.models.assessment import Assessment, AssessmentStatus, AssessmentType
from eduvault.models.user import User, UserRole
from eduvault.services.content_policy import naive_utc, record_status, utcnow
from eduvault.services.content_refs import addressing_modes, as_uuid, identifiers
from eduvault.services.content_repository import ContentHandle, ContentItem
from eduvault.services.legacy_repository import LegacyRepository
from eduvault.services.normalized_repository import NormalizedRepository
from eduvault.services.reconciliation import PendingQueue, ReconciliationEngine
from eduvault.services.storage import BlobRef


log = logging.getLogger(__name__)

EXAM_WINDOW_TRANSITIONS = {
    AssessmentStatus.approved: {AssessmentStatus.scheduled, AssessmentStatus.active},
    AssessmentStatus.scheduled: {AssessmentStatus.active, AssessmentStatus.expired},
    AssessmentStatus.active: {AssessmentStatus.expired, AssessmentStatus.completed},
}
_EXAM_WINDOW_TYPES = {AssessmentType.cat, AssessmentType.exam}

# Per-item failures a batch delete records and moves past.
_ITEM_ERRORS = (errors.ValidationError, errors.AuthorizationError, errors.NotFoundError, errors.ConflictError)


@dataclass
class ReviewResult:
    item: ContentItem
    pending: PendingQueue


@dataclass
class DeleteFailure:
    index: int
    item: dict
    error_code: str
    message: str


@dataclass
class DeleteOutcome:
    deleted_count: int
    failures: list[DeleteFailure] = field(default_factory=list)


class ApprovalService:
    def __init__(self, db: Session, *, now: datetime | None = None):
        self.db = db
        self._now = now
        self.normalized = NormalizedRepository(db)
        self.legacy = LegacyRepository(db)
        self.repositories = [self.normalized, self.legacy]
        # Binaries no longer referenced once the transaction commits.
        self.released: list[BlobRef] = []

    def now(self) -> datetime:
        return naive_utc(self._now) if self._now is not None else utcnow()

    def resolve(self, ref) -> ContentHandle:
        for mode in addressing_modes(ref):
            for repository in self.repositories:
                handle = repository.locate(mode)
                if handle is not None:
                    log.debug("resolved %s via %s in %s", handle.item.id, type(mode).__name__, repository.source)
                    return handle
        raise errors.NotFoundError("content not found under any addressing mode", **identifiers(ref))

    def _persist(self, operation: str) -> None:
        for repository in self.repositories:
            repository.commit()
        try:
            self.db.flush()
        except StaleDataError as e:
            self.db.rollback()
            log.warning("concurrent course update detected during %s", operation)
            raise errors.ConflictError(
                "course content changed while this request was running; reload and retry", operation=operation
            ) from e

    def _pending_queue(self, *, include_legacy: bool) -> PendingQueue:
        return ReconciliationEngine(self.db, now=self._now).build_pending_content(include_legacy=include_legacy)

    @staticmethod
    def _require_pending(handle: ContentHandle, action: str) -> None:
        status = record_status(handle.item.status)
        if status != "pending":
            raise errors.ConflictError(
                f"content is already {status} and cannot be {action}",
                id=handle.item.id,
                status=handle.item.status,
            )

    def approve(
        self,
        ref,
        *,
        reviewer: User,
        notes: str | None = None,
        is_premium: bool | None = None,
        include_legacy: bool = False,
    ) -> ReviewResult:
        handle = self.resolve(ref)
        self._require_pending(handle, "approved")
        handle.repository.approve(handle, reviewer_id=str(reviewer.id), notes=notes, is_premium=is_premium, now=self.now())
        self._persist("approve")

        item = handle.item
        item.status = "approved"
        if is_premium is not None:
            item.is_premium = bool(is_premium)
        log.info("content approved: source=%s id=%s type=%s reviewer=%s", item.source, item.id, item.content_type, reviewer.id)
        return ReviewResult(item=item, pending=self._pending_queue(include_legacy=include_legacy))

    def reject(
        self,
        ref,
        *,
        reviewer: User,
        notes: str | None = None,
        include_legacy: bool = False,
    ) -> ReviewResult:
        handle = self.resolve(ref)
        self._require_pending(handle, "rejected")
        handle.repository.reject(handle, reviewer_id=str(reviewer.id), notes=notes, now=self.now())
        self._persist("reject")

        item = handle.item
        item.status = "rejected"
        log.info("content rejected: source=%s id=%s type=%s reviewer=%s", item.source, item.id, item.content_type, reviewer.id)
        return ReviewResult(item=item, pending=self._pending_queue(include_legacy=include_legacy))

    @staticmethod
    def _authorize_delete(handle: ContentHandle, requester: User) -> None:
        if requester.role == UserRole.super_admin:
            return
        uploader = str(handle.item.uploaded_by or "")
        if uploader and uploader == str(requester.id):
            return
        raise errors.AuthorizationError(
            "only the uploader or a super admin can delete this content", id=handle.item.id
        )

    def delete(self, refs: list, *, requester: User) -> DeleteOutcome:
        if not refs:
            raise errors.ValidationError("no content items supplied")

        now = self.now()
        deleted = 0
        failures: list[DeleteFailure] = []
        first_error: errors.ContentError | None = None
        for index, ref in enumerate(refs):
            try:
                handle = self.resolve(ref)
                self._authorize_delete(handle, requester)
                released = handle.repository.delete(handle, now=now)
            except _ITEM_ERRORS as e:
                log.warning("delete failed: index=%s error=%s message=%s", index, e.error_code, e.message)
                failures.append(
                    DeleteFailure(index=index, item=identifiers(ref), error_code=e.error_code, message=e.message)
                )
                first_error = first_error or e
                continue
            deleted += 1
            self.released.extend(released)

        if deleted == 0:
            if len(refs) == 1 and first_error is not None:
                raise first_error
            raise errors.ValidationError(
                "No content was deleted",
                failures=[asdict(f) for f in failures],
            )

        self._persist("delete")
        log.info("content deleted: requester=%s deleted=%s failed=%s", requester.id, deleted, len(failures))
        return DeleteOutcome(deleted_count=deleted, failures=failures)

    def transition_exam_window(self, assessment_id: str, state: str, *, actor: User, notes: str | None = None) -> Assessment:
        aid = as_uuid(assessment_id)
        if aid is None:
            raise errors.ValidationError("invalid assessment id", assessment_id=assessment_id)
        try:
            target = AssessmentStatus(str(state or "").strip())
        except ValueError as e:
            raise errors.ValidationError("unknown exam window state", state=state) from e

        assessment = self.db.get(Assessment, aid)
        if assessment is None or assessment.deleted_at is not None:
            raise errors.NotFoundError("assessment not found", assessment_id=assessment_id)
        if assessment.type not in _EXAM_WINDOW_TYPES:
            raise errors.ConflictError(
                "exam window states apply only to cats and exams",
                assessment_id=assessment_id,
                type=assessment.type.value,
            )

        current = AssessmentStatus(assessment.status)
        if target not in EXAM_WINDOW_TRANSITIONS.get(current, set()):
            raise errors.ConflictError(
                f"cannot move assessment from {current.value} to {target.value}",
                assessment_id=assessment_id,
                status=current.value,
            )

        now = self.now()
        assessment.status = target
        assessment.approval_history = list(assessment.approval_history or []) + [
            {"action": target.value, "by": str(actor.id), "at": now.isoformat(), "notes": notes}
        ]
        self._persist("exam_window")
        log.info("exam window changed: assessment_id=%s %s -> %s", aid, current.value, target.value)
        return assessment
