from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ContentReference(BaseModel):
    """Loose identifiers for one reviewable item; see services.content_refs."""

    model_config = ConfigDict(extra="ignore")

    assessment_id: str | None = None
    course_id: str | None = None
    unit_id: str | None = None
    topic_id: str | None = None
    content_id: str | None = None
    content_type: str | None = None


class ApproveRequest(ContentReference):
    notes: str | None = None
    is_premium: bool | None = None


class RejectRequest(ContentReference):
    notes: str | None = None


class DeleteRequest(ContentReference):
    items: list[ContentReference] | None = None

    def references(self) -> list[ContentReference]:
        if self.items:
            return list(self.items)
        return [ContentReference.model_validate(self.model_dump(exclude={"items"}))]


class ExamWindowRequest(BaseModel):
    state: str
    notes: str | None = None


class ContentItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    source: str
    kind: str
    type: str
    content_type: str
    assessment_type: str | None = None
    status: str
    title: str
    description: str | None = None
    course_id: str | None = None
    course_name: str
    institution: str | None = None
    unit_id: str | None = None
    unit_code: str | None = None
    unit_name: str
    year: int | None = None
    semester: int | None = None
    topic_id: str | None = None
    topic_title: str | None = None
    topic_number: int | None = None
    is_premium: bool
    filename: str | None = None
    uploaded_by: str | None = None
    uploader_name: str
    uploader_email: str | None = None
    upload_date: datetime | None = None
    due_date: datetime | None = None
    reviewed_by: str | None = None
    review_date: datetime | None = None
    review_notes: str | None = None
    reference: dict


class StatsOut(BaseModel):
    pending: int
    approved: int
    rejected: int
    total: int


class UnitRefOut(BaseModel):
    unit_id: str
    unit_code: str | None = None
    unit_name: str
    year: int | None = None
    semester: int | None = None
    source: str


class MissingAssessmentsOut(BaseModel):
    course_id: str
    course_name: str
    units: list[UnitRefOut]


class UnitWithAssessmentsOut(UnitRefOut):
    course_id: str
    course_name: str
    counts: dict[str, int]


class PendingQueueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pending_content: list[ContentItemOut]
    stats: StatsOut
    units_missing_assessments: list[MissingAssessmentsOut]
    units_with_assessments: list[UnitWithAssessmentsOut]
    legacy_pending: int
    legacy_window_days: int
    total_pending: int
    total_pending_including_legacy: int
    course_count: int
    include_legacy: bool


class ReviewResultOut(BaseModel):
    ok: bool = True
    message: str
    item: ContentItemOut
    pending: PendingQueueOut


class DeleteFailureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    index: int
    item: dict
    error_code: str
    message: str


class DeleteResultOut(BaseModel):
    ok: bool = True
    message: str
    deleted_count: int
    failures: list[DeleteFailureOut]


class ApprovedContentOut(BaseModel):
    items: list[ContentItemOut]
    total: int


class ContentStatusOut(BaseModel):
    items: list[ContentItemOut]
    stats: StatsOut
    total: int


class ExamWindowOut(BaseModel):
    assessment_id: str
    status: str
    approval_history: list[dict]
