from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ContentDescriptorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    kind: str
    source: str
    title: str
    description: str | None = None
    unit_id: str
    unit_code: str | None = None
    unit_name: str
    year: int
    semester: int | None = None
    topic_id: str | None = None
    topic_title: str | None = None
    topic_number: int | None = None
    is_premium: bool
    has_access: bool
    can_view: bool
    can_download: bool
    requires_subscription: bool
    course_id: str | None = None
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


class CourseInfoOut(BaseModel):
    id: str
    name: str
    code: str | None = None
    institution: str | None = None


class SubscriptionInfoOut(BaseModel):
    price: int
    currency: str
    duration: str
    per_year: bool
    per_course: bool


class CourseContentOut(BaseModel):
    course: CourseInfoOut
    content: list[ContentDescriptorOut]
    total_content: int
    premium_content: int
    free_content: int
    subscriptions: dict[int, bool]
    subscription_info: SubscriptionInfoOut


class UnitSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    unit_id: str
    unit_code: str | None = None
    unit_name: str
    year: int | None = None
    semester: int | None = None
    source: str
    topic_count: int
    total_assessments: int


class SemesterOut(BaseModel):
    semester: int | None = None
    units: list[UnitSummaryOut]


class YearOut(BaseModel):
    year: int | None = None
    has_subscription: bool
    semesters: list[SemesterOut]


class UnitsStructureOut(BaseModel):
    course: CourseInfoOut
    years: list[YearOut]


class StudentAssessmentOut(ContentDescriptorOut):
    course_name: str | None = None
    course_code: str | None = None
    has_subscription: bool


class StudentAssessmentsOut(BaseModel):
    assessments: list[StudentAssessmentOut]
    grouped: dict[str, list[StudentAssessmentOut]]
    total_count: int
    premium_count: int
    accessible_count: int
