"""The storage-shape seam.

Course content lives in two shapes at once: the legacy tree embedded in the
course row and the normalized Unit/Topic/ContentAsset/Assessment tables. Each
shape is one ``ContentRepository``; reconciliation, approval and student access
only talk to this interface, so retiring the legacy shape means dropping one
implementation.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime

from eduvault.services.content_refs import AddressingMode
from eduvault.services.storage import BlobRef


UNKNOWN_UPLOADER = "Unknown uploader"


@dataclass
class ContentItem:
    """One reviewable item, whichever shape it is stored in."""

    id: str
    source: str
    kind: str
    content_type: str
    type: str
    status: str
    title: str
    course_id: str | None = None
    course_name: str = "Unknown Course"
    institution: str | None = None
    unit_id: str | None = None
    unit_code: str | None = None
    unit_name: str = "Unknown Unit"
    year: int | None = None
    semester: int | None = None
    topic_id: str | None = None
    topic_title: str | None = None
    topic_number: int | None = None
    assessment_type: str | None = None
    description: str | None = None
    is_premium: bool = False
    filename: str | None = None
    uploaded_by: str | None = None
    uploader_name: str = UNKNOWN_UPLOADER
    uploader_email: str | None = None
    upload_date: datetime | None = None
    due_date: datetime | None = None
    reviewed_by: str | None = None
    review_date: datetime | None = None
    review_notes: str | None = None
    # Identifiers a reviewer posts back to approve / reject / delete this item.
    reference: dict = field(default_factory=dict)


@dataclass
class UnitCoverage:
    course_id: str
    course_name: str
    unit_id: str
    unit_code: str | None
    unit_name: str
    year: int | None
    semester: int | None
    source: str
    topic_count: int = 0
    counts: dict = field(default_factory=lambda: {"cats": 0, "assignments": 0, "past_exams": 0, "exams": 0})

    @property
    def total_assessments(self) -> int:
        return sum(int(v) for v in self.counts.values())


@dataclass
class ScanResult:
    items: list[ContentItem] = field(default_factory=list)
    units: list[UnitCoverage] = field(default_factory=list)
    course_ids: set[str] = field(default_factory=set)


@dataclass
class ContentHandle:
    """A located item plus whatever the owning repository needs to mutate it."""

    repository: "ContentRepository"
    item: ContentItem
    target: object


@dataclass
class FeedEntry:
    """Raw student-feed material; gating happens in the access resolver."""

    id: str
    source: str
    kind: str
    content_type: str
    title: str
    status: str
    is_active: bool
    is_premium: bool
    unit_id: str
    unit_code: str | None
    unit_name: str
    year: int
    semester: int | None
    course_id: str | None = None
    description: str | None = None
    topic_id: str | None = None
    topic_title: str | None = None
    topic_number: int | None = None
    filename: str | None = None
    file_path: str | None = None
    blob_id: str | None = None
    mime_type: str | None = None
    url: str | None = None
    upload_date: datetime | None = None
    due_date: datetime | None = None
    total_marks: int | None = None
    duration_minutes: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class ContentRepository(abc.ABC):
    source: str = ""

    @abc.abstractmethod
    def scan(self) -> ScanResult:
        """Every reviewable item and every unit, in a stable order."""

    @abc.abstractmethod
    def locate(self, mode: AddressingMode) -> ContentHandle | None:
        """Resolve one addressing mode, or None when this shape does not hold it."""

    @abc.abstractmethod
    def approve(self, handle: ContentHandle, *, reviewer_id: str, notes: str | None, is_premium: bool | None, now: datetime) -> None:
        ...

    @abc.abstractmethod
    def reject(self, handle: ContentHandle, *, reviewer_id: str, notes: str | None, now: datetime) -> None:
        ...

    @abc.abstractmethod
    def delete(self, handle: ContentHandle, *, now: datetime) -> list[BlobRef]:
        """Remove the item and return the binaries it no longer needs."""

    @abc.abstractmethod
    def feed(self, course_id: str, *, year: int | None = None, semester: int | None = None) -> list[FeedEntry]:
        ...

    @abc.abstractmethod
    def list_units(self, course_id: str) -> list[UnitCoverage]:
        ...

    @abc.abstractmethod
    def commit(self) -> None:
        """Push buffered changes into the session (no transaction commit)."""
