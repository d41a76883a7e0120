from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UploadedAssetOut(BaseModel):
    asset_id: str
    topic_id: str
    type: str
    status: str
    is_premium: bool
    filename: str | None = None
    upload_date: datetime | None = None


class UploadedAssessmentOut(BaseModel):
    assessment_id: str
    unit_id: str
    type: str
    status: str
    is_premium: bool
    title: str
    upload_date: datetime | None = None


class LinkCreateRequest(BaseModel):
    title: str
    url: str
    description: str | None = None
    is_premium: bool = False


class LinkOut(BaseModel):
    link_id: str
    topic_id: str
    title: str
    url: str
    status: str
    is_premium: bool
