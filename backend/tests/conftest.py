import io
import sys
import time
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from eduvault.db.base import Base
from eduvault.db import session as session_module
from eduvault.main import create_app

# Import models so that they are registered in Base.metadata before create_all.
from eduvault.models import (  # noqa: F401
    Assessment,
    AssessmentStatus,
    AssessmentType,
    AuditEvent,
    ContentAsset,
    ContentAssetType,
    ContentStatus,
    Course,
    ExternalResource,
    OwnerType,
    Subscription,
    SubscriptionStatus,
    Topic,
    Unit,
    User,
    UserRole,
)
from eduvault.core.security import create_access_token, hash_password
from eduvault.services.content_policy import utcnow


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def clear(self):
        self._data.clear()

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and self._get_entry(key) is not None:
            return None
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (value, exp)
        return True

    def delete(self, key: str):
        self._data.pop(key, None)
        return 1

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))


class _MemoryBody:
    def __init__(self, data: bytes):
        self._data = data

    def iter_chunks(self, chunk_size: int = 1024):
        for i in range(0, len(self._data), chunk_size):
            yield self._data[i : i + chunk_size]


class _MemoryS3:
    def __init__(self):
        self.objects: dict[str, tuple[bytes, str | None]] = {}
        self.deleted: list[str] = []

    def clear(self):
        self.objects.clear()
        self.deleted.clear()

    def head_bucket(self, Bucket):
        return {}

    def create_bucket(self, Bucket):
        return {}

    def upload_fileobj(self, stream, bucket, key, ExtraArgs=None):
        self.objects[key] = (stream.read(), (ExtraArgs or {}).get("ContentType"))

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        data, content_type = self.objects[Key]
        return {"Body": _MemoryBody(data), "ContentType": content_type, "ContentLength": len(data)}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)
        self.deleted.append(Key)
        return {}


class _InlineQueue:
    """Runs enqueued jobs immediately, in-process."""

    def __init__(self):
        self.jobs: list[dict] = []

    def clear(self):
        self.jobs.clear()

    def enqueue(self, func, *args, **kwargs):
        for opt in ("job_timeout", "result_ttl", "failure_ttl"):
            kwargs.pop(opt, None)
        result = func(*args, **kwargs)
        job = SimpleNamespace(id=uuid.uuid4().hex, func=func, kwargs=kwargs, result=result)
        self.jobs.append({"func": func.__name__, "kwargs": kwargs, "result": result})
        return job


# Configure test DB (SQLite in-memory) at import time so all tests importing
# eduvault.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


# Stub Redis, S3 and the job queue at import time.
_mem_redis = _MemoryRedis()
_mem_s3 = _MemoryS3()
_inline_queue = _InlineQueue()

import eduvault.core.redis_client as redis_client_module

redis_client_module.get_redis = lambda: _mem_redis

import eduvault.core.rate_limit as rate_limit_module
rate_limit_module.get_redis = lambda: _mem_redis

import eduvault.routers.health as health_router_module
health_router_module.get_redis = lambda: _mem_redis
health_router_module.get_s3_client = lambda **kwargs: _mem_s3

import eduvault.services.storage as storage_module
storage_module.get_s3_client = lambda **kwargs: _mem_s3

import eduvault.services.blob_cleanup_jobs as blob_cleanup_jobs_module
blob_cleanup_jobs_module.get_queue = lambda *args, **kwargs: _inline_queue


@pytest.fixture(autouse=True)
def _clean_state():
    yield
    with session_module.SessionLocal() as s:
        for table in reversed(Base.metadata.sorted_tables):
            s.execute(table.delete())
        s.commit()
    _mem_redis.clear()
    _mem_s3.clear()
    _inline_queue.clear()


@pytest.fixture(scope="session")
def client():
    app = create_app()

    # Ensure app dependencies use our session factory.
    def _get_db_override():
        db = session_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_module.get_db] = _get_db_override
    return TestClient(app)


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def s3():
    return _mem_s3


@pytest.fixture()
def jobs():
    return _inline_queue


_PASSWORD_HASH = None


def _password_hash() -> str:
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password("testpass123")
    return _PASSWORD_HASH


class Seeder:
    """Writes fixture rows and commits after each one."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, role: UserRole = UserRole.student, *, first_name: str | None = None, email: str | None = None):
        return self._save(
            User(
                email=email or f"{role.value}_{uuid.uuid4().hex[:8]}@example.test",
                first_name=first_name,
                last_name=None,
                role=role,
                is_active=True,
                password_hash=_password_hash(),
            )
        )

    def course(self, *, name: str = "BSc Computer Science", institution: str = "Nairobi University", units: list | None = None):
        return self._save(Course(name=name, code="BSC-CS", institution=institution, units=units or []))

    def unit(self, course, *, year: int = 1, semester: int = 1, unit_code: str = "CS101", unit_name: str = "Intro to Computing"):
        unit = self._save(
            Unit(course_id=course.id, year=year, semester=semester, unit_code=unit_code, unit_name=unit_name)
        )
        course.unit_ids = list(course.unit_ids or []) + [str(unit.id)]
        self.db.commit()
        return unit

    def topic(self, unit, *, topic_number: int = 1, title: str = "Foundations"):
        topic = self._save(Topic(unit_id=unit.id, topic_number=topic_number, title=title))
        unit.topic_ids = list(unit.topic_ids or []) + [str(topic.id)]
        self.db.commit()
        return topic

    def asset(
        self,
        topic,
        *,
        type: ContentAssetType = ContentAssetType.notes,
        status: ContentStatus = ContentStatus.pending,
        uploaded_by=None,
        upload_date: datetime | None = None,
        is_premium: bool = False,
        blob_id: str | None = None,
        filename: str = "lecture.pdf",
    ):
        unit = self.db.get(Unit, topic.unit_id)
        asset = self._save(
            ContentAsset(
                type=type,
                owner_type=OwnerType.topic,
                owner_id=topic.id,
                course_id=unit.course_id,
                unit_id=unit.id,
                filename=filename,
                blob_id=blob_id or f"content/{unit.course_id}/{unit.id}/{uuid.uuid4().hex}.pdf",
                mime_type="application/pdf",
                status=status,
                is_active=status != ContentStatus.rejected,
                is_premium=is_premium,
                uploaded_by=uploaded_by,
                upload_date=upload_date or utcnow(),
            )
        )
        if type == ContentAssetType.video:
            topic.lecture_video_id = asset.id
        else:
            topic.notes_id = asset.id
        self.db.commit()
        return asset

    def assessment(
        self,
        unit,
        *,
        type: AssessmentType = AssessmentType.cat,
        status: AssessmentStatus = AssessmentStatus.pending,
        uploaded_by=None,
        upload_date: datetime | None = None,
        is_premium: bool | None = None,
        title: str = "CAT 1",
        blob_id: str | None = None,
    ):
        assessment = self._save(
            Assessment(
                type=type,
                course_id=unit.course_id,
                unit_id=unit.id,
                title=title,
                image_file={"filename": "paper.pdf", "mime_type": "application/pdf", "blob_id": blob_id or f"papers/{uuid.uuid4().hex}.pdf"},
                status=status,
                is_active=True,
                is_premium=(type != AssessmentType.assignment) if is_premium is None else is_premium,
                approval_history=[],
                uploaded_by=uploaded_by,
                upload_date=upload_date or utcnow(),
            )
        )
        unit.assessment_ids = list(unit.assessment_ids or []) + [str(assessment.id)]
        self.db.commit()
        return assessment

    def subscription(self, user, course, *, year: int, days: int = 30):
        return self._save(
            Subscription(
                user_id=user.id,
                course_id=course.id,
                year=year,
                status=SubscriptionStatus.active,
                amount=100,
                start_date=utcnow(),
                expiry_date=utcnow() + timedelta(days=days),
            )
        )


@pytest.fixture()
def seed(db):
    return Seeder(db)


def auth_headers_for(user) -> dict[str, str]:
    token = create_access_token(user_id=str(user.id), role=user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def super_admin(seed):
    return seed.user(UserRole.super_admin, first_name="Grace")


@pytest.fixture()
def mini_admin(seed):
    return seed.user(UserRole.mini_admin, first_name="Otieno")


@pytest.fixture()
def student(seed):
    return seed.user(UserRole.student, first_name="Wanjiru")


def legacy_unit(
    *,
    unit_id: str | None = None,
    year: int = 1,
    semester: int = 1,
    topics: list | None = None,
    cats: list | None = None,
    assignments: list | None = None,
    past_exams: list | None = None,
) -> dict:
    return {
        "id": unit_id or uuid.uuid4().hex,
        "year": year,
        "semester": semester,
        "unit_code": "LEG100",
        "unit_name": "Legacy Unit",
        "topics": topics or [],
        "assessments": {
            "cats": cats or [],
            "assignments": assignments or [],
            "past_exams": past_exams or [],
        },
    }


def legacy_topic(*, topic_id: str | None = None, video: dict | None = None, notes: dict | None = None, links: list | None = None) -> dict:
    content: dict = {"youtube_resources": links or []}
    if video is not None:
        content["lecture_video"] = video
    if notes is not None:
        content["notes"] = notes
    return {"id": topic_id or uuid.uuid4().hex, "topic_number": 1, "title": "Legacy Topic", "content": content}


def legacy_file(*, status: str | None = "pending", uploaded_by: str | None = None, upload_date: datetime | None = None, **extra) -> dict:
    data = {"filename": "legacy.pdf", "file_path": "uploads/legacy.pdf", "status": status, "uploaded_by": uploaded_by}
    if upload_date is not None:
        data["upload_date"] = upload_date.isoformat()
    data.update(extra)
    return {k: v for k, v in data.items() if v is not None}


def upload_file(name: str = "notes.pdf", data: bytes = b"%PDF-1.4 test", content_type: str = "application/pdf"):
    return {"file": (name, io.BytesIO(data), content_type)}
