import uuid

import pytest
from sqlalchemy import func, select

from conftest import auth_headers_for, legacy_file, legacy_topic, legacy_unit

from eduvault.core import errors
from eduvault.models import Assessment, AssessmentStatus, AssessmentType, AuditEvent, ContentAsset, ContentStatus, Course, Topic, Unit
from eduvault.schemas.content import ContentReference
from eduvault.services.approval import ApprovalService
from eduvault.services.content_policy import utcnow


def _legacy_course(seed, *, uploaded_by=None, cats=None):
    topic = legacy_topic(notes=legacy_file(uploaded_by=uploaded_by, upload_date=utcnow(), blob_id="legacy/notes.pdf"))
    unit = legacy_unit(topics=[topic], cats=cats)
    course = seed.course(units=[unit])
    return course, unit, topic


def test_approve_normalized_assessment(client, db, seed, super_admin, mini_admin):
    course = seed.course()
    unit = seed.unit(course)
    assessment = seed.assessment(unit, uploaded_by=mini_admin.id)

    r = client.post(
        "/content-approval/approve",
        json={"assessment_id": str(assessment.id), "notes": "looks good", "is_premium": False},
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["item"]["status"] == "approved"
    assert body["item"]["is_premium"] is False
    assert body["pending"]["total_pending"] == 0

    db.expire_all()
    stored = db.get(Assessment, assessment.id)
    assert stored.status == AssessmentStatus.approved
    assert stored.reviewed_by == super_admin.id
    assert stored.is_premium is False
    assert [h["action"] for h in stored.approval_history] == ["approved"]

    events = db.scalar(select(func.count()).select_from(AuditEvent).where(AuditEvent.event_type == "content_approved"))
    assert events == 1


def test_assessment_id_wins_over_embedded_path(client, db, seed, super_admin):
    course, unit_data, _ = _legacy_course(seed, cats=[{"id": "cat-1", "filename": "c.pdf", "status": "pending"}])
    unit = seed.unit(course)
    assessment = seed.assessment(unit)

    r = client.post(
        "/content-approval/approve",
        json={
            "assessment_id": str(assessment.id),
            "course_id": str(course.id),
            "unit_id": unit_data["id"],
            "content_id": "cat-1",
            "content_type": "cat",
        },
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text
    assert r.json()["item"]["source"] == "normalized"

    db.expire_all()
    assert db.get(Assessment, assessment.id).status == AssessmentStatus.approved
    legacy_cat = db.get(Course, course.id).units[0]["assessments"]["cats"][0]
    assert legacy_cat["status"] == "pending"


def test_approve_topic_content_by_topic_id(client, db, seed, super_admin, mini_admin):
    course = seed.course()
    unit = seed.unit(course)
    topic = seed.topic(unit)
    asset = seed.asset(topic, uploaded_by=mini_admin.id)

    r = client.post(
        "/content-approval/approve",
        json={"topic_id": str(topic.id), "content_type": "notes"},
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text

    db.expire_all()
    stored = db.get(ContentAsset, asset.id)
    assert stored.status == ContentStatus.approved
    assert stored.is_active is True
    assert db.get(Topic, topic.id).notes_id == asset.id


def test_legacy_approve_writes_tree_once(client, db, seed, super_admin, mini_admin):
    course, unit_data, topic_data = _legacy_course(seed, uploaded_by=str(mini_admin.id))
    version_before = course.version

    r = client.post(
        "/content-approval/approve",
        json={
            "course_id": str(course.id),
            "unit_id": unit_data["id"],
            "topic_id": topic_data["id"],
            "content_type": "notes",
            "notes": "ok",
        },
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text
    assert r.json()["item"]["source"] == "legacy"

    db.expire_all()
    stored = db.get(Course, course.id)
    notes = stored.units[0]["topics"][0]["content"]["notes"]
    assert notes["status"] == "approved"
    assert notes["reviewed_by"] == str(super_admin.id)
    assert notes["review_notes"] == "ok"
    assert stored.version == version_before + 1


def test_legacy_reject_removes_entry(client, db, seed, super_admin):
    course, unit_data, _ = _legacy_course(seed, cats=[{"id": "cat-1", "filename": "c.pdf", "status": "pending"}])

    r = client.post(
        "/content-approval/reject",
        json={"course_id": str(course.id), "unit_id": unit_data["id"], "content_id": "cat-1", "content_type": "cats", "notes": "blurry"},
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text
    assert r.json()["item"]["status"] == "rejected"

    db.expire_all()
    stored = db.get(Course, course.id)
    assert stored.units[0]["assessments"]["cats"] == []
    # Untouched siblings survive the rewrite.
    assert stored.units[0]["topics"][0]["content"]["notes"]["filename"] == "legacy.pdf"


def test_legacy_batch_delete_saves_course_once(client, db, seed, super_admin, s3):
    course, unit_data, topic_data = _legacy_course(seed, cats=[{"id": "cat-1", "filename": "c.pdf", "status": "pending"}])
    version_before = course.version

    r = client.request(
        "DELETE",
        "/content-approval/delete",
        json={
            "items": [
                {"course_id": str(course.id), "unit_id": unit_data["id"], "topic_id": topic_data["id"], "content_type": "notes"},
                {"course_id": str(course.id), "unit_id": unit_data["id"], "content_id": "cat-1", "content_type": "cats"},
            ]
        },
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text
    assert r.json()["deleted_count"] == 2

    db.expire_all()
    stored = db.get(Course, course.id)
    assert stored.version == version_before + 1
    assert stored.units[0]["assessments"]["cats"] == []
    assert "notes" not in stored.units[0]["topics"][0]["content"]
    assert "legacy/notes.pdf" in s3.deleted


def test_reject_normalized_deactivates(client, db, seed, super_admin):
    course = seed.course()
    unit = seed.unit(course)
    assessment = seed.assessment(unit)

    r = client.post(
        "/content-approval/reject",
        json={"assessment_id": str(assessment.id), "notes": "wrong unit"},
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text

    db.expire_all()
    stored = db.get(Assessment, assessment.id)
    assert stored.status == AssessmentStatus.rejected
    assert stored.is_active is False
    assert stored.review_notes == "wrong unit"


def test_reviewing_twice_is_conflict(client, seed, super_admin):
    course = seed.course()
    unit = seed.unit(course)
    assessment = seed.assessment(unit, status=AssessmentStatus.approved)

    r = client.post(
        "/content-approval/reject",
        json={"assessment_id": str(assessment.id)},
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 409
    assert r.json()["error_code"] == "conflict"


def test_not_found_echoes_identifiers(client, super_admin):
    missing = str(uuid.uuid4())
    r = client.post(
        "/content-approval/approve",
        json={"assessment_id": missing},
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 404
    body = r.json()
    assert body["error_code"] == "not_found"
    assert body["details"] == {"assessment_id": missing}


def test_missing_identifiers_is_validation_error(client, super_admin):
    r = client.post("/content-approval/approve", json={"notes": "x"}, headers=auth_headers_for(super_admin))
    assert r.status_code == 400
    assert r.json()["error_code"] == "validation_error"


def test_mini_admin_cannot_approve(client, seed, mini_admin):
    course = seed.course()
    unit = seed.unit(course)
    assessment = seed.assessment(unit, uploaded_by=mini_admin.id)

    r = client.post(
        "/content-approval/approve",
        json={"assessment_id": str(assessment.id)},
        headers=auth_headers_for(mini_admin),
    )
    assert r.status_code == 403


def test_batch_delete_reports_partial_failures(client, db, seed, super_admin, s3, jobs):
    course = seed.course()
    unit = seed.unit(course)
    first = seed.assessment(unit, blob_id="papers/one.pdf")
    second = seed.assessment(unit, blob_id="papers/two.pdf")
    s3.objects["papers/one.pdf"] = (b"1", "application/pdf")
    s3.objects["papers/two.pdf"] = (b"2", "application/pdf")

    r = client.request(
        "DELETE",
        "/content-approval/delete",
        json={
            "items": [
                {"assessment_id": str(first.id)},
                {"assessment_id": str(second.id)},
                {"content_type": "notes"},
            ]
        },
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["deleted_count"] == 2
    assert len(body["failures"]) == 1
    assert body["failures"][0]["index"] == 2
    assert body["failures"][0]["error_code"] == "validation_error"

    db.expire_all()
    stored = db.get(Assessment, first.id)
    assert stored.deleted_at is not None
    assert str(first.id) not in (db.get(Unit, unit.id).assessment_ids or [])

    assert sorted(s3.deleted) == ["papers/one.pdf", "papers/two.pdf"]
    assert jobs.jobs[0]["result"]["deleted_blobs"] == 2


def test_delete_with_nothing_deleted_fails(client, super_admin):
    r = client.request(
        "DELETE",
        "/content-approval/delete",
        json={"items": [{"content_type": "notes"}, {"assessment_id": str(uuid.uuid4())}]},
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 400
    body = r.json()
    assert body["error_message"] == "No content was deleted"
    assert [f["error_code"] for f in body["details"]["failures"]] == ["validation_error", "not_found"]


def test_mini_admin_deletes_only_own_uploads(client, db, seed, mini_admin):
    other = seed.user(mini_admin.role)
    course = seed.course()
    unit = seed.unit(course)
    mine = seed.assessment(unit, uploaded_by=mini_admin.id)
    theirs = seed.assessment(unit, uploaded_by=other.id)

    r = client.request(
        "DELETE",
        "/content-approval/delete",
        json={"assessment_id": str(theirs.id)},
        headers=auth_headers_for(mini_admin),
    )
    assert r.status_code == 403

    r = client.request(
        "DELETE",
        "/content-approval/delete",
        json={"assessment_id": str(mine.id)},
        headers=auth_headers_for(mini_admin),
    )
    assert r.status_code == 200, r.text
    assert r.json()["deleted_count"] == 1


def test_delete_topic_asset_clears_pointer(client, db, seed, super_admin):
    course = seed.course()
    unit = seed.unit(course)
    topic = seed.topic(unit)
    asset = seed.asset(topic)

    r = client.request(
        "DELETE",
        "/content-approval/delete",
        json={"topic_id": str(topic.id), "content_type": "notes"},
        headers=auth_headers_for(super_admin),
    )
    assert r.status_code == 200, r.text

    db.expire_all()
    assert db.scalar(select(func.count()).select_from(ContentAsset).where(ContentAsset.id == asset.id)) == 0
    assert db.get(Topic, topic.id).notes_id is None


def test_concurrent_course_write_is_conflict(db, seed, super_admin):
    course, unit_data, topic_data = _legacy_course(seed)
    service = ApprovalService(db)
    original_commit = service.legacy.commit
    table = Course.__table__

    def racing_commit():
        db.execute(table.update().where(table.c.id == course.id).values(version=table.c.version + 1))
        original_commit()

    service.legacy.commit = racing_commit
    ref = ContentReference(course_id=str(course.id), unit_id=unit_data["id"], topic_id=topic_data["id"], content_type="notes")
    with pytest.raises(errors.ConflictError):
        service.approve(ref, reviewer=super_admin)


def test_exam_window_transitions(client, db, seed, super_admin):
    course = seed.course()
    unit = seed.unit(course)
    cat = seed.assessment(unit, type=AssessmentType.cat, status=AssessmentStatus.approved)
    pending = seed.assessment(unit, type=AssessmentType.exam)
    assignment = seed.assessment(unit, type=AssessmentType.assignment, status=AssessmentStatus.approved)
    headers = auth_headers_for(super_admin)

    r = client.post(f"/content-approval/assessments/{cat.id}/window", json={"state": "scheduled"}, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "scheduled"
    assert r.json()["approval_history"][-1]["action"] == "scheduled"

    r = client.post(f"/content-approval/assessments/{cat.id}/window", json={"state": "completed"}, headers=headers)
    assert r.status_code == 409

    r = client.post(f"/content-approval/assessments/{pending.id}/window", json={"state": "active"}, headers=headers)
    assert r.status_code == 409

    r = client.post(f"/content-approval/assessments/{assignment.id}/window", json={"state": "scheduled"}, headers=headers)
    assert r.status_code == 409

    r = client.post(f"/content-approval/assessments/{cat.id}/window", json={"state": "archived"}, headers=headers)
    assert r.status_code == 400


def test_status_is_scoped_to_uploader(client, seed, mini_admin):
    other = seed.user(mini_admin.role)
    course = seed.course()
    unit = seed.unit(course)
    seed.assessment(unit, uploaded_by=mini_admin.id)
    seed.assessment(unit, uploaded_by=mini_admin.id, status=AssessmentStatus.scheduled)
    seed.assessment(unit, uploaded_by=other.id)

    r = client.get("/content-approval/status", headers=auth_headers_for(mini_admin))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["total"] == 2
    assert body["stats"] == {"pending": 1, "approved": 1, "rejected": 0, "total": 2}
