from datetime import timedelta

from conftest import auth_headers_for, legacy_file, legacy_topic, legacy_unit

from eduvault.core.config import settings
from eduvault.models import AssessmentStatus, AssessmentType, ContentAssetType, ContentStatus
from eduvault.services.access import AccessResolver, describe
from eduvault.services.content_policy import utcnow
from eduvault.services.content_repository import FeedEntry


def _entry(**overrides) -> FeedEntry:
    data = dict(
        id="e1",
        source="normalized",
        kind="assessment",
        content_type="cat",
        title="CAT 1",
        status="approved",
        is_active=True,
        is_premium=True,
        unit_id="u1",
        unit_code="CS101",
        unit_name="Intro",
        year=1,
        semester=1,
        filename="cat.pdf",
    )
    data.update(overrides)
    return FeedEntry(**data)


def test_premium_cat_needs_subscription():
    locked = describe(_entry(), has_subscription=False)
    assert locked.has_access is False
    assert locked.requires_subscription is True
    assert locked.filename is None
    assert locked.file_url is None

    unlocked = describe(_entry(), has_subscription=True)
    assert unlocked.can_view is True
    assert unlocked.can_download is False
    assert unlocked.filename == "cat.pdf"
    assert unlocked.file_url == "/student/files/assessments/e1"


def test_assignments_are_always_open():
    d = describe(_entry(content_type="assignment", is_premium=True), has_subscription=False)
    assert d.can_view is True
    assert d.can_download is True
    assert d.requires_subscription is False


def test_notes_view_free_download_gated():
    d = describe(_entry(kind="notes", content_type="notes"), has_subscription=False)
    assert d.can_view is True
    assert d.can_download is False
    assert d.file_url == "/student/files/assets/e1"


def test_locked_link_hides_url():
    d = describe(_entry(kind="link", content_type="link", url="https://video.test/x", filename=None), has_subscription=False)
    assert d.url is None
    assert describe(_entry(kind="link", content_type="link", url="https://video.test/x"), has_subscription=True).url == "https://video.test/x"


def test_subscription_is_per_year(db, seed, student):
    course = seed.course()
    year2 = seed.unit(course, year=2, unit_code="CS201")
    year3 = seed.unit(course, year=3, unit_code="CS301")
    cat2 = seed.assessment(year2, type=AssessmentType.cat, status=AssessmentStatus.approved)
    cat3 = seed.assessment(year3, type=AssessmentType.cat, status=AssessmentStatus.approved)
    seed.subscription(student, course, year=2)

    content = AccessResolver(db).resolve(str(course.id), subscriptions_by_year={2: True, 3: False})
    by_id = {c.id: c for c in content}
    assert by_id[str(cat2.id)].has_access is True
    assert by_id[str(cat3.id)].has_access is False
    assert by_id[str(cat3.id)].filename is None


def test_only_approved_active_content_is_listed(db, seed):
    course = seed.course(
        units=[
            legacy_unit(
                year=1,
                topics=[legacy_topic(notes=legacy_file(status="pending"), video=legacy_file(status="approved", filename="v.mp4"))],
            )
        ]
    )
    unit = seed.unit(course)
    topic = seed.topic(unit)
    seed.asset(topic, status=ContentStatus.rejected)
    live = seed.assessment(unit, status=AssessmentStatus.scheduled)
    seed.assessment(unit, status=AssessmentStatus.pending)

    content = AccessResolver(db).resolve(str(course.id))
    kinds = sorted((c.source, c.kind) for c in content)
    assert kinds == [("legacy", "video"), ("normalized", "assessment")]
    assert next(c for c in content if c.source == "normalized").id == str(live.id)


def test_course_content_endpoint(client, seed, student):
    course = seed.course()
    year2 = seed.unit(course, year=2, unit_code="CS201")
    year3 = seed.unit(course, year=3, unit_code="CS301")
    seed.assessment(year2, type=AssessmentType.cat, status=AssessmentStatus.approved)
    seed.assessment(year3, type=AssessmentType.cat, status=AssessmentStatus.approved)
    seed.assessment(year3, type=AssessmentType.assignment, status=AssessmentStatus.approved)
    seed.subscription(student, course, year=2)

    r = client.get(f"/student/courses/{course.id}/content", headers=auth_headers_for(student))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["total_content"] == 3
    assert body["premium_content"] == 2
    assert body["free_content"] == 1
    assert body["subscriptions"]["2"] is True
    assert body["subscriptions"]["3"] is False
    assert body["subscription_info"]["currency"] == "KSH"

    locked = [c for c in body["content"] if not c["has_access"]]
    assert len(locked) == 1
    assert locked[0]["year"] == 3
    assert locked[0]["filename"] is None

    r = client.get(f"/student/courses/{course.id}/content", params={"year": 2}, headers=auth_headers_for(student))
    assert r.json()["total_content"] == 1
    assert r.json()["subscriptions"] == {"2": True}


def test_expired_subscription_does_not_unlock(client, db, seed, student):
    course = seed.course()
    unit = seed.unit(course, year=1)
    seed.assessment(unit, type=AssessmentType.exam, status=AssessmentStatus.approved)
    sub = seed.subscription(student, course, year=1)
    sub.expiry_date = utcnow() - timedelta(days=1)
    db.commit()

    r = client.get(f"/student/courses/{course.id}/content", headers=auth_headers_for(student))
    assert r.json()["content"][0]["has_access"] is False


def test_units_structure(client, seed, student):
    course = seed.course(units=[legacy_unit(year=1, semester=2)])
    seed.unit(course, year=1, semester=1, unit_code="CS101")
    seed.unit(course, year=2, semester=1, unit_code="CS201")
    seed.subscription(student, course, year=2)

    r = client.get(f"/student/courses/{course.id}/units", headers=auth_headers_for(student))
    assert r.status_code == 200, r.text
    years = r.json()["years"]
    assert [y["year"] for y in years] == [1, 2]
    assert [s["semester"] for s in years[0]["semesters"]] == [1, 2]
    assert years[0]["has_subscription"] is False
    assert years[1]["has_subscription"] is True


def test_unknown_course_is_404(client, student):
    r = client.get("/student/courses/not-a-uuid/content", headers=auth_headers_for(student))
    assert r.status_code == 404


def test_file_streaming_respects_gating(client, seed, student, s3):
    course = seed.course()
    unit = seed.unit(course, year=1)
    topic = seed.topic(unit)
    notes = seed.asset(topic, status=ContentStatus.approved, is_premium=True, blob_id="content/notes.pdf")
    s3.objects["content/notes.pdf"] = (b"%PDF notes", "application/pdf")
    headers = auth_headers_for(student)

    r = client.get(f"/student/files/assets/{notes.id}", headers=headers)
    assert r.status_code == 200
    assert r.content == b"%PDF notes"
    assert r.headers["content-disposition"].startswith("inline")

    r = client.get(f"/student/files/assets/{notes.id}", params={"download": True}, headers=headers)
    assert r.status_code == 403

    seed.subscription(student, course, year=1)
    r = client.get(f"/student/files/assets/{notes.id}", params={"download": True}, headers=headers)
    assert r.status_code == 200
    assert r.headers["content-disposition"].startswith("attachment")


def test_assessment_files_never_download(client, seed, student, s3):
    course = seed.course()
    unit = seed.unit(course, year=1)
    cat = seed.assessment(unit, type=AssessmentType.cat, status=AssessmentStatus.approved, blob_id="papers/cat.pdf")
    pending = seed.assessment(unit, type=AssessmentType.cat, blob_id="papers/pending.pdf")
    s3.objects["papers/cat.pdf"] = (b"cat", "application/pdf")
    seed.subscription(student, course, year=1)
    headers = auth_headers_for(student)

    assert client.get(f"/student/files/assessments/{cat.id}", headers=headers).status_code == 200
    assert client.get(f"/student/files/assessments/{cat.id}", params={"download": True}, headers=headers).status_code == 403
    assert client.get(f"/student/files/assessments/{pending.id}", headers=headers).status_code == 404


def test_missing_blob_is_404(client, seed, student):
    course = seed.course()
    unit = seed.unit(course, year=1)
    topic = seed.topic(unit)
    video = seed.asset(topic, type=ContentAssetType.video, status=ContentStatus.approved, blob_id="content/gone.mp4")

    r = client.get(f"/student/files/assets/{video.id}", headers=auth_headers_for(student))
    assert r.status_code == 404
    assert r.json()["error_code"] == "not_found"


def test_legacy_files_are_served(client, seed, student, s3, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "media_root", str(tmp_path))
    (tmp_path / "legacy.pdf").write_bytes(b"%PDF legacy notes")
    s3.objects["legacy/cat.pdf"] = (b"cat paper", "application/pdf")

    topic = legacy_topic(notes=legacy_file(status="approved"))
    cats = [
        {"id": "cat-1", "title": "CAT 1", "filename": "cat.pdf", "blob_id": "legacy/cat.pdf", "status": "approved"},
        {"id": "cat-2", "title": "CAT 2", "filename": "cat2.pdf", "status": "pending"},
    ]
    unit = legacy_unit(year=1, topics=[topic], cats=cats)
    course = seed.course(units=[unit])
    headers = auth_headers_for(student)
    base = f"/student/files/legacy/{course.id}/{unit['id']}"

    body = client.get(f"/student/courses/{course.id}/content", headers=headers).json()
    by_kind = {c["kind"]: c for c in body["content"]}
    assert by_kind["notes"]["file_url"] == f"{base}/topics/{topic['id']}/notes"
    assert by_kind["assessment"]["file_url"] is None

    r = client.get(by_kind["notes"]["file_url"], headers=headers)
    assert r.status_code == 200
    assert r.content == b"%PDF legacy notes"

    assert client.get(f"{base}/assessments/cat-1", headers=headers).status_code == 403
    assert client.get(f"{base}/assessments/cat-2", headers=headers).status_code == 404

    seed.subscription(student, course, year=1)
    r = client.get(f"{base}/assessments/cat-1", headers=headers)
    assert r.status_code == 200
    assert r.content == b"cat paper"
    assert client.get(f"{base}/assessments/cat-1", params={"download": True}, headers=headers).status_code == 403


def test_student_assessments_across_courses(client, seed, student):
    cs = seed.course()
    cs_unit = seed.unit(cs, year=2, unit_code="CS201")
    cat = seed.assessment(cs_unit, type=AssessmentType.cat, status=AssessmentStatus.approved)
    seed.assessment(cs_unit, type=AssessmentType.assignment, status=AssessmentStatus.approved, title="Assignment 1")
    seed.assessment(cs_unit, type=AssessmentType.cat, title="CAT 2")
    bcom = seed.course(name="BCom")
    bcom_unit = seed.unit(bcom, year=2, unit_code="BC201")
    exam = seed.assessment(bcom_unit, type=AssessmentType.exam, status=AssessmentStatus.approved, title="Final")
    seed.subscription(student, cs, year=2)
    headers = auth_headers_for(student)

    r = client.get("/student/assessments", headers=headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["total_count"] == 3
    assert body["premium_count"] == 2
    assert body["accessible_count"] == 2
    assert [len(body["grouped"][k]) for k in ("cats", "exams", "past_exams", "assignments")] == [1, 1, 0, 1]

    by_id = {a["id"]: a for a in body["assessments"]}
    assert by_id[str(cat.id)]["has_subscription"] is True
    assert by_id[str(cat.id)]["file_url"] == f"/student/files/assessments/{cat.id}"
    locked = by_id[str(exam.id)]
    assert locked["course_name"] == "BCom"
    assert locked["has_access"] is False
    assert locked["has_subscription"] is False
    assert locked["file_url"] is None

    r = client.get("/student/assessments", params={"type": "cats", "course_id": str(cs.id)}, headers=headers)
    assert [a["id"] for a in r.json()["assessments"]] == [str(cat.id)]
    assert client.get("/student/assessments", params={"year": 3}, headers=headers).json()["total_count"] == 0
    assert client.get("/student/assessments", params={"type": "podcast"}, headers=headers).status_code == 400

    assert [a["id"] for a in client.get("/student/exams", headers=headers).json()["assessments"]] == [str(exam.id)]
    assert [a["id"] for a in client.get("/student/cats", headers=headers).json()["assessments"]] == [str(cat.id)]
