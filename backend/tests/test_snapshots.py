import uuid
from unittest.mock import MagicMock, patch

import openai
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import auth_headers
from gradewatch.core.config import settings
from gradewatch.core.errors import NarrativeError
from gradewatch.models.grade import GradeType
from gradewatch.models.snapshot import Snapshot
from gradewatch.services.llm_service import build_snapshot_prompt
from gradewatch.services.reconciliation_service import reconciliation_service
from gradewatch.services.snapshot_service import snapshot_service

MOCK_ANALYSIS = "### PART 1: SUMMARY\n🟡 NEEDS ATTENTION based on available data."


def _completion(content):
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


@pytest.fixture
def llm_key(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "test-key")


@pytest.fixture
def graded_school(db_session, school, teacher):
    s, c, q = school["students"], school["courses"], school["quarter"]
    entries = [
        ("alice", "math", "F", GradeType.GRADE),
        ("alice", "swedish", "F", GradeType.GRADE),
        ("bashir", "math", "F", GradeType.WARNING),
        ("bashir", "english", "B", GradeType.GRADE),
        ("clara", "math", "F", GradeType.GRADE),
        ("clara", "math", "C", GradeType.GRADE),
    ]
    for student, course, letter, kind in entries:
        reconciliation_service.set_grade(
            db_session,
            actor=teacher,
            student_id=s[student].id,
            course_id=c[course].id,
            quarter_id=q.id,
            grade=letter,
            grade_type=kind,
        )
    return school


def test_create_snapshot_freezes_data_and_stats(db_session, graded_school, admin):
    quarter = graded_school["quarter"]
    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=quarter, name="Mid quarter", notes="before exams"
    )

    assert snapshot.quarter_id == quarter.id
    assert snapshot.analysis is None
    assert len(snapshot.data["grades"]) == 5
    assert len(snapshot.data["students"]) == 4
    assert {c["code"] for c in snapshot.data["courses"]} == {"MATMAT01A", "SVESVE01", "ENGENG05"}
    assert all(isinstance(row["id"], str) for row in snapshot.data["grades"])

    stats = snapshot.stats
    assert stats["total_students"] == 3
    assert stats["total_grades"] == 5
    assert stats["total_f_grades"] == 2
    assert stats["total_f_warnings"] == 1
    assert stats["pass_rate"] == 60.0
    assert stats["total_improvements"] == 1
    assert stats["at_risk"] == {"with_1f": 0, "with_2f": 1, "with_3plus_f": 0}


def test_snapshot_is_not_affected_by_later_edits(db_session, graded_school, admin, teacher):
    quarter = graded_school["quarter"]
    snapshot = snapshot_service.create_snapshot(db_session, actor=admin, quarter=quarter, name="Frozen")

    reconciliation_service.set_grade(
        db_session,
        actor=teacher,
        student_id=graded_school["students"]["alice"].id,
        course_id=graded_school["courses"]["math"].id,
        quarter_id=quarter.id,
        grade="A",
    )

    db_session.expire_all()
    reloaded = db_session.get(Snapshot, snapshot.id)
    assert reloaded.stats["total_f_grades"] == 2
    assert sorted(g["grade"] for g in reloaded.data["grades"]) == ["B", "C", "F", "F", "F"]


def test_narrative_payload_is_built_from_frozen_data(db_session, graded_school, admin):
    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=graded_school["quarter"], name="Payload"
    )
    payload = snapshot_service.build_narrative_payload(snapshot, "HT Q1")

    assert payload.quarter_name == "HT Q1"
    assert payload.stats.total_f_grades == 2
    assert payload.stats.total_improvements == 1
    assert payload.students_at_risk.with_2f == 1
    te = next(c for c in payload.class_breakdown if c.class_name == "TE23")
    assert (te.student_count, te.f_count, te.f_warning_count) == (2, 2, 1)
    math = next(c for c in payload.course_breakdown if c.course_code == "MATMAT01A")
    assert (math.f_count, math.f_warning_count) == (1, 1)

    prompt = build_snapshot_prompt(payload)
    assert "Pass rate: 60.0%" in prompt
    assert "With 2 F-grades: 1" in prompt


def test_analysis_is_generated_once(db_session, graded_school, admin, llm_key):
    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=graded_school["quarter"], name="Once"
    )

    with patch("gradewatch.services.llm_service.openai.OpenAI") as mock_openai:
        mock_client = mock_openai.return_value
        mock_client.chat.completions.create.return_value = _completion(MOCK_ANALYSIS)

        first = snapshot_service.analyze_snapshot(db_session, snapshot.id)
        second = snapshot_service.analyze_snapshot(db_session, snapshot.id)

    assert first.analysis == MOCK_ANALYSIS.strip()
    assert first.analyzed_at is not None
    assert second.analysis == first.analysis
    assert mock_client.chat.completions.create.call_count == 1
    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == settings.LLM_MODEL_NAME
    assert kwargs["messages"][0]["role"] == "system"


@pytest.mark.parametrize(
    "failure",
    [
        openai.APIConnectionError(request=MagicMock()),
        None,
    ],
)
def test_failed_analysis_leaves_snapshot_untouched(db_session, graded_school, admin, llm_key, failure):
    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=graded_school["quarter"], name="Failing"
    )

    with patch("gradewatch.services.llm_service.openai.OpenAI") as mock_openai:
        create = mock_openai.return_value.chat.completions.create
        if failure is None:
            create.return_value = _completion("   ")
        else:
            create.side_effect = failure

        with pytest.raises(NarrativeError):
            snapshot_service.analyze_snapshot(db_session, snapshot.id)

    db_session.expire_all()
    assert db_session.get(Snapshot, snapshot.id).analysis is None


def test_analysis_without_api_key_fails_cleanly(db_session, graded_school, admin, monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=graded_school["quarter"], name="No key"
    )
    with pytest.raises(NarrativeError):
        snapshot_service.analyze_snapshot(db_session, snapshot.id)


def test_snapshot_api_flow(client, db_session, graded_school, admin, analyst, llm_key):
    res = client.post("/api/v1/snapshots", json={"name": "API"}, headers=auth_headers(analyst))
    assert res.status_code == 403

    res = client.post("/api/v1/snapshots", json={"name": "API"}, headers=auth_headers(admin))
    assert res.status_code == 201
    created = res.json()
    assert created["quarter_id"] == str(graded_school["quarter"].id)
    assert created["has_analysis"] is False
    snapshot_id = created["id"]

    res = client.get("/api/v1/snapshots", headers=auth_headers(analyst))
    assert res.status_code == 200
    assert [s["id"] for s in res.json()] == [snapshot_id]

    with patch("gradewatch.services.llm_service.openai.OpenAI") as mock_openai:
        mock_openai.return_value.chat.completions.create.return_value = _completion(MOCK_ANALYSIS)
        res = client.post(f"/api/v1/snapshots/{snapshot_id}/analysis", headers=auth_headers(admin))
    assert res.status_code == 200
    assert res.json()["analysis"].startswith("### PART 1")

    res = client.get(f"/api/v1/snapshots/{snapshot_id}", headers=auth_headers(analyst))
    assert res.json()["has_analysis"] is True

    res = client.delete(f"/api/v1/snapshots/{snapshot_id}", headers=auth_headers(admin))
    assert res.status_code == 204
    res = client.get(f"/api/v1/snapshots/{snapshot_id}", headers=auth_headers(admin))
    assert res.status_code == 404


def test_analysis_failure_maps_to_bad_gateway(client, db_session, graded_school, admin, llm_key):
    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=graded_school["quarter"], name="Gateway"
    )
    with patch("gradewatch.services.llm_service.openai.OpenAI") as mock_openai:
        mock_openai.return_value.chat.completions.create.side_effect = openai.APIConnectionError(
            request=MagicMock()
        )
        res = client.post(f"/api/v1/snapshots/{snapshot.id}/analysis", headers=auth_headers(admin))
    assert res.status_code == 502


def test_analysis_is_queued_when_async_enabled(client, db_session, graded_school, admin, monkeypatch):
    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=graded_school["quarter"], name="Queued"
    )
    monkeypatch.setattr(settings, "ASYNC_QUEUE_ENABLED", True)
    job_id = str(uuid.uuid4())
    with patch("gradewatch.routers.snapshots.enqueue_snapshot_analysis", return_value=job_id) as enqueue:
        res = client.post(f"/api/v1/snapshots/{snapshot.id}/analysis", headers=auth_headers(admin))

    assert res.status_code == 202
    assert res.json() == {"snapshot_id": str(snapshot.id), "job_id": job_id, "status": "queued"}
    enqueue.assert_called_once_with(snapshot_id=snapshot.id)


def test_unreachable_queue_is_service_unavailable(client, db_session, graded_school, admin, monkeypatch):
    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=graded_school["quarter"], name="Queue down"
    )
    monkeypatch.setattr(settings, "ASYNC_QUEUE_ENABLED", True)
    with patch(
        "gradewatch.routers.snapshots.enqueue_snapshot_analysis",
        side_effect=RedisConnectionError("Connection refused"),
    ):
        res = client.post(f"/api/v1/snapshots/{snapshot.id}/analysis", headers=auth_headers(admin))

    assert res.status_code == 503
    assert res.json()["detail"]["redis"] == "unavailable"
    db_session.expire_all()
    assert db_session.get(Snapshot, snapshot.id).analysis is None


def test_analysis_job_runs_against_the_database(db_session, graded_school, admin, llm_key):
    from gradewatch.tasks import analyze_snapshot_job

    snapshot = snapshot_service.create_snapshot(
        db_session, actor=admin, quarter=graded_school["quarter"], name="Job"
    )
    with patch("gradewatch.services.llm_service.openai.OpenAI") as mock_openai:
        mock_openai.return_value.chat.completions.create.return_value = _completion(MOCK_ANALYSIS)
        analyze_snapshot_job(str(snapshot.id))

    db_session.expire_all()
    assert db_session.get(Snapshot, snapshot.id).analysis == MOCK_ANALYSIS.strip()
