import uuid

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import auth_headers
from gradewatch.models.grade import GradeHistory


def _payload(school, student="alice", course="math", **extra):
    return {
        "student_id": str(school["students"][student].id),
        "course_id": str(school["courses"][course].id),
        **extra,
    }


def test_put_grade_defaults_to_active_quarter(client, school, teacher):
    res = client.put("/api/v1/grades", json=_payload(school, grade="f"), headers=auth_headers(teacher))
    assert res.status_code == 200
    body = res.json()
    assert body["changed"] is True
    assert body["grade"]["grade"] == "F"
    assert body["grade"]["grade_type"] == "grade"
    assert body["grade"]["quarter_id"] == str(school["quarter"].id)

    res = client.put("/api/v1/grades", json=_payload(school, grade="F"), headers=auth_headers(teacher))
    assert res.status_code == 200
    assert res.json()["changed"] is False
    assert res.json()["grade"]["id"] == body["grade"]["id"]


def test_grade_history_endpoint(client, school, teacher, analyst):
    headers = auth_headers(teacher)
    for letter in ("F", "D"):
        client.put("/api/v1/grades", json=_payload(school, grade=letter), headers=headers)

    res = client.get("/api/v1/grades/history", headers=auth_headers(analyst))
    assert res.status_code == 200
    history = res.json()
    assert len(history) == 2
    assert {h["change_type"] for h in history} == {"regression", "improvement"}
    assert all(h["changed_by"] == str(teacher.id) for h in history)

    res = client.get(
        "/api/v1/grades/history", params={"change_type": "improvement"}, headers=auth_headers(analyst)
    )
    assert [(h["from_grade"], h["to_grade"]) for h in res.json()] == [("F", "D")]


def test_list_grades_filters(client, school, teacher):
    headers = auth_headers(teacher)
    client.put("/api/v1/grades", json=_payload(school, grade="A"), headers=headers)
    client.put(
        "/api/v1/grades",
        json=_payload(school, student="bashir", grade="F", grade_type="warning"),
        headers=headers,
    )

    res = client.get("/api/v1/grades", headers=headers)
    assert len(res.json()) == 2

    res = client.get("/api/v1/grades", params={"grade_type": "warning"}, headers=headers)
    assert [g["student_id"] for g in res.json()] == [str(school["students"]["bashir"].id)]


def test_clear_grade_by_natural_key_and_by_id(client, school, teacher):
    headers = auth_headers(teacher)
    client.put("/api/v1/grades", json=_payload(school, grade="F"), headers=headers)
    grade_id = client.put(
        "/api/v1/grades", json=_payload(school, course="english", grade="C"), headers=headers
    ).json()["grade"]["id"]

    res = client.delete(
        "/api/v1/grades",
        params={
            "student_id": str(school["students"]["alice"].id),
            "course_id": str(school["courses"]["math"].id),
        },
        headers=headers,
    )
    assert res.status_code == 204

    res = client.delete(f"/api/v1/grades/{grade_id}", headers=headers)
    assert res.status_code == 204

    assert client.get("/api/v1/grades", headers=headers).json() == []
    history = client.get("/api/v1/grades/history", headers=headers).json()
    assert sum(1 for h in history if h["to_grade"] is None) == 2

    res = client.delete(f"/api/v1/grades/{uuid.uuid4()}", headers=headers)
    assert res.status_code == 404


def test_analyst_cannot_write_grades(client, school, analyst):
    res = client.put("/api/v1/grades", json=_payload(school, grade="A"), headers=auth_headers(analyst))
    assert res.status_code == 403


def test_invalid_grade_is_unprocessable(client, school, teacher):
    headers = auth_headers(teacher)
    res = client.put("/api/v1/grades", json=_payload(school, grade="G"), headers=headers)
    assert res.status_code == 422

    res = client.put(
        "/api/v1/grades", json=_payload(school, grade="C", grade_type="warning"), headers=headers
    )
    assert res.status_code == 422


def test_locked_quarter_is_conflict(client, db_session, school, teacher):
    school["quarter"].locked = True
    db_session.commit()

    res = client.put("/api/v1/grades", json=_payload(school, grade="A"), headers=auth_headers(teacher))
    assert res.status_code == 409


def test_missing_active_quarter(client, db_session, school, teacher):
    school["quarter"].is_active = False
    db_session.commit()

    res = client.put("/api/v1/grades", json=_payload(school, grade="A"), headers=auth_headers(teacher))
    assert res.status_code == 422
    assert res.json()["detail"] == "No active quarter"


def test_unauthenticated_request_is_rejected(client, school):
    res = client.put("/api/v1/grades", json=_payload(school, grade="A"))
    assert res.status_code == 401


def test_database_failure_is_reported_without_partial_write(client, school, teacher):
    headers = auth_headers(teacher)
    client.put("/api/v1/grades", json=_payload(school, grade="F"), headers=headers)

    def fail_with_history_pending(session, flush_context, instances):
        if any(isinstance(obj, GradeHistory) for obj in session.new):
            raise OperationalError("INSERT INTO grade_history", {}, Exception("server closed the connection"))

    event.listen(Session, "before_flush", fail_with_history_pending)
    try:
        res = client.put("/api/v1/grades", json=_payload(school, grade="B"), headers=headers)
    finally:
        event.remove(Session, "before_flush", fail_with_history_pending)

    assert res.status_code == 500
    assert res.json()["detail"] == "Database error: OperationalError"
    assert [g["grade"] for g in client.get("/api/v1/grades", headers=headers).json()] == ["F"]
    assert len(client.get("/api/v1/grades/history", headers=headers).json()) == 1
