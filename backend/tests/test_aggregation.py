from datetime import datetime, timedelta
from types import SimpleNamespace

from gradewatch.services import aggregation

T0 = datetime(2026, 9, 1, 8, 0, 0)


def g(student, course, grade, grade_type="grade", quarter="q1"):
    return SimpleNamespace(
        student_id=student, course_id=course, quarter_id=quarter, grade=grade, grade_type=grade_type
    )


def h(entry_id, student, course, from_grade, to_grade, minutes, change_type=None, quarter="q1", **snapshots):
    if change_type is None:
        change_type = "improvement" if from_grade == "F" and to_grade != "F" else "change"
    return SimpleNamespace(
        id=entry_id,
        student_id=student,
        course_id=course,
        quarter_id=quarter,
        from_grade=from_grade,
        to_grade=to_grade,
        change_type=change_type,
        created_at=T0 + timedelta(minutes=minutes),
        student_snapshot=snapshots.get("student_snapshot"),
        course_snapshot=snapshots.get("course_snapshot"),
    )


STUDENTS = [
    SimpleNamespace(id="s1", name="Alice", class_id="k1"),
    SimpleNamespace(id="s2", name="Bashir", class_id="k1"),
    SimpleNamespace(id="s3", name="Clara", class_id="k2"),
]
CLASSES = [SimpleNamespace(id="k1", name="TE23"), SimpleNamespace(id="k2", name="NA23")]
COURSES = [
    SimpleNamespace(id="c1", name="Mathematics", code="MAT"),
    SimpleNamespace(id="c2", name="Swedish", code="SVE"),
    SimpleNamespace(id="c3", name="English", code="ENG"),
]


def test_pass_rate_ignores_ungraded_records():
    grades = [g("s1", "c1", "A"), g("s2", "c1", "F"), g("s3", "c1", None), g("s4", "c1", "E")]
    assert aggregation.pass_rate(grades) == 66.7


def test_pass_rate_without_graded_records_is_none():
    assert aggregation.pass_rate([]) is None
    assert aggregation.pass_rate([g("s1", "c1", None)]) is None


def test_f_warning_is_not_an_f_grade():
    grades = [g("s1", "c1", "F", "warning"), g("s1", "c2", "F"), g("s2", "c1", "C")]
    summary = aggregation.count_summary(grades)
    assert summary["f_grade_count"] == 1
    assert summary["f_warning_count"] == 1
    assert summary["graded_count"] == 3
    # warnings count as graded but not as failing
    assert summary["pass_rate"] == 66.7


def test_average_grade_uses_letter_values():
    grades = [g("s1", "c1", "A"), g("s2", "c1", "C"), g("s3", "c1", "F"), g("s1", "c2", "F", "warning")]
    assert aggregation.average_grade(grades) == round((5 + 3 + 0) / 3, 2)
    assert aggregation.average_grade([]) is None


def test_at_risk_buckets_count_distinct_courses():
    grades = [
        g("s1", "c1", "F"),
        g("s1", "c2", "F"),
        g("s2", "c1", "F"),
        g("s2", "c1", "F", quarter="q2"),
        g("s3", "c1", "F"),
        g("s3", "c2", "F"),
        g("s3", "c3", "F"),
        g("s4", "c1", "F", "warning"),
        g("s4", "c2", "C"),
    ]
    buckets = aggregation.at_risk_buckets(grades)

    assert (buckets["with_1f"], buckets["with_2f"], buckets["with_3plus_f"]) == (1, 1, 1)
    assert buckets["members"]["with_2f"] == ["s1"]
    assert buckets["members"]["with_1f"] == ["s2"]
    assert buckets["members"]["with_3plus_f"] == ["s3"]
    assert all("s4" not in members for members in buckets["members"].values())


def test_class_rollups_skip_unknown_students():
    grades = [g("s1", "c1", "F"), g("s2", "c2", "F", "warning"), g("s3", "c1", "F"), g("ghost", "c1", "F")]
    rollups = {r["name"]: r for r in aggregation.class_rollups(grades, STUDENTS, CLASSES)}

    assert rollups["TE23"]["student_count"] == 2
    assert rollups["TE23"]["f_grade_count"] == 1
    assert rollups["TE23"]["f_warning_count"] == 1
    assert rollups["TE23"]["f_count"] == 2
    assert rollups["NA23"]["f_grade_count"] == 1


def test_grade_type_filter_selects_the_f_count():
    grades = [g("s1", "c1", "F"), g("s1", "c2", "F", "warning"), g("s1", "c3", "F", "warning")]
    by_filter = {
        name: aggregation.student_rollups(grades, STUDENTS[:1], CLASSES, name)[0]["f_count"]
        for name in ("grades", "warnings", "both")
    }
    assert by_filter == {"grades": 1, "warnings": 2, "both": 3}


def test_course_rollups_sorted_by_f_count():
    grades = [g("s1", "c2", "F"), g("s2", "c2", "F"), g("s3", "c1", "F"), g("s1", "c3", "A")]
    rollups = aggregation.course_rollups(grades, COURSES, "grades")
    assert [r["code"] for r in rollups] == ["SVE", "MAT", "ENG"]
    assert rollups[2]["pass_rate"] == 100.0


def test_dashboard_reports_worst_course_and_class():
    grades = [g("s1", "c1", "F"), g("s2", "c1", "F"), g("s3", "c2", "F"), g("s3", "c3", "B")]
    stats = aggregation.dashboard_stats(grades, STUDENTS, COURSES, CLASSES)

    assert stats["total_f_grades"] == 3
    assert stats["students_with_f"] == 3
    assert stats["worst_course"]["name"] == "Mathematics"
    assert stats["worst_class"]["name"] == "TE23"
    assert stats["pass_rate"] == 25.0


def test_improvements_are_deduplicated_per_student_and_course():
    history = [
        h("e1", "s1", "c1", "F", "E", minutes=0),
        h("e2", "s1", "c1", "F", "D", minutes=30),
        h("e3", "s2", "c1", "F", "C", minutes=10),
        h("e4", "s3", "c2", "F", "A", minutes=5),
        h("e5", "s1", "c2", "C", "F", minutes=15),
        h("e6", "s1", "c3", "F", "B", minutes=1, quarter="q2"),
    ]

    latest = aggregation.latest_improvements(history, quarter_id="q1")
    assert [e.id for e in latest] == ["e2", "e3", "e4"]

    rollup = aggregation.improvement_rollup(history, STUDENTS, COURSES, CLASSES, quarter_id="q1")
    assert rollup["total_improvements"] == 3
    assert rollup["students_with_improvements"] == 3
    assert rollup["most_improved_course"]["code"] == "MAT"
    assert rollup["most_improved_course"]["count"] == 2
    assert {r["name"]: r["count"] for r in rollup["per_class"]} == {"TE23": 2, "NA23": 1}

    assert aggregation.improvement_rollup(history, STUDENTS, COURSES, CLASSES)["total_improvements"] == 4


def test_improvements_fall_back_to_captured_names():
    history = [
        h(
            "e1",
            "gone",
            "c1",
            "F",
            "C",
            minutes=0,
            student_snapshot={"name": "Former Student", "class_id": None, "class_name": "TE22"},
        ),
        h("e2", "gone-too", "c1", "F", "C", minutes=1),
        h("e3", "s1", "retired", "F", "C", minutes=2, course_snapshot={"code": "OLD01", "name": "Old"}),
    ]
    rollup = aggregation.improvement_rollup(history, STUDENTS, COURSES, CLASSES)

    names = {(e["student_name"], e["course_code"]) for e in rollup["entries"]}
    assert names == {("Former Student", "MAT"), ("Alice", "OLD01")}
    assert rollup["total_improvements"] == 2


def test_compare_scopes():
    grades = [
        g("s1", "c1", "F", quarter="q1"),
        g("s2", "c1", "A", quarter="q1"),
        g("s1", "c1", "C", quarter="q2"),
        g("s3", "c2", "F", quarter="q2"),
    ]
    left, right = aggregation.compare_quarters(grades, "q1", "q2")
    assert (left["f_count"], left["pass_rate"]) == (1, 50.0)
    assert (right["f_count"], right["graded_count"]) == (1, 2)

    te, na = aggregation.compare_classes(grades, STUDENTS, "k1", "k2")
    assert te["student_count"] == 2 and te["f_count"] == 1
    assert na["student_count"] == 1 and na["pass_rate"] == 0.0

    math, swedish = aggregation.compare_courses(grades, "c1", "c2")
    assert math["graded_count"] == 3
    assert swedish["f_count"] == 1
