"""Read-side statistics over grade and history rows.

Every function here is pure: it takes already-loaded rows (ORM objects or any
object with the same attributes) and returns plain dicts. Rows that reference
a student, class or course missing from the supplied reference lists are
skipped rather than failing the whole computation.
"""

import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Any, Literal

from gradewatch.models.grade import FAILING_GRADE, GRADE_VALUES, ChangeType, GradeType
from gradewatch.services.duplicate_service import canonical_order_key

GradeTypeFilter = Literal["grades", "warnings", "both"]


def _grade_type(row: Any) -> GradeType:
    return GradeType(getattr(row, "grade_type", None) or GradeType.GRADE)


def is_f_grade(row: Any) -> bool:
    return row.grade == FAILING_GRADE and _grade_type(row) == GradeType.GRADE


def is_f_warning(row: Any) -> bool:
    return row.grade == FAILING_GRADE and _grade_type(row) == GradeType.WARNING


def pass_rate(grades: Iterable[Any]) -> float | None:
    """Share of graded records that are not an F-grade, in percent.

    Records without a grade letter are left out of the denominator; ``None``
    means nothing has been graded yet.
    """
    graded = [g for g in grades if g.grade]
    if not graded:
        return None
    failing = sum(1 for g in graded if is_f_grade(g))
    return round((len(graded) - failing) / len(graded) * 100, 1)


def average_grade(grades: Iterable[Any]) -> float | None:
    values = [
        GRADE_VALUES[g.grade]
        for g in grades
        if g.grade in GRADE_VALUES and _grade_type(g) == GradeType.GRADE
    ]
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def count_summary(grades: Iterable[Any]) -> dict[str, Any]:
    grades = list(grades)
    return {
        "graded_count": sum(1 for g in grades if g.grade),
        "f_grade_count": sum(1 for g in grades if is_f_grade(g)),
        "f_warning_count": sum(1 for g in grades if is_f_warning(g)),
        "pass_rate": pass_rate(grades),
    }


def filtered_f_count(summary: dict[str, Any], grade_type_filter: GradeTypeFilter) -> int:
    if grade_type_filter == "grades":
        return summary["f_grade_count"]
    if grade_type_filter == "warnings":
        return summary["f_warning_count"]
    return summary["f_grade_count"] + summary["f_warning_count"]


def _group(rows: Iterable[Any], attr: str) -> dict[Any, list[Any]]:
    grouped: dict[Any, list[Any]] = defaultdict(list)
    for row in rows:
        grouped[getattr(row, attr)].append(row)
    return grouped


def student_rollups(
    grades: Iterable[Any],
    students: Sequence[Any],
    classes: Sequence[Any] = (),
    grade_type_filter: GradeTypeFilter = "both",
) -> list[dict[str, Any]]:
    by_student = _group(grades, "student_id")
    class_names = {c.id: c.name for c in classes}

    rollups = []
    for student in students:
        summary = count_summary(by_student.get(student.id, []))
        rollups.append(
            {
                "student_id": student.id,
                "name": student.name,
                "class_id": student.class_id,
                "class_name": class_names.get(student.class_id),
                **summary,
                "f_count": filtered_f_count(summary, grade_type_filter),
            }
        )
    rollups.sort(key=lambda r: (-r["f_count"], r["name"]))
    return rollups


def class_rollups(
    grades: Iterable[Any],
    students: Sequence[Any],
    classes: Sequence[Any],
    grade_type_filter: GradeTypeFilter = "both",
) -> list[dict[str, Any]]:
    students_by_class = _group(students, "class_id")
    by_student = _group(grades, "student_id")

    rollups = []
    for school_class in classes:
        members = students_by_class.get(school_class.id, [])
        class_grades = [g for s in members for g in by_student.get(s.id, [])]
        summary = count_summary(class_grades)
        rollups.append(
            {
                "class_id": school_class.id,
                "name": school_class.name,
                "student_count": len(members),
                **summary,
                "f_count": filtered_f_count(summary, grade_type_filter),
            }
        )
    rollups.sort(key=lambda r: (-r["f_count"], r["name"]))
    return rollups


def course_rollups(
    grades: Iterable[Any],
    courses: Sequence[Any],
    grade_type_filter: GradeTypeFilter = "both",
) -> list[dict[str, Any]]:
    by_course = _group(grades, "course_id")

    rollups = []
    for course in courses:
        course_grades = by_course.get(course.id, [])
        summary = count_summary(course_grades)
        rollups.append(
            {
                "course_id": course.id,
                "code": course.code,
                "name": course.name,
                "total_grades": len(course_grades),
                **summary,
                "f_count": filtered_f_count(summary, grade_type_filter),
            }
        )
    rollups.sort(key=lambda r: (-r["f_count"], r["code"]))
    return rollups


def at_risk_buckets(grades: Iterable[Any]) -> dict[str, Any]:
    """Students with F-grades in exactly 1, exactly 2, or 3+ distinct courses."""
    failing_courses: dict[uuid.UUID, set[uuid.UUID]] = defaultdict(set)
    for g in grades:
        if is_f_grade(g):
            failing_courses[g.student_id].add(g.course_id)

    buckets: dict[str, list[uuid.UUID]] = {"with_1f": [], "with_2f": [], "with_3plus_f": []}
    for student_id, course_ids in failing_courses.items():
        if len(course_ids) == 1:
            buckets["with_1f"].append(student_id)
        elif len(course_ids) == 2:
            buckets["with_2f"].append(student_id)
        else:
            buckets["with_3plus_f"].append(student_id)

    return {
        "with_1f": len(buckets["with_1f"]),
        "with_2f": len(buckets["with_2f"]),
        "with_3plus_f": len(buckets["with_3plus_f"]),
        "members": {name: sorted(ids, key=str) for name, ids in buckets.items()},
    }


def latest_improvements(
    history: Iterable[Any], quarter_id: uuid.UUID | None = None
) -> list[Any]:
    """Improvement entries, one per (student, course), newest first.

    Storage-level cleanup may not have run, so repeated F -> pass entries for
    the same pair are collapsed to the most recent one here as well.
    """
    latest: dict[tuple[uuid.UUID, uuid.UUID], Any] = {}
    for entry in history:
        if ChangeType(entry.change_type) != ChangeType.IMPROVEMENT:
            continue
        if quarter_id is not None and entry.quarter_id != quarter_id:
            continue
        pair = (entry.student_id, entry.course_id)
        current = latest.get(pair)
        if current is None or canonical_order_key(entry) > canonical_order_key(current):
            latest[pair] = entry
    return sorted(latest.values(), key=canonical_order_key, reverse=True)


def improvement_rollup(
    history: Iterable[Any],
    students: Sequence[Any],
    courses: Sequence[Any],
    classes: Sequence[Any] = (),
    quarter_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    students_by_id = {s.id: s for s in students}
    courses_by_id = {c.id: c for c in courses}
    class_names = {c.id: c.name for c in classes}

    entries = []
    for entry in latest_improvements(history, quarter_id):
        student = students_by_id.get(entry.student_id)
        course = courses_by_id.get(entry.course_id)
        student_snapshot = entry.student_snapshot or {}
        course_snapshot = entry.course_snapshot or {}
        # Archived or deleted references fall back to the names captured at write time
        if student is None and not student_snapshot:
            continue
        if course is None and not course_snapshot:
            continue

        if student is not None:
            class_id = student.class_id
            student_name = student.name
        else:
            raw_class_id = student_snapshot.get("class_id")
            class_id = uuid.UUID(raw_class_id) if raw_class_id else None
            student_name = student_snapshot.get("name")

        entries.append(
            {
                "id": entry.id,
                "student_id": entry.student_id,
                "student_name": student_name,
                "class_id": class_id,
                "class_name": class_names.get(class_id, student_snapshot.get("class_name")),
                "course_id": entry.course_id,
                "course_code": course.code if course else course_snapshot.get("code"),
                "course_name": course.name if course else course_snapshot.get("name"),
                "from_grade": entry.from_grade,
                "to_grade": entry.to_grade,
                "created_at": entry.created_at,
            }
        )

    per_course: dict[uuid.UUID, dict[str, Any]] = {}
    per_class: dict[uuid.UUID, dict[str, Any]] = {}
    for item in entries:
        course_row = per_course.setdefault(
            item["course_id"],
            {
                "course_id": item["course_id"],
                "code": item["course_code"],
                "name": item["course_name"],
                "count": 0,
            },
        )
        course_row["count"] += 1
        if item["class_id"] is not None:
            class_row = per_class.setdefault(
                item["class_id"],
                {"class_id": item["class_id"], "name": item["class_name"], "count": 0},
            )
            class_row["count"] += 1

    course_counts = sorted(per_course.values(), key=lambda r: (-r["count"], r["code"] or ""))
    class_counts = sorted(per_class.values(), key=lambda r: (-r["count"], r["name"] or ""))

    return {
        "total_improvements": len(entries),
        "students_with_improvements": len({item["student_id"] for item in entries}),
        "most_improved_course": course_counts[0] if course_counts else None,
        "per_course": course_counts,
        "per_class": class_counts,
        "entries": entries,
    }


def _worst(rollups: list[dict[str, Any]], id_key: str) -> dict[str, Any] | None:
    candidates = [r for r in rollups if r["f_grade_count"] > 0]
    if not candidates:
        return None
    worst = max(candidates, key=lambda r: r["f_grade_count"])
    return {"id": worst[id_key], "name": worst["name"], "f_grade_count": worst["f_grade_count"]}


def dashboard_stats(
    grades: Sequence[Any],
    students: Sequence[Any],
    courses: Sequence[Any],
    classes: Sequence[Any],
) -> dict[str, Any]:
    summary = count_summary(grades)
    return {
        "total_grades": len(grades),
        "graded_count": summary["graded_count"],
        "total_f_grades": summary["f_grade_count"],
        "total_f_warnings": summary["f_warning_count"],
        "students_with_f": len({g.student_id for g in grades if is_f_grade(g)}),
        "worst_course": _worst(course_rollups(grades, courses), "course_id"),
        "worst_class": _worst(class_rollups(grades, students, classes), "class_id"),
        "pass_rate": summary["pass_rate"],
        "average_grade": average_grade(grades),
    }


def scope_stats(grades: Iterable[Any]) -> dict[str, Any]:
    summary = count_summary(grades)
    return {
        "f_count": summary["f_grade_count"],
        "f_warning_count": summary["f_warning_count"],
        "graded_count": summary["graded_count"],
        "pass_rate": summary["pass_rate"],
    }


def compare_quarters(
    grades: Sequence[Any], left_id: uuid.UUID, right_id: uuid.UUID
) -> tuple[dict[str, Any], dict[str, Any]]:
    return (
        scope_stats(g for g in grades if g.quarter_id == left_id),
        scope_stats(g for g in grades if g.quarter_id == right_id),
    )


def compare_classes(
    grades: Sequence[Any], students: Sequence[Any], left_id: uuid.UUID, right_id: uuid.UUID
) -> tuple[dict[str, Any], dict[str, Any]]:
    def _for_class(class_id: uuid.UUID) -> dict[str, Any]:
        member_ids = {s.id for s in students if s.class_id == class_id}
        stats = scope_stats(g for g in grades if g.student_id in member_ids)
        stats["student_count"] = len(member_ids)
        return stats

    return _for_class(left_id), _for_class(right_id)


def compare_courses(
    grades: Sequence[Any], left_id: uuid.UUID, right_id: uuid.UUID
) -> tuple[dict[str, Any], dict[str, Any]]:
    return (
        scope_stats(g for g in grades if g.course_id == left_id),
        scope_stats(g for g in grades if g.course_id == right_id),
    )
