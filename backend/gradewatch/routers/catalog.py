import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, selectinload

from gradewatch.core.db import get_db, utcnow
from gradewatch.core.deps import require_permission
from gradewatch.core.permissions import (
    MANAGE_CLASSES,
    MANAGE_COURSES,
    MANAGE_QUARTERS,
    MANAGE_STUDENTS,
    VIEW_DATA,
)
from gradewatch.models.course import Course
from gradewatch.models.quarter import Quarter
from gradewatch.models.school_class import ClassCourse, SchoolClass
from gradewatch.models.student import Student
from gradewatch.models.user import User
from gradewatch.schemas.catalog import (
    ArchiveRequest,
    CourseCreate,
    CourseSummary,
    CourseUpdate,
    QuarterCreate,
    QuarterSummary,
    SchoolClassCreate,
    SchoolClassSummary,
    SchoolClassUpdate,
    StudentCreate,
    StudentSummary,
    StudentUpdate,
)
from gradewatch.services.quarter_service import quarter_service

router = APIRouter(prefix="/catalog", tags=["catalog"])


def _require_class(db: Session, class_id: uuid.UUID) -> SchoolClass:
    school_class = db.get(SchoolClass, class_id)
    if not school_class:
        raise HTTPException(status_code=404, detail="Class not found")
    return school_class


def _require_course(db: Session, course_id: uuid.UUID) -> Course:
    course = db.get(Course, course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def _require_student(db: Session, student_id: uuid.UUID) -> Student:
    student = db.get(Student, student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


def _set_class_courses(db: Session, school_class: SchoolClass, course_ids: list[uuid.UUID]) -> None:
    wanted = list(dict.fromkeys(course_ids))
    for course_id in wanted:
        _require_course(db, course_id)
    # Keep surviving links so the (class, course) unique key is never inserted twice in one flush
    existing = {link.course_id: link for link in school_class.course_links}
    school_class.course_links = [
        existing.get(course_id) or ClassCourse(class_id=school_class.id, course_id=course_id)
        for course_id in wanted
    ]


# Classes


@router.get("/classes", response_model=list[SchoolClassSummary])
def list_classes(
    include_archived: bool = False,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
):
    query = db.query(SchoolClass).options(selectinload(SchoolClass.course_links))
    if not include_archived:
        query = query.filter(SchoolClass.archived.is_(False))
    return query.order_by(SchoolClass.name).all()


@router.post("/classes", response_model=SchoolClassSummary, status_code=status.HTTP_201_CREATED)
def create_class(
    payload: SchoolClassCreate,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_CLASSES)),
):
    school_class = SchoolClass(id=uuid.uuid4(), name=payload.name)
    _set_class_courses(db, school_class, payload.course_ids)
    db.add(school_class)
    db.commit()
    db.refresh(school_class)
    return school_class


@router.put("/classes/{class_id}", response_model=SchoolClassSummary)
def update_class(
    class_id: uuid.UUID,
    payload: SchoolClassUpdate,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_CLASSES)),
):
    school_class = _require_class(db, class_id)
    if payload.name is None and payload.course_ids is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")

    if payload.name:
        school_class.name = payload.name
    if payload.course_ids is not None:
        _set_class_courses(db, school_class, payload.course_ids)

    db.add(school_class)
    db.commit()
    db.refresh(school_class)
    return school_class


@router.post("/classes/{class_id}/archive", response_model=SchoolClassSummary)
def archive_class(
    class_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_CLASSES)),
):
    school_class = _require_class(db, class_id)
    school_class.archived = True
    school_class.archived_at = utcnow()
    db.add(school_class)
    db.commit()
    db.refresh(school_class)
    return school_class


@router.post("/classes/{class_id}/reactivate", response_model=SchoolClassSummary)
def reactivate_class(
    class_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_CLASSES)),
):
    school_class = _require_class(db, class_id)
    school_class.archived = False
    school_class.archived_at = None
    db.add(school_class)
    db.commit()
    db.refresh(school_class)
    return school_class


# Courses


@router.get("/courses", response_model=list[CourseSummary])
def list_courses(
    include_archived: bool = False,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
):
    query = db.query(Course)
    if not include_archived:
        query = query.filter(Course.archived.is_(False))
    return query.order_by(Course.code).all()


@router.post("/courses", response_model=CourseSummary, status_code=status.HTTP_201_CREATED)
def create_course(
    payload: CourseCreate,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_COURSES)),
):
    code = payload.code.upper()
    if db.query(Course).filter(Course.code == code, Course.archived.is_(False)).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Course code {code} already exists")

    course = Course(id=uuid.uuid4(), name=payload.name, code=code, points=payload.points)
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


@router.put("/courses/{course_id}", response_model=CourseSummary)
def update_course(
    course_id: uuid.UUID,
    payload: CourseUpdate,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_COURSES)),
):
    course = _require_course(db, course_id)
    data = payload.model_dump(exclude_unset=True)
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")
    if data.get("code"):
        data["code"] = data["code"].upper()

    for key, value in data.items():
        setattr(course, key, value)

    db.add(course)
    db.commit()
    db.refresh(course)
    return course


@router.post("/courses/{course_id}/archive", response_model=CourseSummary)
def archive_course(
    course_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_COURSES)),
):
    course = _require_course(db, course_id)
    course.archived = True
    course.archived_at = utcnow()
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


@router.post("/courses/{course_id}/reactivate", response_model=CourseSummary)
def reactivate_course(
    course_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_COURSES)),
):
    course = _require_course(db, course_id)
    course.archived = False
    course.archived_at = None
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


# Students


@router.get("/students", response_model=list[StudentSummary])
def list_students(
    class_id: uuid.UUID | None = None,
    include_archived: bool = False,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
):
    query = db.query(Student)
    if class_id:
        query = query.filter(Student.class_id == class_id)
    if not include_archived:
        query = query.filter(Student.archived.is_(False))
    return query.order_by(Student.name).all()


@router.post("/students", response_model=StudentSummary, status_code=status.HTTP_201_CREATED)
def create_student(
    payload: StudentCreate,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_STUDENTS)),
):
    if payload.class_id:
        _require_class(db, payload.class_id)

    student = Student(id=uuid.uuid4(), name=payload.name, class_id=payload.class_id)
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


@router.put("/students/{student_id}", response_model=StudentSummary)
def update_student(
    student_id: uuid.UUID,
    payload: StudentUpdate,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_STUDENTS)),
):
    student = _require_student(db, student_id)
    data = payload.model_dump(exclude_unset=True)
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")
    if data.get("class_id"):
        _require_class(db, data["class_id"])

    for key, value in data.items():
        setattr(student, key, value)

    db.add(student)
    db.commit()
    db.refresh(student)
    return student


@router.post("/students/{student_id}/archive", response_model=StudentSummary)
def archive_student(
    student_id: uuid.UUID,
    payload: ArchiveRequest | None = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_STUDENTS)),
):
    student = _require_student(db, student_id)
    student.archived = True
    student.archived_at = utcnow()
    student.archived_reason = payload.reason if payload else None
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


@router.post("/students/{student_id}/reactivate", response_model=StudentSummary)
def reactivate_student(
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_STUDENTS)),
):
    student = _require_student(db, student_id)
    student.archived = False
    student.archived_at = None
    student.archived_reason = None
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


# Quarters


@router.get("/quarters", response_model=list[QuarterSummary])
def list_quarters(
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
):
    return db.query(Quarter).order_by(Quarter.start_date.desc(), Quarter.name).all()


@router.post("/quarters", response_model=QuarterSummary, status_code=status.HTTP_201_CREATED)
def create_quarter(
    payload: QuarterCreate,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_QUARTERS)),
):
    if payload.start_date and payload.end_date and payload.end_date < payload.start_date:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_date must not be before start_date",
        )

    quarter = Quarter(
        id=uuid.uuid4(),
        name=payload.name,
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_active=False,
        locked=False,
    )
    db.add(quarter)
    db.commit()
    db.refresh(quarter)
    return quarter


@router.post("/quarters/{quarter_id}/activate", response_model=QuarterSummary)
def activate_quarter(
    quarter_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_QUARTERS)),
):
    return quarter_service.activate_quarter(db, quarter_id)


@router.post("/quarters/{quarter_id}/lock", response_model=QuarterSummary)
def lock_quarter(
    quarter_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_QUARTERS)),
):
    return quarter_service.set_locked(db, quarter_id, True)


@router.post("/quarters/{quarter_id}/unlock", response_model=QuarterSummary)
def unlock_quarter(
    quarter_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_QUARTERS)),
):
    return quarter_service.set_locked(db, quarter_id, False)


@router.delete("/quarters/{quarter_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quarter(
    quarter_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_QUARTERS)),
):
    quarter_service.delete_quarter(db, quarter_id)
    return None
