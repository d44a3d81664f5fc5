import logging
import sys
import uuid
from datetime import date

# Add current directory to sys.path to resolve 'gradewatch' modules
sys.path.append(".")

from gradewatch.core.db import SessionLocal  # noqa: E402
from gradewatch.core.security import get_password_hash  # noqa: E402
from gradewatch.models.course import Course  # noqa: E402
from gradewatch.models.quarter import Quarter  # noqa: E402
from gradewatch.models.role import Role  # noqa: E402
from gradewatch.models.school_class import ClassCourse, SchoolClass  # noqa: E402
from gradewatch.models.student import Student  # noqa: E402
from gradewatch.models.user import User  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ROLES = {
    "admin": "Full access, including duplicate cleanup",
    "teacher": "Can view data and edit grades",
    "analyst": "Read only",
}

DEMO_USERS = (
    ("admin@gradewatch.org", "Demo Admin", "admin"),
    ("teacher@gradewatch.org", "Demo Teacher", "teacher"),
    ("analyst@gradewatch.org", "Demo Analyst", "analyst"),
)

DEMO_COURSES = (
    ("MATMAT01a", "Mathematics 1a", 100),
    ("SVESVE01", "Swedish 1", 100),
    ("ENGENG05", "English 5", 100),
)

DEMO_CLASSES = {
    "TE23": ("Alice Andersson", "Bashir Omar", "Clara Lind"),
    "NA23": ("David Berg", "Emma Nilsson"),
}


def _get_or_create_role(db, name: str) -> Role:
    role = db.query(Role).filter_by(name=name).first()
    if not role:
        role = Role(id=uuid.uuid4(), name=name, description=ROLES[name])
        db.add(role)
        db.flush()
        logger.info("Created role: %s", name)
    return role


def seed_db() -> None:
    default_password = "gradewatch"

    db = SessionLocal()
    try:
        logger.info("Seeding database...")

        roles = {name: _get_or_create_role(db, name) for name in ROLES}

        for email, full_name, role_name in DEMO_USERS:
            user = db.query(User).filter_by(email=email).first()
            if not user:
                db.add(
                    User(
                        id=uuid.uuid4(),
                        email=email,
                        hashed_password=get_password_hash(default_password),
                        full_name=full_name,
                        role_id=roles[role_name].id,
                        is_active=True,
                    )
                )
                logger.info("Created user: %s (%s)", email, role_name)
            elif not user.hashed_password.startswith("$pbkdf2-sha256$"):
                user.hashed_password = get_password_hash(default_password)
                logger.info("Updated password hash for %s", email)

        courses = []
        for code, name, points in DEMO_COURSES:
            course = db.query(Course).filter_by(code=code).first()
            if not course:
                course = Course(id=uuid.uuid4(), code=code, name=name, points=points)
                db.add(course)
                logger.info("Created course: %s", code)
            courses.append(course)
        db.flush()

        for class_name, student_names in DEMO_CLASSES.items():
            school_class = db.query(SchoolClass).filter_by(name=class_name).first()
            if not school_class:
                school_class = SchoolClass(id=uuid.uuid4(), name=class_name)
                school_class.course_links = [
                    ClassCourse(class_id=school_class.id, course_id=course.id) for course in courses
                ]
                db.add(school_class)
                logger.info("Created class: %s", class_name)
            for student_name in student_names:
                if not db.query(Student).filter_by(name=student_name).first():
                    db.add(Student(id=uuid.uuid4(), name=student_name, class_id=school_class.id))

        if not db.query(Quarter).first():
            today = date.today()
            db.add(
                Quarter(
                    id=uuid.uuid4(),
                    name=f"Q{(today.month - 1) // 3 + 1} {today.year}",
                    start_date=date(today.year, 3 * ((today.month - 1) // 3) + 1, 1),
                    is_active=True,
                    locked=False,
                )
            )
            logger.info("Created active quarter")

        db.commit()
        logger.info("Seeding complete")
    except Exception:
        logger.exception("Seeding failed")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_db()
