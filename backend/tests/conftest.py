import os
import uuid
from datetime import date

# Must be set before gradewatch.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ASYNC_QUEUE_ENABLED"] = "false"
os.environ["OPENAI_API_KEY"] = ""
os.environ["PERMANENT_ADMINS"] = "owner@school.org"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from gradewatch.core.db import Base, SessionLocal  # noqa: E402
from gradewatch.core.security import create_access_token, get_password_hash  # noqa: E402
from gradewatch.main import app  # noqa: E402
from gradewatch.models.course import Course  # noqa: E402
from gradewatch.models.quarter import Quarter  # noqa: E402
from gradewatch.models.role import Role  # noqa: E402
from gradewatch.models.school_class import SchoolClass  # noqa: E402
from gradewatch.models.student import Student  # noqa: E402
from gradewatch.models.user import User  # noqa: E402

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
SessionLocal.configure(bind=test_engine)

PASSWORD = "secret"


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


def make_user(db, role_name: str | None, email: str | None = None, is_active: bool = True) -> User:
    role_id = None
    if role_name:
        role = db.query(Role).filter_by(name=role_name).first()
        if not role:
            role = Role(id=uuid.uuid4(), name=role_name)
            db.add(role)
            db.flush()
        role_id = role.id

    user = User(
        id=uuid.uuid4(),
        email=email or f"{role_name or 'nobody'}_{uuid.uuid4().hex[:8]}@school.org",
        hashed_password=get_password_hash(PASSWORD),
        full_name=f"Test {role_name}",
        role_id=role_id,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def admin(db_session):
    return make_user(db_session, "admin")


@pytest.fixture
def teacher(db_session):
    return make_user(db_session, "teacher")


@pytest.fixture
def analyst(db_session):
    return make_user(db_session, "analyst")


@pytest.fixture
def school(db_session):
    """One active quarter, two classes, three courses and four students."""
    quarter = Quarter(
        id=uuid.uuid4(), name="HT Q1", start_date=date(2026, 8, 18), is_active=True, locked=False
    )
    te = SchoolClass(id=uuid.uuid4(), name="TE23")
    na = SchoolClass(id=uuid.uuid4(), name="NA23")
    math = Course(id=uuid.uuid4(), name="Mathematics 1a", code="MATMAT01A", points=100)
    swedish = Course(id=uuid.uuid4(), name="Swedish 1", code="SVESVE01", points=100)
    english = Course(id=uuid.uuid4(), name="English 5", code="ENGENG05", points=100)
    db_session.add_all([quarter, te, na, math, swedish, english])
    db_session.flush()

    students = {
        "alice": Student(id=uuid.uuid4(), name="Alice", class_id=te.id),
        "bashir": Student(id=uuid.uuid4(), name="Bashir", class_id=te.id),
        "clara": Student(id=uuid.uuid4(), name="Clara", class_id=na.id),
        "david": Student(id=uuid.uuid4(), name="David", class_id=na.id),
    }
    db_session.add_all(students.values())
    db_session.commit()

    return {
        "quarter": quarter,
        "classes": {"te": te, "na": na},
        "courses": {"math": math, "swedish": swedish, "english": english},
        "students": students,
    }
