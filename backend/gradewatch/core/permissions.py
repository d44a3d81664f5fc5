"""Role based permissions for the dashboard.

Three roles exist: ``admin`` can do everything, ``teacher`` can read data and
edit grades, ``analyst`` is read only. E-mails listed in
``settings.PERMANENT_ADMINS`` are treated as admins whatever their role row says.
"""

from sqlalchemy.orm import Session

from gradewatch.core.config import settings
from gradewatch.models.role import Role
from gradewatch.models.user import User

VIEW_DATA = "view_data"
MANAGE_CLASSES = "manage_classes"
MANAGE_COURSES = "manage_courses"
MANAGE_STUDENTS = "manage_students"
MANAGE_GRADES = "manage_grades"
MANAGE_QUARTERS = "manage_quarters"

ALL_PERMISSIONS = frozenset(
    {
        VIEW_DATA,
        MANAGE_CLASSES,
        MANAGE_COURSES,
        MANAGE_STUDENTS,
        MANAGE_GRADES,
        MANAGE_QUARTERS,
    }
)

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": ALL_PERMISSIONS,
    "teacher": frozenset({VIEW_DATA, MANAGE_GRADES}),
    "analyst": frozenset({VIEW_DATA}),
}


def get_role_name(db: Session, user: User) -> str:
    if not user.role_id:
        return ""
    role = db.get(Role, user.role_id)
    return (role.name if role else "").casefold()


def is_permanent_admin(user: User) -> bool:
    return (user.email or "").casefold() in settings.permanent_admin_emails


def is_admin(db: Session, user: User) -> bool:
    return is_permanent_admin(user) or get_role_name(db, user) == "admin"


def user_can(db: Session, user: User | None, permission: str) -> bool:
    if user is None or not user.is_active:
        return False
    if is_permanent_admin(user):
        return True
    return permission in ROLE_PERMISSIONS.get(get_role_name(db, user), frozenset())


def can_edit_grades(db: Session, user: User | None) -> bool:
    return user_can(db, user, MANAGE_GRADES)
