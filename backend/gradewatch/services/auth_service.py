from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gradewatch.core.security import verify_password
from gradewatch.models.user import User
from gradewatch.schemas.auth import Login


class AuthService:
    @staticmethod
    def authenticate_user(db: Session, login_data: Login) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == login_data.email.lower())
        user = db.execute(stmt).scalar_one_or_none()

        if not user or not user.is_active:
            return None

        if not verify_password(login_data.password, user.hashed_password):
            return None

        return user
