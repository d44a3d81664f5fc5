from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from gradewatch.core import security
from gradewatch.core.config import settings
from gradewatch.core.db import get_db
from gradewatch.core.deps import get_current_active_user
from gradewatch.core.permissions import ALL_PERMISSIONS, get_role_name, is_permanent_admin, user_can
from gradewatch.models.user import User
from gradewatch.schemas.auth import Login, Token, UserMe
from gradewatch.services.auth_service import AuthService

router = APIRouter()


@router.post("/login/access-token", response_model=Token)
def login_access_token(
    login_data: Login,
    db: Session = Depends(get_db),
) -> Any:
    """
    OAuth2 compatible token login, get an access token for future requests
    """
    user = AuthService.authenticate_user(db, login_data)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    access_token_expires = timedelta(seconds=settings.JWT_EXPIRES_SECONDS)
    access_token = security.create_access_token(user.id, expires_delta=access_token_expires)
    return {
        "access_token": access_token,
        "token_type": "bearer",
    }


@router.get("/auth/me", response_model=UserMe)
def get_me(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> UserMe:
    role_name = "admin" if is_permanent_admin(current_user) else get_role_name(db, current_user)
    return UserMe(
        id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        role=role_name or None,
        permissions=sorted(p for p in ALL_PERMISSIONS if user_can(db, current_user, p)),
    )
