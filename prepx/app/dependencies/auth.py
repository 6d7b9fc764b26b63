"""Request dependencies resolving the signed-in staff member."""

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from prepx.app.core.errors import PermissionDenied, SessionExpired
from prepx.app.core.security import decode_access_token
from prepx.app.db.session import get_db
from prepx.app.models.user import User


def get_current_user(db: Session = Depends(get_db), authorization: str | None = Header(default=None)) -> User:
    # Expect Authorization: Bearer <token>
    if not authorization or not authorization.startswith("Bearer "):
        raise SessionExpired("Missing bearer token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = decode_access_token(token)
    except ValueError as exc:
        raise SessionExpired(str(exc)) from exc

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError) as exc:
        raise SessionExpired("Token subject is not a user id") from exc

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise SessionExpired("Token user missing or inactive")
    return user


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Only super and management admins get past this dependency."""
    if not current_user.is_admin:
        raise PermissionDenied(f"User {current_user.id} with role {current_user.role} is not an admin")
    return current_user
