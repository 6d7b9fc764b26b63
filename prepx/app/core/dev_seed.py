import logging
import os

from sqlalchemy.orm import Session

from prepx.app.core.security import get_password_hash
from prepx.app.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_DEV_PASSWORD = "Secret123!"
DEFAULT_DEV_USERS = [
    ("admin@prepx.test", "super_admin"),
    ("counselor@prepx.test", "support_staff"),
]


def ensure_default_dev_users(db: Session) -> None:
    """
    Create a super admin and a counselor for local development if missing.
    Only runs in the development environment and never under pytest.
    """
    if os.getenv("PYTEST_CURRENT_TEST") or os.getenv("PREPX_ENV", "development") != "development":
        return

    created = False
    for email, role in DEFAULT_DEV_USERS:
        if db.query(User).filter(User.email == email).first():
            continue
        db.add(
            User(
                email=email,
                full_name=email.split("@")[0].title(),
                hashed_password=get_password_hash(DEFAULT_DEV_PASSWORD),
                role=role,
                is_active=True,
            )
        )
        created = True

    if created:
        db.commit()
        logger.info("Seeded default development users")
