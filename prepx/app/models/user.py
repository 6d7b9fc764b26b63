from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.orm import relationship

from prepx.app.db.base_class import Base

USER_ROLES = (
    "super_admin",
    "management_admin",
    "academic_coordinator",
    "teacher",
    "finance_manager",
    "support_staff",
)
ADMIN_ROLES = frozenset({"super_admin", "management_admin"})


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)
    role = Column(String(50), nullable=False, default="support_staff")
    is_active = Column(Boolean, nullable=False, default=True)
    phone = Column(String(50), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    assigned_leads = relationship("Lead", back_populates="counselor", foreign_keys="Lead.assigned_counselor_id")

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
