from sqlalchemy import Column, DateTime, Integer, String, Text

from prepx.app.db.base_class import Base
from prepx.app.core.time import utc_now


class OrgSetting(Base):
    __tablename__ = "org_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), nullable=False, unique=True, index=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
