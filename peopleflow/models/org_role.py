from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from peopleflow.database import Base


class OrganizationalRole(Base):
    __tablename__ = "organizational_roles"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
