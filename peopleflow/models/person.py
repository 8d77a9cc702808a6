from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from peopleflow.database import Base

PERSON_STATUSES = ("active", "onboarding", "offboarding", "inactive")


class Person(Base):
    __tablename__ = "persons"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)

    role_id = Column(Integer, ForeignKey("organizational_roles.id", ondelete="SET NULL"), nullable=True, index=True)
    manager_id = Column(Integer, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)

    status = Column(String, nullable=False, default="active", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
