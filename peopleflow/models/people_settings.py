from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from peopleflow.database import Base


class PeopleSettings(Base):
    """Per-organization people module configuration (auto-trigger switches)."""

    __tablename__ = "people_settings"

    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, nullable=False, unique=True)

    auto_onboarding_workflow = Column(Boolean, nullable=False, default=False)
    default_onboarding_template_id = Column(
        String(36), ForeignKey("workflow_templates.id", ondelete="SET NULL"), nullable=True
    )

    auto_offboarding_workflow = Column(Boolean, nullable=False, default=False)
    default_offboarding_template_id = Column(
        String(36), ForeignKey("workflow_templates.id", ondelete="SET NULL"), nullable=True
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
