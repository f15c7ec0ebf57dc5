"""
Organization (tenant) Model.
Carries optional per-tenant overrides of the leave/attendance policy bundle.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Policy overrides; NULL means "use the process default"
    overdraw_policy = Column(String, nullable=True)  # warn | block
    hours_per_day = Column(Float, nullable=True)
    overtime_mode = Column(String, nullable=True)  # daily | period
    half_day_rule = Column(String, nullable=True)  # reduce_expected | credit_paid_hours

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    departments = relationship("Department", back_populates="organization")
    employees = relationship("Employee", back_populates="organization")

    def __repr__(self):
        return f"<Organization {self.slug}>"
