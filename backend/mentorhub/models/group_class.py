"""
Group class models.

Only the fields settlement needs: when the class starts, who enrolled, what
they paid and where each enrollment stands.
"""

from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime


class GroupClassStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class EnrollmentStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class GroupClass(Base):
    __tablename__ = "group_classes"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    price_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="TRY")
    status = Column(String(20), nullable=False, default=GroupClassStatus.SCHEDULED.value)
    cancelled_at = Column(UTCDateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (CheckConstraint("start_at < end_at", name="check_class_time_order"),)


class ClassEnrollment(Base):
    __tablename__ = "class_enrollments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    class_id = Column(String(26), ForeignKey("group_classes.id"), nullable=False, index=True)
    student_id = Column(String(26), nullable=False)
    price_amount = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.PENDING_PAYMENT.value)
    cancelled_at = Column(UTCDateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("class_id", "student_id", name="unique_class_student_enrollment"),
    )
