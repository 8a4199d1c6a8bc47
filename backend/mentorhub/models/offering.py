# backend/mentorhub/models/offering.py
"""
Offering model: a mentor's sellable session type.

An offering may point at a dedicated availability template. When it does
not, or the template has since been removed, the mentor's default template
governs both the bookable windows and the buffer between sessions.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class Offering(Base):
    __tablename__ = "offerings"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    price_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="TRY")
    is_active = Column(Boolean, nullable=False, default=True)
    template_id = Column(
        String(26),
        ForeignKey("availability_templates.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_offering_duration_positive"),
        CheckConstraint("price_amount >= 0", name="check_offering_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Offering {self.title} ({self.duration_minutes}m) mentor={self.mentor_id}>"
