"""Shift model.

Shifts are opened and closed elsewhere; this service only reads them as a
completion gate and marks them once the post-shift archival sweep has looked
at them.
"""
from enum import Enum
from sqlalchemy import Column, String, Boolean, ForeignKey
from sqlalchemy.orm import relationship
import uuid
from taskhub.database import Base
from taskhub.db.types import GUID, UTCDateTime


class ShiftStatus(str, Enum):
    """Shift lifecycle status."""

    OPEN = "open"
    CLOSED = "closed"


class Shift(Base):
    """A user's work shift at a dealership."""

    __tablename__ = "shifts"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    dealership_id = Column(GUID(), ForeignKey("dealerships.id", ondelete="CASCADE"), nullable=False, index=True)
    shift_start = Column(UTCDateTime(), nullable=False)
    shift_end = Column(UTCDateTime(), nullable=True)
    status = Column(String(20), nullable=False, default=ShiftStatus.OPEN.value, index=True)
    archived_tasks_processed = Column(Boolean, nullable=False, default=False)

    user = relationship("User")
