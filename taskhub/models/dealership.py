"""Dealership model."""
from sqlalchemy import Column, String, Boolean
import uuid
from taskhub.core.time import now_utc
from taskhub.database import Base
from taskhub.db.types import GUID, UTCDateTime


class Dealership(Base):
    """Organizational unit that owns users, shifts and tasks."""

    __tablename__ = "dealerships"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime(), default=now_utc, nullable=False)
