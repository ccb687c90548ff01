"""Key/value settings with per-dealership overrides."""
from sqlalchemy import Column, String, ForeignKey, UniqueConstraint
import uuid
from taskhub.core.time import now_utc
from taskhub.database import Base
from taskhub.db.types import GUID, JSONBType, UTCDateTime


class Setting(Base):
    """A setting value; ``dealership_id`` NULL marks the global default."""

    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("key", "dealership_id", name="uq_settings_key_dealership"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    key = Column(String(100), nullable=False, index=True)
    value = Column(JSONBType(), nullable=True)
    dealership_id = Column(GUID(), ForeignKey("dealerships.id", ondelete="CASCADE"), nullable=True, index=True)
    updated_at = Column(UTCDateTime(), default=now_utc, onupdate=now_utc, nullable=False)
