"""User and Role models."""
from typing import TYPE_CHECKING

from sqlalchemy import Column, String, Boolean, Table, ForeignKey, Text
from sqlalchemy.orm import relationship
import uuid
from taskhub.core.time import now_utc
from taskhub.database import Base
from taskhub.db.types import JSONBType, GUID, UTCDateTime

if TYPE_CHECKING:
    from taskhub.models.dealership import Dealership

# Association table for User-Role many-to-many relationship
user_role_association = Table(
    "user_role_association",
    Base.metadata,
    Column("user_id", GUID(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", GUID(), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

# Extra dealerships a user may work with besides the primary one
user_dealership_association = Table(
    "user_dealership_association",
    Base.metadata,
    Column("user_id", GUID(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("dealership_id", GUID(), ForeignKey("dealerships.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """User model."""

    __tablename__ = "users"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    dealership_id = Column(GUID(), ForeignKey("dealerships.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(UTCDateTime(), default=now_utc, nullable=False)
    updated_at = Column(UTCDateTime(), default=now_utc, onupdate=now_utc, nullable=False)

    # Relationships
    roles = relationship("Role", secondary=user_role_association, back_populates="users", lazy="selectin")
    dealership = relationship("Dealership", foreign_keys=[dealership_id])
    dealerships = relationship(
        "Dealership",
        secondary=user_dealership_association,
        lazy="selectin",
    )

    @property
    def accessible_dealership_ids(self) -> set:
        """Primary dealership plus every attached one."""
        ids = {dealership.id for dealership in self.dealerships}
        if self.dealership_id is not None:
            ids.add(self.dealership_id)
        return ids


class Role(Base):
    """Role model with permissions."""

    __tablename__ = "roles"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    permissions = Column(JSONBType(), nullable=False, default=list)  # List of permission strings
    description = Column(Text, nullable=True)

    # Relationships
    users = relationship("User", secondary=user_role_association, back_populates="roles")
