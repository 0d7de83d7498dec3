from __future__ import annotations
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, UniqueConstraint, DateTime, func
from typing import Optional, Set, FrozenSet

from staffauth.constants.permissions import USER_TYPE_SYSTEM

Base = declarative_base()

OVERRIDE_GRANT = 'grant'
OVERRIDE_REVOKE = 'revoke'


class Facility(Base):
    __tablename__ = 'facilities'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class User(Base):
    """Single identity record for system users, facility users and staff.

    ``user_type`` tags the variant; role, overrides and facility associations are
    shared by every variant so there is exactly one lookup path.
    """
    __tablename__ = 'users'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    user_type: Mapped[str] = mapped_column(String(32), nullable=False, default=USER_TYPE_SYSTEM, index=True)
    role: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    primary_facility_id: Mapped[Optional[int]] = mapped_column(ForeignKey('facilities.id'), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    facility_links = relationship('UserFacility', back_populates='user', cascade='all, delete-orphan', lazy='selectin')
    overrides = relationship('UserPermissionOverride', back_populates='user', cascade='all, delete-orphan', lazy='selectin')

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, raw)

    @property
    def associated_facility_ids(self) -> FrozenSet[int]:
        # primary facility is always part of the association set
        ids: Set[int] = {link.facility_id for link in self.facility_links}
        if self.primary_facility_id is not None:
            ids.add(self.primary_facility_id)
        return frozenset(ids)

    @property
    def grants(self) -> FrozenSet[str]:
        return frozenset(o.permission for o in self.overrides if o.effect == OVERRIDE_GRANT)

    @property
    def revocations(self) -> FrozenSet[str]:
        return frozenset(o.permission for o in self.overrides if o.effect == OVERRIDE_REVOKE)


class UserFacility(Base):
    __tablename__ = 'user_facilities'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    facility_id: Mapped[int] = mapped_column(ForeignKey('facilities.id', ondelete='CASCADE'), nullable=False)
    __table_args__ = (UniqueConstraint('user_id', 'facility_id', name='uq_user_facility'),)
    user = relationship('User', back_populates='facility_links')


class UserPermissionOverride(Base):
    __tablename__ = 'user_permission_overrides'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    permission: Mapped[str] = mapped_column(String(64), nullable=False)
    effect: Mapped[str] = mapped_column(String(8), nullable=False)
    __table_args__ = (UniqueConstraint('user_id', 'permission', name='uq_user_permission_override'),)
    user = relationship('User', back_populates='overrides')
