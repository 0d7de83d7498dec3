from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime, ForeignKey

from staffauth.models.identity import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class AuthSession(Base):
    """Server-side session record keyed by an opaque token.

    effective identity = impersonated_user_id if set else original_user_id.
    ``version`` is the optimistic lock: concurrent transitions on the same
    session id raise StaleDataError on flush.
    """
    __tablename__ = 'auth_sessions'
    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    original_user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    impersonated_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version}

    @property
    def effective_user_id(self) -> int:
        return self.impersonated_user_id if self.impersonated_user_id is not None else self.original_user_id

    @property
    def is_impersonating(self) -> bool:
        return self.impersonated_user_id is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return ensure_utc(self.expires_at) <= (now or utcnow())

    def snapshot(self) -> dict:
        return {
            'sessionId': self.session_id,
            'originalUserId': self.original_user_id,
            'impersonatedUserId': self.impersonated_user_id,
            'createdAt': ensure_utc(self.created_at).isoformat() if self.created_at else None,
            'expiresAt': ensure_utc(self.expires_at).isoformat() if self.expires_at else None,
        }


class RestoreToken(Base):
    """Short-lived single-use token that lets a client rebuild a lost session.

    Only the sha256 of the token is stored.
    """
    __tablename__ = 'restore_tokens'
    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    original_user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    impersonated_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return self.consumed_at is None and ensure_utc(self.expires_at) > (now or utcnow())
