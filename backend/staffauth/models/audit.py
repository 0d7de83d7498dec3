from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Boolean, JSON, DateTime, BigInteger, event, func

from .identity import Base  # reuse same metadata


class AuditLog(Base):
    __tablename__ = 'audit_logs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    seq: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, 'sqlite'), nullable=False, unique=True, index=True)
    actor_effective_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    original_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    is_impersonated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    impersonation_context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    resource_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)


class AuditLogImmutable(Exception):
    pass


@event.listens_for(AuditLog, 'before_update')
def _block_update(mapper, connection, target):
    raise AuditLogImmutable(f'audit log entry {target.id} is append-only')


@event.listens_for(AuditLog, 'before_delete')
def _block_delete(mapper, connection, target):
    raise AuditLogImmutable(f'audit log entry {target.id} is append-only')
