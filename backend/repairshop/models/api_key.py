from __future__ import annotations
from datetime import datetime
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, JSON, DateTime, ForeignKey, UniqueConstraint, func
from repairshop.models.authz import Base

class ApiKey(Base):
    """Key used by the public booking widget. Only the sha256 hash is stored."""
    __tablename__ = 'api_keys'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(String(8), nullable=False)
    permissions: Mapped[List[str]] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rate_limit_per_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    domains = relationship('AllowedDomain', cascade='all, delete-orphan', back_populates='api_key', order_by='AllowedDomain.id')

class AllowedDomain(Base):
    __tablename__ = 'allowed_domains'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    api_key_id: Mapped[int] = mapped_column(ForeignKey('api_keys.id', ondelete='CASCADE'), nullable=False, index=True)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    api_key = relationship('ApiKey', back_populates='domains')

    __table_args__ = (UniqueConstraint('api_key_id', 'domain', name='uq_api_key_domain'),)
