from __future__ import annotations
from datetime import datetime
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, JSON, DateTime, ForeignKey, func
from repairshop.models.authz import Base

class RepairTicket(Base):
    __tablename__ = 'repair_tickets'
    # Status constants
    STATUS_NEW = 'new'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_ON_HOLD = 'on_hold'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    ALL_STATUSES = (STATUS_NEW, STATUS_IN_PROGRESS, STATUS_ON_HOLD, STATUS_COMPLETED, STATUS_CANCELLED)
    # Statuses on which a technician may run a timer
    TIMER_STATUSES = (STATUS_NEW, STATUS_IN_PROGRESS, STATUS_ON_HOLD)
    CLOSED_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)
    PRIORITIES = ('low', 'medium', 'high', 'urgent')

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_number: Mapped[Optional[str]] = mapped_column(String(16), unique=True, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'), nullable=False, index=True)
    device_id: Mapped[Optional[int]] = mapped_column(ForeignKey('devices.id'), nullable=True)
    device_brand: Mapped[Optional[str]] = mapped_column(String(64))
    device_model: Mapped[Optional[str]] = mapped_column(String(128))
    serial_number: Mapped[Optional[str]] = mapped_column(String(64))
    imei: Mapped[Optional[str]] = mapped_column(String(32))
    repair_issues: Mapped[List[str]] = mapped_column(JSON, default=list)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_NEW, index=True)
    priority: Mapped[str] = mapped_column(String(8), nullable=False, default='medium')
    estimated_cost_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actual_cost_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True, index=True)
    appointment_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timer_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    timer_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    total_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    services = relationship('TicketService', cascade='all, delete-orphan', order_by='TicketService.id')
    notes = relationship('TicketNote', cascade='all, delete-orphan', order_by='TicketNote.id')

class TicketService(Base):
    __tablename__ = 'ticket_services'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('repair_tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey('services.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class TicketNote(Base):
    __tablename__ = 'ticket_notes'
    TYPES = ('internal', 'customer')
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('repair_tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    note_type: Mapped[str] = mapped_column(String(16), nullable=False, default='internal')
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# Status flow: new -> in_progress <-> on_hold -> completed
# cancelled from any open state; completed / cancelled may be reopened to in_progress.
