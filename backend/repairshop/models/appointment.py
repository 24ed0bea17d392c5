from __future__ import annotations
from datetime import date, time, datetime
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, JSON, Date, Time, DateTime, ForeignKey, func
from repairshop.models.authz import Base

class Appointment(Base):
    __tablename__ = 'appointments'
    # Status constants
    STATUS_SCHEDULED = 'scheduled'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_ARRIVED = 'arrived'
    STATUS_NO_SHOW = 'no_show'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CONVERTED = 'converted'
    ALL_STATUSES = (STATUS_SCHEDULED, STATUS_CONFIRMED, STATUS_ARRIVED, STATUS_NO_SHOW, STATUS_CANCELLED, STATUS_CONVERTED)
    # Statuses that no longer occupy a slot
    INACTIVE_STATUSES = (STATUS_CANCELLED, STATUS_NO_SHOW)
    URGENCIES = ('walk-in', 'scheduled', 'emergency')
    SOURCES = ('website', 'phone', 'walk-in', 'email')

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    appointment_number: Mapped[Optional[str]] = mapped_column(String(16), unique=True, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'), nullable=False, index=True)
    device_id: Mapped[Optional[int]] = mapped_column(ForeignKey('devices.id'), nullable=True)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    scheduled_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_SCHEDULED, index=True)
    issues: Mapped[List[str]] = mapped_column(JSON, default=list)
    service_ids: Mapped[List[int]] = mapped_column(JSON, default=list)
    description: Mapped[Optional[str]] = mapped_column(Text)
    urgency: Mapped[str] = mapped_column(String(16), nullable=False, default='scheduled')
    source: Mapped[str] = mapped_column(String(16), nullable=False, default='phone')
    notes: Mapped[Optional[str]] = mapped_column(Text)
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    estimated_cost_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    confirmation_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    converted_to_ticket_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# Status flow: scheduled -> confirmed -> arrived -> converted
# no_show / cancelled are absorbing alternatives; see repairshop.utils.fsm.APPOINTMENT_FSM.
