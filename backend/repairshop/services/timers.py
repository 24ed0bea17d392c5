"""Per-ticket work timers.

A running timer lives on the ticket row (`timer_started_at`, `timer_user_id`) so it
survives restarts. Each user runs at most one timer; stopping writes a TimeEntry
rounded up to whole minutes.
"""
from __future__ import annotations
import logging
from typing import List, Optional

from flask import abort
from sqlalchemy import select, func

from repairshop import get_db
from repairshop.errors import Conflict
from repairshop.models.repair_ticket import RepairTicket
from repairshop.models.time_entry import TimeEntry
from repairshop.services.audit import add_activity
from repairshop.utils.fsm import TICKET_FSM
from repairshop.utils.timeutil import utcnow, minutes_between

logger = logging.getLogger(__name__)


def active_timer_for_user(user_id: int) -> Optional[RepairTicket]:
    return get_db().execute(
        select(RepairTicket).where(RepairTicket.timer_user_id == user_id, RepairTicket.timer_started_at.is_not(None))
    ).scalars().first()


def start_timer(t: RepairTicket, user_id: int) -> RepairTicket:
    session = get_db()
    if t.status not in RepairTicket.TIMER_STATUSES:
        abort(400, description=f'Cannot start a timer on a {t.status} ticket')
    if t.timer_started_at is not None:
        raise Conflict(f'Timer already running on {t.ticket_number}')
    running = active_timer_for_user(user_id)
    if running is not None:
        raise Conflict(f'You already have a timer running on {running.ticket_number}')
    now = utcnow()
    t.timer_started_at = now
    t.timer_user_id = user_id
    if t.status == RepairTicket.STATUS_NEW:
        TICKET_FSM.assert_can_transition(t.status, RepairTicket.STATUS_IN_PROGRESS)
        t.status = RepairTicket.STATUS_IN_PROGRESS
        add_activity('ticket_status_update', 'ticket', t.id,
                     {'before': RepairTicket.STATUS_NEW, 'after': RepairTicket.STATUS_IN_PROGRESS, 'reason': 'timer_started'},
                     user_id=user_id)
    add_activity('timer_start', 'ticket', t.id, {'started_at': now.isoformat()}, user_id=user_id)
    session.commit()
    return t


def _close_timer(t: RepairTicket, notes: Optional[str] = None, end=None) -> TimeEntry:
    session = get_db()
    end = end or utcnow()
    entry = TimeEntry(
        ticket_id=t.id,
        user_id=t.timer_user_id,
        start_time=t.timer_started_at,
        end_time=end,
        duration_minutes=minutes_between(t.timer_started_at, end),
        description=notes,
    )
    session.add(entry)
    session.flush()
    t.timer_started_at = None
    t.timer_user_id = None
    t.total_time_minutes = session.execute(
        select(func.coalesce(func.sum(TimeEntry.duration_minutes), 0)).where(TimeEntry.ticket_id == t.id)
    ).scalar_one()
    return entry


def stop_timer(t: RepairTicket, user_id: int, notes: Optional[str] = None, force: bool = False) -> TimeEntry:
    if t.timer_started_at is None:
        abort(400, description='No timer running on this ticket')
    if t.timer_user_id != user_id and not force:
        abort(403, description='Timer belongs to another user')
    entry = _close_timer(t, notes)
    add_activity('timer_stop', 'ticket', t.id, {'duration_minutes': entry.duration_minutes}, user_id=user_id)
    get_db().commit()
    return entry


def running_timers() -> List[RepairTicket]:
    return get_db().execute(
        select(RepairTicket).where(RepairTicket.timer_started_at.is_not(None)).order_by(RepairTicket.timer_started_at.asc())
    ).scalars().all()


def clear_all_timers(admin_user_id: Optional[int] = None) -> List[TimeEntry]:
    """Force-stop every running timer, recording a TimeEntry for each."""
    entries = []
    for t in running_timers():
        entries.append(_close_timer(t, 'Force-stopped by administrator'))
    if entries:
        add_activity('timers_cleared', 'ticket', None, {'count': len(entries)}, user_id=admin_user_id)
    get_db().commit()
    logger.info('Cleared %d active timers', len(entries))
    return entries


__all__ = ['start_timer', 'stop_timer', 'running_timers', 'clear_all_timers', 'active_timer_for_user']
