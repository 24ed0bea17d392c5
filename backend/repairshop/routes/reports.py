from __future__ import annotations
from datetime import datetime, time, timedelta
from flask import Blueprint, request, abort
from sqlalchemy import func, select, and_
from repairshop.decorators.auth import require_permissions
from repairshop.utils.listing import make_cached_list_response, handle_conditional
from repairshop.utils.timeutil import parse_date_arg
from repairshop.config.pagination import normalize_pagination
from repairshop import get_db
from repairshop.models.appointment import Appointment
from repairshop.models.authz import User
from repairshop.models.repair_ticket import RepairTicket
from repairshop.models.time_entry import TimeEntry

rpt_bp = Blueprint('reports', __name__)


def _date_range():
    start = parse_date_arg(request.args.get('start_date'), 'start_date')
    end = parse_date_arg(request.args.get('end_date'), 'end_date')
    if start and end and start > end:
        abort(400, description='start_date cannot be after end_date')
    start_dt = datetime.combine(start, time.min) if start else None
    # end_date is inclusive
    end_dt = datetime.combine(end + timedelta(days=1), time.min) if end else None
    return start_dt, end_dt


def _paged(rows, latest_ts):
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    resp, etag = make_cached_list_response(rows[offset:offset + limit], len(rows), limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    out = cond or resp
    if request.method == 'HEAD':
        out.set_data(b'')
    return out


def _gather_metrics(include_financial: bool = False, start_dt=None, end_dt=None):
    session = get_db()
    metrics = []

    def status_counts(model, domain_name, sum_fields=()):
        filters = []
        if start_dt:
            filters.append(model.created_at >= start_dt)
        if end_dt:
            filters.append(model.created_at < end_dt)
        cols = [model.status, func.count(model.id)]
        if include_financial:
            cols += [func.coalesce(func.sum(f), 0) for _, f in sum_fields]
        q = session.query(*cols)
        if filters:
            q = q.filter(and_(*filters))
        for row in q.group_by(model.status).all():
            entry = {'domain': domain_name, 'status': row[0], 'count': int(row[1])}
            if include_financial:
                for i, (label, _) in enumerate(sum_fields):
                    entry[label] = int(row[2 + i])
            metrics.append(entry)

    status_counts(Appointment, 'Appointment', [('estimated_cost_cents', Appointment.estimated_cost_cents)])
    status_counts(RepairTicket, 'RepairTicket', [
        ('estimated_cost_cents', RepairTicket.estimated_cost_cents),
        ('actual_cost_cents', RepairTicket.actual_cost_cents),
    ])
    metrics.sort(key=lambda m: (m['domain'], m['status']))
    latest = [session.execute(select(func.max(m.updated_at))).scalar_one_or_none() for m in (Appointment, RepairTicket)]
    latest = [ts for ts in latest if ts is not None]
    return metrics, (max(latest) if latest else None)


@rpt_bp.route('/metrics', methods=['GET', 'HEAD'])
@require_permissions('RPT.READ')
def list_metrics():
    include_financial = request.args.get('include_financial') == 'true'
    start_dt, end_dt = _date_range()
    metrics, latest_ts = _gather_metrics(include_financial, start_dt, end_dt)
    return _paged(metrics, latest_ts)


@rpt_bp.route('/technicians', methods=['GET', 'HEAD'])
@require_permissions('RPT.READ')
def technician_report():
    """Per technician: completed tickets, open assignments and minutes logged."""
    session = get_db()
    start_dt, end_dt = _date_range()

    completed_q = select(RepairTicket.assigned_to, func.count(RepairTicket.id)).where(
        RepairTicket.status == RepairTicket.STATUS_COMPLETED, RepairTicket.assigned_to.is_not(None))
    open_q = select(RepairTicket.assigned_to, func.count(RepairTicket.id)).where(
        RepairTicket.status.not_in(RepairTicket.CLOSED_STATUSES), RepairTicket.assigned_to.is_not(None))
    minutes_q = select(TimeEntry.user_id, func.coalesce(func.sum(TimeEntry.duration_minutes), 0)).where(
        TimeEntry.user_id.is_not(None))
    if start_dt:
        completed_q = completed_q.where(RepairTicket.completed_at >= start_dt)
        minutes_q = minutes_q.where(TimeEntry.start_time >= start_dt)
    if end_dt:
        completed_q = completed_q.where(RepairTicket.completed_at < end_dt)
        minutes_q = minutes_q.where(TimeEntry.start_time < end_dt)
    completed = dict(session.execute(completed_q.group_by(RepairTicket.assigned_to)).all())
    open_counts = dict(session.execute(open_q.group_by(RepairTicket.assigned_to)).all())
    minutes = dict(session.execute(minutes_q.group_by(TimeEntry.user_id)).all())

    rows = []
    for user in session.execute(select(User).order_by(User.name.asc(), User.id.asc())).scalars():
        if user.id not in completed and user.id not in open_counts and user.id not in minutes \
                and user.role != User.ROLE_TECHNICIAN:
            continue
        rows.append({
            'user_id': user.id,
            'name': user.name,
            'role': user.role,
            'completed_tickets': int(completed.get(user.id, 0)),
            'open_tickets': int(open_counts.get(user.id, 0)),
            'total_minutes': int(minutes.get(user.id, 0)),
        })
    latest = session.execute(select(func.max(RepairTicket.updated_at))).scalar_one_or_none()
    return _paged(rows, latest)
