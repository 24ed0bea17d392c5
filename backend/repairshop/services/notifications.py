"""Customer email notifications.

Templates live in `repairshop/templates/email/<name>.html|.txt` and are rendered with
Flask's Jinja environment. Delivery uses the SendGrid v3 HTTP API. Every attempt is
recorded in EmailLog; failures are logged and never propagate to the caller.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from jinja2 import TemplateError
from flask import current_app, render_template

from repairshop import get_db
from repairshop.models.email_log import EmailLog

logger = logging.getLogger(__name__)

SENDGRID_URL = 'https://api.sendgrid.com/v3/mail/send'
TICKET_NOTIFY_STATUSES = ('in_progress', 'on_hold', 'completed', 'cancelled')

TICKET_STATUS_SUBJECTS = {
    'in_progress': 'Your repair is in progress',
    'on_hold': 'Your repair is on hold',
    'completed': 'Your device is ready for pickup',
    'cancelled': 'Your repair has been cancelled',
}


class MailConfigError(Exception):
    pass


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


def _subject(template: str, ctx: Dict[str, Any]) -> str:
    if template == 'appointment_confirmation':
        if ctx.get('is_initial_request'):
            return f"Appointment request received - {ctx['appointment_number']}"
        return f"Appointment confirmed - {ctx['appointment_number']}"
    if template == 'appointment_cancelled':
        return f"Appointment cancelled - {ctx['appointment_number']}"
    if template == 'ticket_status_update':
        return f"{TICKET_STATUS_SUBJECTS[ctx['status']]} - {ctx['ticket_number']}"
    raise ValueError(f'unknown email template {template}')


def render_email(template: str, **ctx) -> RenderedEmail:
    ctx.setdefault('business_name', current_app.config['BUSINESS_NAME'])
    ctx.setdefault('base_url', current_app.config['PUBLIC_BASE_URL'].rstrip('/'))
    return RenderedEmail(
        subject=_subject(template, ctx),
        html=render_template(f'email/{template}.html', **ctx),
        text=render_template(f'email/{template}.txt', **ctx),
    )


def send_via_sendgrid(to_email: str, email: RenderedEmail) -> Optional[str]:
    """POST to SendGrid; returns the provider message id (may be None)."""
    cfg = current_app.config
    api_key = cfg.get('SENDGRID_API_KEY')
    if not api_key:
        raise MailConfigError('SENDGRID_API_KEY is not set')
    data = {
        'personalizations': [{'to': [{'email': to_email}], 'subject': email.subject}],
        'from': {'email': cfg['SENDGRID_FROM_EMAIL'], 'name': cfg['SENDGRID_FROM_NAME']},
        'content': [
            {'type': 'text/plain', 'value': email.text},
            {'type': 'text/html', 'value': email.html},
        ],
    }
    resp = requests.post(
        SENDGRID_URL,
        headers={
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json',
        },
        data=json.dumps(data),
        timeout=cfg['SENDGRID_TIMEOUT'],
    )
    if resp.status_code >= 400:
        raise MailConfigError(f'SendGrid error {resp.status_code}: {resp.text[:300]}')
    return resp.headers.get('X-Message-Id') or resp.headers.get('X-Message-ID')


def send_templated(to_email: Optional[str], template: str, entity_type: Optional[str] = None,
                   entity_id: Optional[Any] = None, **ctx) -> Optional[EmailLog]:
    """Render, send and log one email. Commits its own EmailLog row."""
    if not to_email:
        return None
    session = get_db()
    log = EmailLog(recipient=to_email, subject='', template=template,
                   entity_type=entity_type, entity_id=str(entity_id) if entity_id is not None else None)
    try:
        email = render_email(template, **ctx)
        log.subject = email.subject[:255]
        if not current_app.config.get('EMAIL_ENABLED'):
            log.status = EmailLog.STATUS_SKIPPED
        else:
            log.provider_message_id = send_via_sendgrid(to_email, email)
            log.status = EmailLog.STATUS_SENT
    except (MailConfigError, requests.RequestException, TemplateError) as e:
        logger.exception('Email %s to %s failed', template, to_email)
        log.status = EmailLog.STATUS_FAILED
        log.error_message = str(e)[:1000]
    session.add(log)
    try:
        session.commit()
    except Exception:
        logger.exception('Could not record email log for %s', template)
        session.rollback()
    return log


# ---- Domain entry points ---- #

def _appointment_ctx(appt, customer, device=None) -> Dict[str, Any]:
    return {
        'customer_name': customer.name,
        'appointment_number': appt.appointment_number,
        'scheduled_date': appt.scheduled_date.strftime('%A, %B %d, %Y'),
        'scheduled_time': appt.scheduled_time.strftime('%I:%M %p').lstrip('0'),
        'device_name': device.name if device else None,
        'issues': appt.issues or [],
        'description': appt.description,
    }


def notify_appointment_confirmation(appt, customer, device=None, is_initial_request: bool = False):
    return send_templated(customer.email, 'appointment_confirmation', 'appointment', appt.id,
                          is_initial_request=is_initial_request, **_appointment_ctx(appt, customer, device))


def notify_appointment_cancelled(appt, customer, device=None):
    return send_templated(customer.email, 'appointment_cancelled', 'appointment', appt.id,
                          reason=appt.cancellation_reason, **_appointment_ctx(appt, customer, device))


def notify_ticket_status(ticket, customer, reason: Optional[str] = None):
    if ticket.status not in TICKET_NOTIFY_STATUSES:
        return None
    return send_templated(
        customer.email, 'ticket_status_update', 'ticket', ticket.id,
        customer_name=customer.name,
        ticket_number=ticket.ticket_number,
        status=ticket.status,
        device_name=' '.join(p for p in (ticket.device_brand, ticket.device_model) if p) or 'Your device',
        total_cost=(ticket.actual_cost_cents or ticket.estimated_cost_cents),
        reason=reason,
    )


__all__ = [
    'render_email', 'send_templated', 'send_via_sendgrid', 'notify_appointment_confirmation',
    'notify_appointment_cancelled', 'notify_ticket_status', 'TICKET_NOTIFY_STATUSES', 'MailConfigError',
]
