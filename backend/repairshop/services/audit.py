from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from repairshop import get_db
from repairshop.models.audit import UserActivityLog, ApiRequestLog

logger = logging.getLogger(__name__)


def _current_actor() -> Optional[int]:
    try:
        verify_jwt_in_request(optional=True)
        ident = get_jwt_identity()
    except Exception:
        # no request / invalid token: treat as anonymous system actor
        return None
    return int(ident) if ident is not None else None


def add_activity(activity_type: str, entity_type: Optional[str] = None, entity_id: Optional[Any] = None,
                 details: Optional[Dict[str, Any]] = None, user_id: Optional[int] = None, system: bool = False):
    """Persist a UserActivityLog row within the current DB session.

    Parameters:
      activity_type: short code e.g. appointment_confirmed, ticket_status_update
      entity_type: optional entity name (appointment, ticket, api_key ...)
      entity_id: optional primary key (stored as string)
      details: JSON-safe dict (shallow copied)
      user_id: explicit actor; defaults to the JWT identity when a request carries one
      system: record a system event (user_id stays NULL, the JWT identity is ignored)
    """
    session = get_db()
    log = UserActivityLog(
        user_id=None if system else (user_id if user_id is not None else _current_actor()),
        activity_type=activity_type,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=dict(details or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log


def add_request_log(**fields):
    log = ApiRequestLog(**fields)
    get_db().add(log)
    return log


def commit_audit_safely():
    """Commit pending audit rows; failures are logged and rolled back, never raised."""
    session = get_db()
    try:
        session.commit()
    except Exception:
        logger.exception('audit write failed')
        session.rollback()
