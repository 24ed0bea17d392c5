"""Environment-driven application settings.

Values are read once per `create_app()` call (after `load_dotenv()` has run in the
package init) and merged into `app.config`. Explicit `create_app(config)` overrides
win over anything read here.
"""
from __future__ import annotations
import os
from typing import Any, Dict


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def load_settings() -> Dict[str, Any]:
    return {
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///dev.db'),
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO').upper(),
        'RATE_LIMIT_ENABLED': _flag('RATE_LIMIT_ENABLED', True),
        # Outbound email (SendGrid v3 API)
        'EMAIL_ENABLED': _flag('EMAIL_ENABLED', False),
        'SENDGRID_API_KEY': os.getenv('SENDGRID_API_KEY'),
        'SENDGRID_FROM_EMAIL': os.getenv('SENDGRID_FROM_EMAIL', 'noreply@phoneguysrepair.com'),
        'SENDGRID_FROM_NAME': os.getenv('SENDGRID_FROM_NAME', 'The Phone Guys'),
        'SENDGRID_TIMEOUT': float(os.getenv('SENDGRID_TIMEOUT', '20')),
        # Device catalog provider
        'TECHSPECS_API_ID': os.getenv('TECHSPECS_API_ID'),
        'TECHSPECS_API_KEY': os.getenv('TECHSPECS_API_KEY'),
        'TECHSPECS_BASE_URL': os.getenv('TECHSPECS_BASE_URL', 'https://api.techspecs.io'),
        'TECHSPECS_TIMEOUT': float(os.getenv('TECHSPECS_TIMEOUT', '15')),
        # Branding used by email templates
        'BUSINESS_NAME': os.getenv('BUSINESS_NAME', 'The Phone Guys'),
        'PUBLIC_BASE_URL': os.getenv('PUBLIC_BASE_URL', 'http://localhost:3000'),
    }


__all__ = ['load_settings']
