from functools import wraps
from flask import abort, request, g
from flask_jwt_extended import verify_jwt_in_request
from repairshop.services.policy import has_permissions


def require_permissions(*codes: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if not has_permissions(*codes):
                abort(403, description='Missing permission')
            return fn(*args, **kwargs)
        return wrapper
    return outer


def require_api_key(permission: str = None):
    """Public widget auth: X-API-Key header checked against stored hashes and the Origin allow-list.

    The verified key id is left on `g.api_key_id` for request logging.
    """
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            from repairshop.services.api_keys import verify_api_key
            raw = request.headers.get('X-API-Key')
            if not raw:
                abort(401, description='API key required')
            result = verify_api_key(raw, request.headers.get('Origin'))
            if not result.valid:
                abort(401 if result.error in ('Invalid API key', 'API key has expired') else 403,
                      description=result.error)
            g.api_key_id = result.api_key_id
            if permission and permission not in result.permissions:
                abort(403, description=f'API key lacks permission {permission}')
            return fn(*args, **kwargs)
        return wrapper
    return outer
