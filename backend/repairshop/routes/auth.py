from flask import Blueprint, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from sqlalchemy import select
from repairshop.models.authz import User
from repairshop import get_db
from repairshop.services.policy import compute_effective_permissions
from repairshop.decorators.audit import with_audit
from repairshop.decorators.rate_limit import rate_limit
from repairshop.utils.validation import json_body

auth_bp = Blueprint('auth', __name__)


@auth_bp.post('/login')
@with_audit('auth', extract_entity_id=lambda req, body: (body or {}).get('user_id'), entity_type='user')
@rate_limit('auth')
def login():
    data = json_body()
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email==email.strip().lower())).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        abort(401, description='invalid credentials')
    eff = compute_effective_permissions(user.id)
    claims = {
        'roles': eff['roles'],
        'perms': eff['perms'],
        'role': user.role,
    }
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=claims)
    return {'access_token': token, 'user_id': user.id}


@auth_bp.get('/me')
@jwt_required()
def me():
    # Identity stored as string, cast back to int for DB lookup
    user_id = int(get_jwt_identity())
    session = get_db()
    user = session.execute(select(User).where(User.id==user_id)).scalar_one_or_none()
    if not user:
        abort(404)
    eff = compute_effective_permissions(user.id)
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'is_active': user.is_active,
        'roles': eff['roles'],
        'perms': eff['perms'],
    }
