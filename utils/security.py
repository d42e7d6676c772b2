"""
Admin gate for ExamStar
Only the single configured administrator (Firebase Auth email) may call mutating endpoints
"""
from functools import wraps

from firebase_admin.exceptions import FirebaseError
from flask import abort, current_app, g, request

import firebase_config
from .logger import logger


def get_bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def is_authorized_admin(claims) -> bool:
    admin_email = (current_app.config.get('ADMIN_EMAIL') or '').strip().lower()
    email = (claims.get('email') or '').strip().lower()
    return bool(admin_email) and email == admin_email


def require_admin(f):
    """Verify the Bearer ID token and require the configured admin email"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        token = get_bearer_token()
        if token is None:
            abort(401)
        try:
            claims = firebase_config.verify_id_token(token)
        except (ValueError, FirebaseError) as e:
            logger.security_event("invalid_id_token", ip_address=request.remote_addr, error=str(e))
            abort(401)
        if not is_authorized_admin(claims):
            logger.security_event("admin_access_denied", user_id=claims.get('uid'),
                                  ip_address=request.remote_addr, email=claims.get('email'))
            abort(403)
        g.admin = claims
        return f(*args, **kwargs)
    return wrapper
