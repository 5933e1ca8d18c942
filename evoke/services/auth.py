import time
from functools import wraps

import jwt
from flask import current_app, request, jsonify, g

SCANNER_ROLES = ('admin', 'organizer', 'staff')


# Scanner JWT (HS256)
def sign_scanner_jwt(sub: str, role: str = 'staff', event_id: str | None = None, ttl_min: int | None = None) -> str:
    if role not in SCANNER_ROLES:
        raise ValueError(f'role not allowed to scan: {role}')
    ttl_min = ttl_min or current_app.config['JWT_EXPIRES_MIN']
    payload = {
        'sub': sub,
        'role': role,
        'exp': int(time.time()) + ttl_min * 60,
    }
    if event_id:
        payload['event_id'] = event_id
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm=current_app.config['JWT_ALG'])


def decode_scanner_jwt(token: str) -> dict:
    return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=[current_app.config['JWT_ALG']])


def require_scanner(view):
    """Reject the request unless it carries a valid scanner Bearer token."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        auth = request.headers.get('Authorization', '')
        if not auth.startswith('Bearer '):
            return jsonify({'error': 'missing_token'}), 401
        token = auth.split(' ', 1)[1]
        try:
            claims = decode_scanner_jwt(token)
        except jwt.ExpiredSignatureError:
            return jsonify({'error': 'expired'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'error': 'invalid'}), 401
        if claims.get('role') not in SCANNER_ROLES:
            return jsonify({'error': 'forbidden'}), 403
        g.scanner = claims
        return view(*args, **kwargs)
    return wrapper


def require_admin_key(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        api_key = request.headers.get('X-Admin-Key') or request.args.get('key')
        if not api_key or api_key != (current_app.config.get('ADMIN_API_KEY') or ''):
            return jsonify({'error': 'unauthorized'}), 401
        return view(*args, **kwargs)
    return wrapper
