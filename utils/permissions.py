# utils/permissions.py
"""
Permission and access control utilities
"""

from functools import wraps

from flask import request
from flask_login import current_user

from models import User
from utils.errors import UnauthorizedError

API_KEY_HEADER = 'X-API-Key'


def load_user_from_request(req):
    """Flask-Login request loader: resolve the caller from the API key header"""
    api_key = req.headers.get(API_KEY_HEADER)
    if not api_key:
        return None
    user = User.query.filter_by(api_key=api_key).first()
    if user is None or not user.is_active:
        return None
    return user


def login_required(f):
    """Decorator to require an authenticated caller"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            raise UnauthorizedError('Authentication required')
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require SUPER_ADMIN or ADMIN"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.is_admin:
            raise UnauthorizedError()
        return f(*args, **kwargs)
    return decorated_function


def request_actor():
    """(ip_address, user_agent) of the current request; ProxyFix sets remote_addr"""
    return request.remote_addr, request.headers.get('User-Agent')
