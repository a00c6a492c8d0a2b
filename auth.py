"""
Session login for the prospecting API. Passwords are hashed with
werkzeug.security; the logged-in user id lives in Flask's signed session.
"""
from functools import wraps

from flask import jsonify, session
from werkzeug.security import check_password_hash, generate_password_hash

import store

MIN_PASSWORD_LENGTH = 6


class AuthError(Exception):
    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.status_code = status_code


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not session.get('user_id'):
            return jsonify({'error': 'Unauthorized'}), 401
        return f(*args, **kwargs)
    return decorated


def current_user_id():
    return session.get('user_id')


def _clean_credentials(username, password):
    username = (username or '').strip().lower()
    if not username or not password:
        raise AuthError('Username and password are required')
    return username, password


def signup(username, password):
    username, password = _clean_credentials(username, password)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AuthError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    if store.get_user_by_username(username):
        raise AuthError('Username already taken')
    user_id = store.create_user(username, generate_password_hash(password))
    print(f"[Auth] Created user {username} (id {user_id})")
    return {'id': user_id, 'username': username}


def authenticate(username, password):
    username, password = _clean_credentials(username, password)
    user = store.get_user_by_username(username)
    if not user or not check_password_hash(user['password_hash'], password):
        raise AuthError('Invalid username or password', 401)
    return {'id': user['id'], 'username': user['username']}


def log_in(user):
    session.clear()
    session['user_id'] = user['id']
    session['username'] = user['username']


def log_out():
    session.clear()
