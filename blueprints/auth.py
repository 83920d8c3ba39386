"""
Authentication Blueprint
=========================
JSON login, logout and first-run admin setup.
"""

from datetime import datetime
from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user

from database import db
from models import User

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/login', methods=['POST'])
def login():
    """Log a user in with username and password."""
    data = request.get_json() or {}
    username = data.get('username', '').strip()
    password = data.get('password', '')

    if not username or not password:
        return jsonify({'error': 'Username and password are required'}), 400

    user = User.query.filter_by(username=username).first()
    if user is None or not user.check_password(password):
        return jsonify({'error': 'Invalid username or password'}), 401
    if not user.is_active:
        return jsonify({'error': 'Account is disabled'}), 403

    login_user(user, remember=bool(data.get('remember')))
    user.last_login = datetime.utcnow()
    db.session.commit()
    return jsonify({'success': True, 'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'user': current_user.to_dict()})


@auth_bp.route('/setup', methods=['POST'])
def setup():
    """First-run admin account creation."""
    if User.query.count() > 0:
        return jsonify({'error': 'Panel is already set up'}), 409

    data = request.get_json() or {}
    username = data.get('username', '').strip()
    email = data.get('email', '').strip()
    password = data.get('password', '')

    errors = []
    if len(username) < 3:
        errors.append('Username must be at least 3 characters.')
    if '@' not in email:
        errors.append('A valid email is required.')
    if len(password) < 8:
        errors.append('Password must be at least 8 characters.')
    if errors:
        return jsonify({'error': ' '.join(errors)}), 400

    admin = User(username=username, email=email, password=password, is_admin=True)
    db.session.add(admin)
    db.session.commit()
    return jsonify({'success': True, 'user': admin.to_dict()}), 201
