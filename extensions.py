"""
SitePanel Extensions
=====================
Flask extension instances shared by the app factory, blueprints and services.
"""

from flask_login import LoginManager
from flask_socketio import SocketIO

# Initialize SocketIO
socketio = SocketIO(
    cors_allowed_origins="*",
    ping_timeout=60,
    ping_interval=25
)

# Initialize Login Manager
login_manager = LoginManager()
login_manager.login_view = 'auth.login'
