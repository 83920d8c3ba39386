"""
SitePanel Database Module
==========================
SQLAlchemy database initialization and session management.
"""

import logging
import os
import sqlite3

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Initialize SQLAlchemy
db = SQLAlchemy()


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key support for SQLite."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(app):
    """
    Initialize the database with the Flask application.
    
    Args:
        app: Flask application instance
    """
    # Ensure data directory exists
    db_path = app.config.get('DATABASE_PATH')
    if db_path:
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
    
    db.init_app(app)
    
    with app.app_context():
        # Import models to register them
        import models  # noqa: F401
        db.create_all()
        
        logger.info(f"Database initialized at {app.config['SQLALCHEMY_DATABASE_URI']}")
