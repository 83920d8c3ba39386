"""
SiteDatabase Model
===================
Tenant database credentials on the shared MySQL engine.
"""

import uuid
from datetime import datetime
from database import db


class SiteDatabase(db.Model):
    __tablename__ = 'site_databases'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    site_id = db.Column(db.String(36), db.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False, index=True)
    database_name = db.Column(db.String(64), unique=True, nullable=False)
    username = db.Column(db.String(32), unique=True, nullable=False)
    password = db.Column(db.String(128), nullable=False)
    host = db.Column(db.String(255), nullable=False, default='mysql')
    port = db.Column(db.Integer, nullable=False, default=3306)
    database_type = db.Column(db.String(20), nullable=False, default='mysql')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    site = db.relationship('Site', back_populates='databases')

    def to_dict(self, include_password=False):
        data = {
            'id': self.id,
            'site_id': self.site_id,
            'database_name': self.database_name,
            'username': self.username,
            'host': self.host,
            'port': self.port,
            'database_type': self.database_type,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
        if include_password:
            data['password'] = self.password
        return data

    def __repr__(self):
        return f'<SiteDatabase {self.database_name}>'
