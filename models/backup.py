"""
SiteBackup Model
=================
Archive of a site's files and database dumps.
"""

import uuid
from datetime import datetime
from database import db


class SiteBackup(db.Model):
    __tablename__ = 'site_backups'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    site_id = db.Column(db.String(36), db.ForeignKey('sites.id'), nullable=False, index=True)
    file_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(500), nullable=False)
    file_size = db.Column(db.BigInteger, nullable=False, default=0)
    backup_type = db.Column(db.String(20), nullable=False, default='manual')  # manual, automatic
    description = db.Column(db.String(500), nullable=True)
    includes_files = db.Column(db.Boolean, default=True)
    includes_database = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=True, index=True)

    site = db.relationship('Site', back_populates='backups')

    def is_expired(self, now=None):
        now = now or datetime.utcnow()
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self):
        return {
            'id': self.id,
            'site_id': self.site_id,
            'file_name': self.file_name,
            'file_size': self.file_size,
            'backup_type': self.backup_type,
            'description': self.description,
            'includes_files': self.includes_files,
            'includes_database': self.includes_database,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None
        }

    def __repr__(self):
        return f'<SiteBackup {self.file_name}>'
