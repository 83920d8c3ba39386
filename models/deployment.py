"""
Deployment Model
=================
Audit record of one orchestration workflow run. Rows are never deleted;
status changes go through ``services.deployment_ledger``.
"""

import uuid
from datetime import datetime
from database import db


class Deployment(db.Model):
    __tablename__ = 'deployments'

    TYPES = ('create', 'delete', 'backup', 'clone', 'restart', 'restore')

    STATUS_PENDING = 'pending'
    STATUS_RUNNING = 'running'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    TERMINAL = (STATUS_COMPLETED, STATUS_FAILED)

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    site_id = db.Column(db.String(36), db.ForeignKey('sites.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    initiated_by = db.Column(db.String(80), nullable=False, default='system')
    deployment_type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, index=True)
    message = db.Column(db.Text, nullable=True)
    log_output = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    site = db.relationship('Site', back_populates='deployments')

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL

    def to_dict(self):
        return {
            'id': self.id,
            'site_id': self.site_id,
            'user_id': self.user_id,
            'initiated_by': self.initiated_by,
            'deployment_type': self.deployment_type,
            'status': self.status,
            'message': self.message,
            'log_output': self.log_output,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<Deployment {self.deployment_type} {self.status}>'
