"""
Template Model
===============
Starter content deployed into a new site's directory.
"""

import uuid
from datetime import datetime
from database import db


class Template(db.Model):
    """A named template for a platform, stored under TEMPLATES_ROOT."""

    __tablename__ = 'templates'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(100), nullable=False)
    platform = db.Column(db.String(50), nullable=False, index=True)
    description = db.Column(db.String(500), nullable=True)
    # Relative to TEMPLATES_ROOT
    path = db.Column(db.String(500), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('platform', 'name', name='uq_templates_platform_name'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'platform': self.platform,
            'description': self.description,
            'is_active': self.is_active
        }

    def __repr__(self):
        return f'<Template {self.platform}/{self.name}>'
