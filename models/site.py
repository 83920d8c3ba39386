"""
Site Model
===========
A hosted site: one platform install, one container, one primary domain.

Status is driven by the site orchestrator through ``transition_to``:

    creating -> active | error
    active  <-> suspended
    active | error | suspended -> deleting -> deleted
    error -> creating        (retry of the create workflow)

Nothing leaves ``deleted``; the row is kept for audit.
"""

import uuid
from datetime import datetime
from database import db
from errors import InvalidTransitionError


class Site(db.Model):
    """Site model with its lifecycle state machine."""

    __tablename__ = 'sites'

    STATUS_CREATING = 'creating'
    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    STATUS_ERROR = 'error'
    STATUS_DELETING = 'deleting'
    STATUS_DELETED = 'deleted'

    TRANSITIONS = {
        STATUS_CREATING: {STATUS_ACTIVE, STATUS_ERROR},
        STATUS_ACTIVE: {STATUS_SUSPENDED, STATUS_DELETING},
        STATUS_SUSPENDED: {STATUS_ACTIVE, STATUS_DELETING},
        STATUS_ERROR: {STATUS_CREATING, STATUS_DELETING},
        STATUS_DELETING: {STATUS_DELETED},
        STATUS_DELETED: set(),
    }

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    # Primary domain name; uniqueness is enforced on Domain rows
    domain = db.Column(db.String(255), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    platform = db.Column(db.String(50), nullable=False)
    template = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=STATUS_CREATING, index=True)

    # Storage
    storage_limit_gb = db.Column(db.Integer, nullable=False, default=10)
    storage_used_mb = db.Column(db.Integer, nullable=False, default=0)
    site_directory = db.Column(db.String(500), nullable=True)

    # Container
    container_id = db.Column(db.String(100), nullable=True)
    container_name = db.Column(db.String(100), nullable=True)
    host_port = db.Column(db.Integer, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_backup_at = db.Column(db.DateTime, nullable=True)

    owner = db.relationship('User', back_populates='sites')
    domains = db.relationship(
        'Domain', back_populates='site', cascade='all, delete-orphan',
        order_by='Domain.created_at'
    )
    databases = db.relationship('SiteDatabase', back_populates='site', cascade='all, delete-orphan')
    deployments = db.relationship(
        'Deployment', back_populates='site', lazy='dynamic',
        order_by='Deployment.created_at.desc()'
    )
    backups = db.relationship(
        'SiteBackup', back_populates='site', lazy='dynamic',
        order_by='SiteBackup.created_at.desc()'
    )

    def __init__(self, name, domain, user_id, platform, template=None,
                 description=None, storage_limit_gb=10):
        self.name = name
        self.domain = domain.lower().strip()
        self.user_id = user_id
        self.platform = platform
        self.template = template
        self.description = description
        self.storage_limit_gb = storage_limit_gb
        self.storage_used_mb = 0
        self.status = self.STATUS_CREATING

    @property
    def hex_id(self):
        """Site id without dashes, used for derived resource names."""
        return self.id.replace('-', '')

    @property
    def primary_domain(self):
        for domain in self.domains:
            if domain.is_primary:
                return domain
        return None

    @property
    def is_deleted(self):
        return self.status == self.STATUS_DELETED

    def can_transition(self, status):
        return status in self.TRANSITIONS.get(self.status, set())

    def transition_to(self, status):
        """
        Move to a new status, enforcing the lifecycle state machine.

        Raises:
            InvalidTransitionError: if the move is not allowed
        """
        if not self.can_transition(status):
            raise InvalidTransitionError('Site', self.status, status)
        self.status = status

    def clear_container(self):
        self.container_id = None
        self.container_name = None
        self.host_port = None

    def to_dict(self, include_relations=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'domain': self.domain,
            'user_id': self.user_id,
            'platform': self.platform,
            'template': self.template,
            'status': self.status,
            'storage_limit_gb': self.storage_limit_gb,
            'storage_used_mb': self.storage_used_mb,
            'site_directory': self.site_directory,
            'container_id': self.container_id,
            'container_name': self.container_name,
            'host_port': self.host_port,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'last_backup_at': self.last_backup_at.isoformat() if self.last_backup_at else None
        }
        if include_relations:
            data['domains'] = [d.to_dict() for d in self.domains]
            data['databases'] = [d.to_dict() for d in self.databases]
        return data

    def __repr__(self):
        return f'<Site {self.name} ({self.status})>'
