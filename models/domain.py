"""
Domain Model
=============
Domains attached to a site, with DNS verification and SSL state.
"""

import uuid
from datetime import datetime
from database import db


class Domain(db.Model):
    """A domain routed to a site's container through the reverse proxy."""
    
    __tablename__ = 'domains'

    TYPE_SUBDOMAIN = 'subdomain'
    TYPE_CUSTOM = 'custom'
    
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    site_id = db.Column(db.String(36), db.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False, index=True)
    domain_name = db.Column(db.String(255), unique=True, nullable=False, index=True)
    domain_type = db.Column(db.String(20), nullable=False, default=TYPE_SUBDOMAIN)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    
    # DNS verification
    dns_verified = db.Column(db.Boolean, default=False)
    verification_token = db.Column(db.String(32), nullable=True)
    
    # SSL
    ssl_enabled = db.Column(db.Boolean, default=False)
    ssl_expires_at = db.Column(db.DateTime, nullable=True)
    
    # Nginx config
    config_path = db.Column(db.String(500), nullable=True)
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    site = db.relationship('Site', back_populates='domains')

    __table_args__ = (
        # One primary domain per site
        db.Index(
            'uq_domains_primary_per_site', 'site_id', unique=True,
            sqlite_where=db.text('is_primary = 1'),
            postgresql_where=db.text('is_primary')
        ),
    )
    
    def __init__(self, domain_name, domain_type=TYPE_SUBDOMAIN, is_primary=False, site=None):
        self.domain_name = domain_name.lower().strip()
        self.domain_type = domain_type
        self.is_primary = is_primary
        self.dns_verified = False
        self.ssl_enabled = False
        if site is not None:
            self.site = site

    @property
    def is_subdomain(self):
        return self.domain_type == self.TYPE_SUBDOMAIN
    
    @property
    def ssl_status(self):
        """Get SSL certificate status."""
        if not self.ssl_enabled:
            return 'disabled'
        if self.ssl_expires_at and self.ssl_expires_at < datetime.utcnow():
            return 'expired'
        return 'active'
    
    def to_dict(self):
        return {
            'id': self.id,
            'site_id': self.site_id,
            'domain_name': self.domain_name,
            'domain_type': self.domain_type,
            'is_primary': self.is_primary,
            'dns_verified': self.dns_verified,
            'verification_token': self.verification_token,
            'ssl_enabled': self.ssl_enabled,
            'ssl_status': self.ssl_status,
            'ssl_expires_at': self.ssl_expires_at.isoformat() if self.ssl_expires_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
    
    def __repr__(self):
        return f'<Domain {self.domain_name}>'
