"""
SitePanel Models Package
=========================
SQLAlchemy ORM models for the application.
"""

from models.user import User
from models.template import Template
from models.site import Site
from models.domain import Domain
from models.site_database import SiteDatabase
from models.deployment import Deployment
from models.backup import SiteBackup

__all__ = ['User', 'Template', 'Site', 'Domain', 'SiteDatabase', 'Deployment', 'SiteBackup']
