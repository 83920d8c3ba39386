"""
SitePanel Blueprints Package
=============================
Flask Blueprints for the JSON API.
"""

from blueprints.auth import auth_bp
from blueprints.sites import sites_bp

__all__ = ['auth_bp', 'sites_bp']
