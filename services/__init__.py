"""
SitePanel Services Package
===========================
Provisioning services and the site lifecycle orchestrator.
"""

from services.actor import Actor, SYSTEM_ACTOR
from services.database_service import DatabaseService
from services.deployment_ledger import DeploymentLedger
from services.dispatcher import WorkflowDispatcher
from services.docker_service import DockerService
from services.domain_service import DomainService
from services.file_service import FileService
from services.nginx_service import NginxService
from services.site_service import SiteService
from services.ssl_service import SslService

__all__ = [
    'Actor',
    'SYSTEM_ACTOR',
    'DatabaseService',
    'DeploymentLedger',
    'WorkflowDispatcher',
    'DockerService',
    'DomainService',
    'FileService',
    'NginxService',
    'SiteService',
    'SslService'
]
