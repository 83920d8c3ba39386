"""
Site Service
=============
The site lifecycle orchestrator.

Create, delete and clone run as background workflows through the workflow
dispatcher; backup, restore, restart, suspend and resume run synchronously
and raise on failure. Every workflow run opens one Deployment and commits
after each step, so a failed Deployment plus the Site left in ``error``
is the checkpoint a retry resumes from. Nothing is rolled back automatically.
"""

import logging
import os
import re
import tempfile
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app

from database import db
from errors import (
    NOT_FOUND, InvalidTransitionError, NotFoundError, NotProvisionedError,
    ProviderError, ValidationError, WorkflowBusyError
)
from models import Deployment, Domain, Site, SiteBackup
from services.actor import SYSTEM_ACTOR
from services.database_service import database_service
from services.deployment_ledger import deployment_ledger
from services.dispatcher import workflow_dispatcher
from services.docker_service import docker_service
from services.domain_service import domain_service
from services.file_service import file_service

logger = logging.getLogger(__name__)


class SiteService:
    """
    Orchestrates the database, filesystem, container and domain services
    into site workflows.
    """

    def __init__(self, docker=None, databases=None, domains=None, files=None,
                 ledger=None, dispatcher=None):
        self.docker = docker or docker_service
        self.databases = databases or database_service
        self.domains = domains or domain_service
        self.files = files or file_service
        self.ledger = ledger or deployment_ledger
        self.dispatcher = dispatcher or workflow_dispatcher

    # ==================== Lookups / Validation ====================

    @staticmethod
    def _get_site(site_id: str) -> Site:
        site = db.session.get(Site, site_id)
        if site is None:
            raise NotFoundError(f'Site {site_id} not found')
        return site

    def _get_live_site(self, site_id: str) -> Site:
        site = self._get_site(site_id)
        if site.is_deleted:
            raise ValidationError(f'Site {site_id} has been deleted')
        return site

    @staticmethod
    def domain_in_use(domain_name: str) -> bool:
        """True if any live site or any domain row already uses the name."""
        name = domain_name.strip().lower()
        site_match = (
            Site.query
            .filter(Site.domain == name, Site.status != Site.STATUS_DELETED)
            .first()
        )
        if site_match is not None:
            return True
        return Domain.query.filter_by(domain_name=name).first() is not None

    def _validate_new_site(self, user_id, name: str, domain_name: str):
        if not name:
            raise ValidationError('Site name is required')
        if not domain_name:
            raise ValidationError('Domain is required')
        if user_id is None:
            raise ValidationError('A site must be owned by a user')
        if self.domain_in_use(domain_name):
            raise ValidationError(f'Domain {domain_name} is already in use')

        limit = current_app.config['MAX_SITES_PER_USER']
        count = Site.query.filter(
            Site.user_id == user_id, Site.status != Site.STATUS_DELETED
        ).count()
        if count >= limit:
            raise ValidationError(f'Site limit of {limit} reached')

    def _step(self, deployment: Deployment, message: str):
        logger.info(f'[{deployment.deployment_type} {deployment.site_id}] {message}')
        self.ledger.progress(deployment, message)

    def _mark_error(self, site_id: str):
        site = db.session.get(Site, site_id)
        if site is not None and site.can_transition(Site.STATUS_ERROR):
            site.transition_to(Site.STATUS_ERROR)
            db.session.commit()

    # ==================== Create ====================

    def register_site(self, actor, name: str, domain: str, platform: str,
                      template: Optional[str] = None, description: Optional[str] = None,
                      storage_limit_gb: Optional[int] = None,
                      domain_type: str = Domain.TYPE_SUBDOMAIN) -> Site:
        """
        Persist a new site with its primary domain and schedule its creation.

        Returns:
            Site in ``creating``; progress is visible through its deployments
        """
        name = (name or '').strip()
        domain_name = (domain or '').strip().lower()
        if not platform:
            raise ValidationError('Platform is required')
        if domain_type not in (Domain.TYPE_SUBDOMAIN, Domain.TYPE_CUSTOM):
            raise ValidationError(f'Unknown domain type: {domain_type}')
        self._validate_new_site(actor.user_id, name, domain_name)

        site = Site(
            name=name,
            domain=domain_name,
            user_id=actor.user_id,
            platform=platform.lower(),
            template=template,
            description=description,
            storage_limit_gb=storage_limit_gb or current_app.config['DEFAULT_STORAGE_LIMIT_GB']
        )
        Domain(domain_name, domain_type=domain_type, is_primary=True, site=site)
        db.session.add(site)
        db.session.commit()
        logger.info(f'Site {site.id} ({domain_name}) registered by {actor.name}')

        self.schedule_create(site.id, actor)
        return site

    def schedule_create(self, site_id: str, actor=SYSTEM_ACTOR):
        return self.dispatcher.submit(site_id, 'create', self.create_site, site_id, actor)

    def retry_site(self, site_id: str, actor=SYSTEM_ACTOR):
        """Re-run the create workflow for a site left in ``error``."""
        site = self._get_live_site(site_id)
        if site.status != Site.STATUS_ERROR:
            raise InvalidTransitionError('Site', site.status, Site.STATUS_CREATING)
        return self.schedule_create(site.id, actor)

    def create_site(self, site_id: str, actor=SYSTEM_ACTOR, provision_database: bool = True) -> bool:
        """
        Provision a site: directory, database, template, container, domain.

        A database failure is tolerated; any other step failure leaves the
        Deployment ``failed`` and the Site in ``error``.

        Returns:
            bool: True when the site became active
        """
        site = db.session.get(Site, site_id)
        if site is None:
            logger.error(f'Create requested for unknown site {site_id}')
            return False
        if site.status == Site.STATUS_ERROR:
            site.transition_to(Site.STATUS_CREATING)
            db.session.commit()
        elif site.status != Site.STATUS_CREATING:
            logger.warning(f'Site {site_id} is {site.status}, create ignored')
            return False

        deployment = self.ledger.open(site.id, 'create', actor)
        self.ledger.start(deployment, f'Creating site {site.name}')

        try:
            self._step(deployment, 'Creating site directory structure')
            site.site_directory = self.files.create_site_directory(site.id)
            db.session.commit()

            if provision_database:
                self._provision_database(site, deployment)

            self._step(deployment, 'Deploying template')
            if not self.files.deploy_template(site):
                self._step(deployment, 'Template deploy skipped')

            self._step(deployment, 'Creating container')
            container = self.docker.create_site_container(site)
            site.container_id = container['container_id']
            site.container_name = container['container_name']
            site.host_port = container['host_port']
            db.session.commit()

            self._step(deployment, 'Configuring domain')
            primary = site.primary_domain
            if primary is None:
                raise ValidationError(f'Site {site.id} has no primary domain')
            result = self.domains.configure_domain(primary.id)

            site.transition_to(Site.STATUS_ACTIVE)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.exception(f'Create workflow failed for site {site_id}')
            self._mark_error(site_id)
            self.ledger.fail(deployment, f'Site creation failed: {e}')
            return False

        message = 'Site created successfully'
        if not result.get('ssl_enabled'):
            message = f'{message}; SSL certificate pending'
        self.ledger.complete(deployment, message)
        return True

    def _provision_database(self, site: Site, deployment: Deployment):
        if site.databases:
            self._step(deployment, 'Database already provisioned')
            return

        self._step(deployment, 'Provisioning database')
        record = self.databases.create_database(site)
        if record is None:
            logger.warning(f'Site {site.id} continues without a database')
            self._step(deployment, 'Database provisioning failed, continuing without a database')

    # ==================== Delete ====================

    def schedule_delete(self, site_id: str, actor=SYSTEM_ACTOR):
        """Mark a site ``deleting`` and dispatch its teardown."""
        site = self._get_live_site(site_id)
        previous = site.status
        site.transition_to(Site.STATUS_DELETING)
        db.session.commit()

        try:
            return self.dispatcher.submit(site_id, 'delete', self.delete_site, site_id, actor)
        except WorkflowBusyError:
            site.status = previous
            db.session.commit()
            raise

    def delete_site(self, site_id: str, actor=SYSTEM_ACTOR) -> bool:
        """
        Tear a site down best-effort: every step runs even when an earlier
        one failed, and the site always ends ``deleted``.

        Returns:
            bool: True when every step succeeded
        """
        site = db.session.get(Site, site_id)
        if site is None:
            logger.error(f'Delete requested for unknown site {site_id}')
            return False
        if site.is_deleted:
            return True
        if site.status != Site.STATUS_DELETING:
            site.transition_to(Site.STATUS_DELETING)
            db.session.commit()

        deployment = self.ledger.open(site.id, 'delete', actor)
        self.ledger.start(deployment, f'Deleting site {site.name}')

        failures = []
        steps = (
            ('Removing container', self._teardown_container),
            ('Revoking certificates and removing vhosts', self._teardown_domains),
            ('Dropping databases', self._teardown_databases),
            ('Deleting site files', self._teardown_files),
        )
        for label, teardown in steps:
            self._step(deployment, label)
            try:
                teardown(site_id)
            except Exception as e:
                db.session.rollback()
                logger.error(f'{label} failed for site {site_id}: {e}')
                failures.append(f'{label}: {e}')

        site = db.session.get(Site, site_id)
        site.clear_container()
        site.site_directory = None
        site.domains.clear()
        site.transition_to(Site.STATUS_DELETED)
        db.session.commit()

        # Records of databases that could not be dropped stay on the site for manual cleanup
        leftover = [record.database_name for record in site.databases]
        if leftover:
            failures.append('Database records kept for manual cleanup: ' + ', '.join(leftover))

        if failures:
            self.ledger.fail(deployment, 'Site deleted with errors: ' + '; '.join(failures))
            return False
        self.ledger.complete(deployment, 'Site deleted')
        return True

    def _teardown_container(self, site_id: str):
        site = db.session.get(Site, site_id)
        if not site.container_id:
            return
        result = self.docker.remove_container(site.container_id)
        if not result.get('success') and result.get('kind') != NOT_FOUND:
            raise ProviderError(result.get('error', 'container removal failed'), provider='docker')
        site.clear_container()
        db.session.commit()

    def _teardown_domains(self, site_id: str):
        site = db.session.get(Site, site_id)
        failed = []
        for domain in list(site.domains):
            if not self.domains.remove_ssl_certificate(domain.id, rewrite_config=False):
                failed.append(f'{domain.domain_name} (certificate)')
            if not self.domains.remove_domain_config(domain.id):
                failed.append(f'{domain.domain_name} (vhost)')
        if failed:
            raise ProviderError('Could not clean up ' + ', '.join(failed), provider='ssl')

    def _teardown_databases(self, site_id: str):
        site = db.session.get(Site, site_id)
        failed = []
        for record in list(site.databases):
            name = record.database_name
            result = self.databases.drop_database(record.id)
            if not result.get('success') and result.get('kind') != NOT_FOUND:
                failed.append(f"{name} ({result.get('error')})")
        if failed:
            raise ProviderError('Could not drop ' + ', '.join(failed), provider='mysql')

    def _teardown_files(self, site_id: str):
        site = db.session.get(Site, site_id)
        if site.site_directory:
            self.files.remove_site_directory(site.site_directory)

    # ==================== Clone ====================

    def clone_site(self, source_site_id: str, actor, name: str, domain: str,
                   description: Optional[str] = None, clone_files: bool = True,
                   clone_database: bool = True) -> str:
        """
        Create a copy of a site under a new domain.

        The new Site and its primary Domain are persisted before returning;
        copying and provisioning continue in the background.

        Returns:
            str: id of the new site
        """
        source = self._get_live_site(source_site_id)
        name = (name or '').strip()
        domain_name = (domain or '').strip().lower()
        self._validate_new_site(source.user_id, name, domain_name)
        if self.dispatcher.is_busy(source.id):
            raise WorkflowBusyError(source.id, self.dispatcher.running(source.id))

        target = Site(
            name=name,
            domain=domain_name,
            user_id=source.user_id,
            platform=source.platform,
            template=source.template,
            description=description or source.description,
            storage_limit_gb=source.storage_limit_gb
        )
        Domain(domain_name, domain_type=Domain.TYPE_SUBDOMAIN, is_primary=True, site=target)
        db.session.add(target)
        db.session.commit()
        target_id = target.id

        deployment = self.ledger.open(source.id, 'clone', actor, message=f'Cloning into {target.name}')
        try:
            self.dispatcher.submit(
                (source.id, target_id), 'clone', self._run_clone,
                deployment.id, source.id, target_id, clone_files, clone_database, actor
            )
        except WorkflowBusyError as e:
            self.ledger.fail(deployment, f'Clone rejected: {e.message}')
            self._mark_error(target_id)
            raise

        logger.info(f'Site {source.id} clone scheduled as {target_id}')
        return target_id

    def _run_clone(self, deployment_id: str, source_id: str, target_id: str,
                   clone_files: bool, clone_database: bool, actor) -> bool:
        deployment = self.ledger.get(deployment_id)
        source = db.session.get(Site, source_id)
        target = db.session.get(Site, target_id)
        self.ledger.start(deployment, f'Cloning site {source.name} to {target.name}')

        try:
            if clone_files and source.site_directory:
                self._step(deployment, 'Copying site files')
                target.site_directory = self.files.create_site_directory(target.id)
                db.session.commit()
                self.files.copy_site_files(source.site_directory, target.site_directory)

            if clone_database:
                for record in list(source.databases):
                    self._step(deployment, f'Cloning database {record.database_name}')
                    if self.databases.clone_database(record.id, target.id) is None:
                        logger.warning(f'Database {record.database_name} was not cloned')
                        self._step(deployment, f'Database {record.database_name} clone failed, skipped')
        except Exception as e:
            db.session.rollback()
            logger.exception(f'Clone of {source_id} into {target_id} failed')
            self.ledger.fail(deployment, f'Clone failed: {e}')
            self._mark_error(target_id)
            return False

        self.ledger.complete(deployment, f'Cloned into site {target_id}')
        return self.create_site(target_id, actor, provision_database=False)

    # ==================== Backup / Restore ====================

    @staticmethod
    def _safe_name(name: str) -> str:
        return re.sub(r'[^A-Za-z0-9_.-]+', '_', name).strip('_') or 'site'

    def create_backup(self, site_id: str, actor, description: Optional[str] = None,
                      include_files: bool = True, include_database: bool = True) -> str:
        """
        Archive a site's files and database dumps.

        Returns:
            str: id of the new SiteBackup

        Raises:
            ValidationError, NotFoundError, WorkflowBusyError before any side
            effect; any provider error after the Deployment was marked failed
        """
        site = self._get_live_site(site_id)
        if not include_files and not include_database:
            raise ValidationError('Nothing to back up')
        if include_files and not site.site_directory:
            raise ValidationError(f'Site {site_id} has no files to back up')
        if not include_files and not site.databases:
            raise ValidationError(f'Site {site_id} has no database to back up')

        with self.dispatcher.hold(site.id, 'backup'):
            deployment = self.ledger.open(site.id, 'backup', actor)
            self.ledger.start(deployment, f'Backing up site {site.name}')
            try:
                backup = self._write_backup(site, deployment, description, include_files, include_database)
            except Exception as e:
                db.session.rollback()
                logger.exception(f'Backup of site {site_id} failed')
                self.ledger.fail(deployment, f'Backup failed: {e}')
                raise

            self.ledger.complete(deployment, f'Backup {backup.file_name} created')
            return backup.id

    def _write_backup(self, site: Site, deployment: Deployment, description: Optional[str],
                      include_files: bool, include_database: bool) -> SiteBackup:
        now = datetime.utcnow()
        backup_dir = os.path.join(current_app.config['BACKUP_ROOT'], site.id)
        os.makedirs(backup_dir, exist_ok=True)
        file_name = (
            f"{self._safe_name(site.name)}_{now.strftime('%Y%m%d_%H%M%S')}"
            f"_{uuid.uuid4().hex[:8]}.tar.gz"
        )
        archive_path = os.path.join(backup_dir, file_name)

        try:
            self._archive_site(site, deployment, archive_path, include_files, include_database)
        except Exception:
            if os.path.exists(archive_path):
                os.remove(archive_path)
                logger.warning(f'Removed partial archive {archive_path}')
            raise
        dumped = include_database and bool(site.databases)

        backup = SiteBackup(
            site_id=site.id,
            file_name=file_name,
            file_path=archive_path,
            file_size=os.path.getsize(archive_path),
            backup_type='manual',
            description=description,
            includes_files=include_files,
            includes_database=dumped,
            expires_at=now + timedelta(days=current_app.config['BACKUP_RETENTION_DAYS'])
        )
        db.session.add(backup)
        site.last_backup_at = now
        db.session.commit()
        logger.info(f'Backup {archive_path} written for site {site.id}')
        return backup

    def _archive_site(self, site: Site, deployment: Deployment, archive_path: str,
                      include_files: bool, include_database: bool):
        with tempfile.TemporaryDirectory(prefix='sitepanel-backup-') as staging:
            paths = []
            if include_files:
                paths.append(site.site_directory)

            if include_database and site.databases:
                dumps_dir = os.path.join(staging, 'databases')
                os.makedirs(dumps_dir)
                for record in site.databases:
                    self._step(deployment, f'Dumping database {record.database_name}')
                    self.databases.dump_database(
                        record.id, os.path.join(dumps_dir, f'{record.database_name}.sql')
                    )
                paths.append(dumps_dir)

            self._step(deployment, 'Creating archive')
            self.files.create_archive(paths[0], archive_path, extra_paths=paths[1:])

    def restore_backup(self, site_id: str, backup_id: str, actor) -> bool:
        """Put a backup's files and database dumps back in place."""
        site = self._get_live_site(site_id)
        backup = db.session.get(SiteBackup, backup_id)
        if backup is None or backup.site_id != site.id:
            raise NotFoundError(f'Backup {backup_id} not found')
        if not os.path.isfile(backup.file_path):
            raise NotFoundError(f'Backup archive {backup.file_name} is missing')

        with self.dispatcher.hold(site.id, 'restore'):
            deployment = self.ledger.open(site.id, 'restore', actor)
            self.ledger.start(deployment, f'Restoring backup {backup.file_name}')
            try:
                self._restore_from_archive(site, backup, deployment)
            except Exception as e:
                db.session.rollback()
                logger.exception(f'Restore of backup {backup_id} failed')
                self.ledger.fail(deployment, f'Restore failed: {e}')
                raise

            self.ledger.complete(deployment, f'Backup {backup.file_name} restored')
            return True

    def _restore_from_archive(self, site: Site, backup: SiteBackup, deployment: Deployment):
        with tempfile.TemporaryDirectory(prefix='sitepanel-restore-') as staging:
            self._step(deployment, 'Extracting archive')
            self.files.extract_archive(backup.file_path, staging)

            if backup.includes_files:
                if not site.site_directory:
                    site.site_directory = self.files.create_site_directory(site.id)
                    db.session.commit()
                extracted = os.path.join(staging, os.path.basename(os.path.normpath(site.site_directory)))
                self._step(deployment, 'Restoring site files')
                self.files.copy_site_files(extracted, site.site_directory)

            dumps_dir = os.path.join(staging, 'databases')
            if backup.includes_database and os.path.isdir(dumps_dir):
                for record in site.databases:
                    dump = os.path.join(dumps_dir, f'{record.database_name}.sql')
                    if not os.path.isfile(dump):
                        logger.warning(f'Backup has no dump for {record.database_name}')
                        continue
                    self._step(deployment, f'Importing database {record.database_name}')
                    self.databases.import_database(record.id, dump)

        if site.container_id:
            self._step(deployment, 'Restarting container')
            result = self.docker.restart_container(site.container_id)
            if not result.get('success'):
                raise ProviderError(result.get('error', 'restart failed'), provider='docker')

    def list_backups(self, site_id: str) -> List[SiteBackup]:
        return self._get_site(site_id).backups.all()

    def purge_expired_backups(self, now: Optional[datetime] = None) -> int:
        """Delete expired backup archives and their rows."""
        now = now or datetime.utcnow()
        expired = SiteBackup.query.filter(
            SiteBackup.expires_at.isnot(None), SiteBackup.expires_at <= now
        ).all()
        for backup in expired:
            if os.path.exists(backup.file_path):
                os.remove(backup.file_path)
            db.session.delete(backup)
            logger.info(f'Expired backup {backup.file_name} purged')
        db.session.commit()
        return len(expired)

    # ==================== Container Operations ====================

    def restart_site(self, site_id: str, actor) -> bool:
        site = self._get_live_site(site_id)
        if not site.container_id:
            raise NotProvisionedError(f'Site {site.name} has no container')

        with self.dispatcher.hold(site.id, 'restart'):
            deployment = self.ledger.open(site.id, 'restart', actor)
            self.ledger.start(deployment, f'Restarting container {site.container_name}')
            try:
                result = self.docker.restart_container(site.container_id)
            except Exception as e:
                db.session.rollback()
                logger.exception(f'Restart of site {site_id} failed')
                self.ledger.fail(deployment, f'Restart failed: {e}')
                raise

            if not result.get('success'):
                self.ledger.fail(deployment, f"Restart failed: {result.get('error')}")
                if result.get('kind') == NOT_FOUND:
                    raise NotFoundError(result.get('error'))
                raise ProviderError(result.get('error', 'restart failed'), provider='docker')

            self.ledger.complete(deployment, 'Container restarted')
            return True

    def suspend_site(self, site_id: str, actor) -> bool:
        """Stop the container of an active site."""
        site = self._get_live_site(site_id)
        if site.status != Site.STATUS_ACTIVE:
            raise InvalidTransitionError('Site', site.status, Site.STATUS_SUSPENDED)

        with self.dispatcher.hold(site.id, 'suspend'):
            if site.container_id:
                result = self.docker.stop_container(site.container_id)
                if not result.get('success') and result.get('kind') != NOT_FOUND:
                    raise ProviderError(result.get('error', 'stop failed'), provider='docker')
            site.transition_to(Site.STATUS_SUSPENDED)
            db.session.commit()

        logger.info(f'Site {site_id} suspended by {actor.name}')
        return True

    def resume_site(self, site_id: str, actor) -> bool:
        site = self._get_live_site(site_id)
        if site.status != Site.STATUS_SUSPENDED:
            raise InvalidTransitionError('Site', site.status, Site.STATUS_ACTIVE)
        if not site.container_id:
            raise NotProvisionedError(f'Site {site.name} has no container')

        with self.dispatcher.hold(site.id, 'resume'):
            result = self.docker.start_container(site.container_id)
            if not result.get('success'):
                if result.get('kind') == NOT_FOUND:
                    raise NotFoundError(result.get('error'))
                raise ProviderError(result.get('error', 'start failed'), provider='docker')
            site.transition_to(Site.STATUS_ACTIVE)
            db.session.commit()

        logger.info(f'Site {site_id} resumed by {actor.name}')
        return True

    def get_site_logs(self, site_id: str, tail: Optional[int] = None) -> Optional[str]:
        """Container log tail, or None when the site has no container."""
        site = self._get_site(site_id)
        if not site.container_id:
            return None
        return self.docker.get_container_logs(site.container_id, tail)

    def get_container_info(self, site_id: str) -> Optional[dict]:
        site = self._get_site(site_id)
        if not site.container_id:
            return None
        return self.docker.get_container_info(site.container_id)

    def update_storage_usage(self, site_id: str) -> int:
        """Recompute the site's disk usage in MB."""
        site = self._get_site(site_id)
        if not site.site_directory or not os.path.isdir(site.site_directory):
            return site.storage_used_mb
        size = self.files.get_directory_size(site.site_directory)
        site.storage_used_mb = size // (1024 * 1024)
        db.session.commit()
        return site.storage_used_mb

    # ==================== Deployments ====================

    def get_deployments(self, site_id: str, limit: int = 50) -> List[Deployment]:
        self._get_site(site_id)
        return self.ledger.for_site(site_id, limit)

    def get_deployment(self, deployment_id: str) -> Deployment:
        return self.ledger.get(deployment_id)

    def get_latest_deployment(self, site_id: str, deployment_type: Optional[str] = None) -> Optional[Deployment]:
        return self.ledger.latest(site_id, deployment_type)


# Singleton instance
site_service = SiteService()
