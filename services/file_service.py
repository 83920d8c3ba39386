"""
File Service
=============
Per-site directory trees, template deployment, site-to-site copies and
tar archives. Operations are blocking and not transactional: a failure in
the middle of a copy leaves a partial tree behind.
"""

import logging
import os
import shutil
from typing import List, Optional

from flask import current_app

from errors import NotFoundError, ValidationError
from models import Template
from services.process import run_command

logger = logging.getLogger(__name__)


class FileService:
    """
    Service for the site filesystem layout:

        {SITES_ROOT}/{site_id}/
            public/     served by the site container
            private/
            logs/
    """

    SKELETON_DIRS = ('public', 'private', 'logs')
    INSTALL_SCRIPT = 'install.sh'

    @property
    def sites_root(self) -> str:
        return current_app.config['SITES_ROOT']

    def site_directory_path(self, site_id: str) -> str:
        return os.path.join(self.sites_root, site_id)

    @staticmethod
    def public_path(site_directory: str) -> str:
        return os.path.join(site_directory, 'public')

    # ==================== Skeleton ====================

    def create_site_directory(self, site_id: str) -> str:
        """
        Create the site root and its subdirectories.

        Existing directories are kept, so a retried create resumes cleanly.

        Returns:
            str: Absolute site directory path
        """
        site_dir = self.site_directory_path(site_id)
        for name in self.SKELETON_DIRS:
            os.makedirs(os.path.join(site_dir, name), exist_ok=True)
        logger.info(f'Site directory ready at {site_dir}')
        return site_dir

    def is_populated(self, site_directory: Optional[str]) -> bool:
        """True when the tree holds anything beyond the empty skeleton."""
        if not site_directory or not os.path.isdir(site_directory):
            return False
        for root, dirs, files in os.walk(site_directory):
            if files:
                return True
            if root == site_directory and set(dirs) - set(self.SKELETON_DIRS):
                return True
        return False

    # ==================== Templates ====================

    def resolve_template_path(self, platform: str, template: Optional[str]) -> Optional[str]:
        """Find a template directory by Template row, then by convention."""
        if not template:
            return None

        row = Template.query.filter_by(platform=platform, name=template, is_active=True).first()
        relative = row.path if row else os.path.join(platform, template)
        path = os.path.join(current_app.config['TEMPLATES_ROOT'], relative)
        return path if os.path.isdir(path) else None

    def deploy_template(self, site) -> bool:
        """
        Copy the site's template into ``public/`` and run its install script.

        Returns:
            bool: False when skipped (tree already populated or no template)
        """
        if self.is_populated(site.site_directory):
            logger.info(f'Site {site.id} already has content, template deploy skipped')
            return False

        template_path = self.resolve_template_path(site.platform, site.template)
        if template_path is None:
            logger.info(f'No template found for {site.platform}/{site.template}')
            return False

        shutil.copytree(
            template_path,
            self.public_path(site.site_directory),
            dirs_exist_ok=True,
            ignore=shutil.ignore_patterns(self.INSTALL_SCRIPT)
        )
        logger.info(f'Template {site.platform}/{site.template} copied into {site.site_directory}')

        script = os.path.join(template_path, self.INSTALL_SCRIPT)
        if os.path.isfile(script):
            self.run_install_script(script, site)
        return True

    def run_install_script(self, script_path: str, site):
        """Run a template install script inside the site directory."""
        env = dict(os.environ)
        env.update({
            'SITE_ID': site.id,
            'SITE_DIR': site.site_directory,
            'SITE_PUBLIC_DIR': self.public_path(site.site_directory),
            'DOMAIN': site.domain,
            'PLATFORM': site.platform,
        })
        result = run_command(
            ['sh', script_path],
            cwd=site.site_directory,
            env=env,
            provider='filesystem'
        )
        logger.info(f'Install script for site {site.id} finished: {result.stdout.strip()[-200:]}')

    # ==================== Copy / Remove ====================

    def copy_site_files(self, source_dir: str, target_dir: str) -> str:
        """Recursively copy one site tree over another."""
        if not os.path.isdir(source_dir):
            raise NotFoundError(f'Source directory {source_dir} does not exist')
        shutil.copytree(source_dir, target_dir, symlinks=True, dirs_exist_ok=True)
        logger.info(f'Copied {source_dir} to {target_dir}')
        return target_dir

    def remove_site_directory(self, site_directory: str) -> bool:
        """
        Delete a site tree. Only paths under SITES_ROOT are accepted.

        Returns:
            bool: False if there was nothing to delete
        """
        root = os.path.realpath(self.sites_root)
        target = os.path.realpath(site_directory)
        if os.path.commonpath([root, target]) != root or target == root:
            raise ValidationError(f'Refusing to delete {site_directory}: outside {root}')

        if not os.path.exists(target):
            return False
        shutil.rmtree(target)
        logger.info(f'Removed site directory {target}')
        return True

    # ==================== Archives ====================

    def create_archive(
        self,
        source_path: str,
        archive_path: Optional[str] = None,
        extra_paths: Optional[List[str]] = None
    ) -> str:
        """
        Create a gzip tarball of a path.

        Each path is stored under its base name, so extracting the archive
        into a directory recreates ``<dest>/<basename>``.

        Args:
            source_path: Directory or file to archive
            archive_path: Output file (default: ``<source_path>.tar.gz``)
            extra_paths: Further paths stored next to the first one

        Returns:
            str: Archive path
        """
        paths = [source_path] + list(extra_paths or [])
        for path in paths:
            if not os.path.exists(path):
                raise NotFoundError(f'Cannot archive missing path {path}')

        archive_path = archive_path or f"{os.path.normpath(source_path)}.tar.gz"
        os.makedirs(os.path.dirname(os.path.abspath(archive_path)), exist_ok=True)

        command = ['tar', '-czf', archive_path]
        for path in paths:
            path = os.path.normpath(os.path.abspath(path))
            command.extend(['-C', os.path.dirname(path), os.path.basename(path)])

        run_command(command, provider='filesystem')
        logger.info(f'Archive created: {archive_path}')
        return archive_path

    def extract_archive(self, archive_path: str, extract_path: str) -> str:
        if not os.path.isfile(archive_path):
            raise NotFoundError(f'Archive {archive_path} not found')
        os.makedirs(extract_path, exist_ok=True)
        run_command(['tar', '-xf', archive_path, '-C', extract_path], provider='filesystem')
        return extract_path

    # ==================== Usage ====================

    @staticmethod
    def get_directory_size(path: str) -> int:
        """Total size in bytes of regular files under a path."""
        total = 0
        for root, _dirs, files in os.walk(path):
            for name in files:
                file_path = os.path.join(root, name)
                if not os.path.islink(file_path):
                    total += os.path.getsize(file_path)
        return total


# Singleton instance
file_service = FileService()
