"""
Database Service
=================
Tenant databases on the shared MySQL engine.

Administrative statements go through a SQLAlchemy engine on
``SITE_DB_ADMIN_URL``; data copies use the ``mysqldump`` and ``mysql``
clients. Public operations never raise: failures come back as ``None`` or
as a result dict tagged with a ``kind``.
"""

import hashlib
import logging
import os
import re
import secrets
import string
import tempfile
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL

from database import db
from errors import NOT_FOUND, PROVIDER_ERROR, NotFoundError, ProviderError, failure
from models import Site, SiteDatabase
from services.process import run_command

logger = logging.getLogger(__name__)

PASSWORD_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + '!@#$%^&*'
PASSWORD_LENGTH = 16
IDENTIFIER_RE = re.compile(r'^[A-Za-z0-9_]{1,64}$')
MAX_USERNAME_LENGTH = 32


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    return ''.join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def _identifier(value: str) -> str:
    if not IDENTIFIER_RE.match(value):
        raise ProviderError(f'Unsafe identifier {value!r}', provider='mysql')
    return value


class DatabaseService:
    """Service for creating, dropping and cloning site databases."""

    def __init__(self):
        self._engine = None
        self._engine_url = None

    @property
    def engine(self):
        """Lazily create the admin engine for the configured URL."""
        url = current_app.config['SITE_DB_ADMIN_URL']
        if self._engine is None or self._engine_url != url:
            self._engine = create_engine(url, pool_pre_ping=True)
            self._engine_url = url
        return self._engine

    # ==================== Naming ====================

    @staticmethod
    def database_name_for(site) -> str:
        """``site_<hex id>``, suffixed when the site already has a database."""
        base = f'site_{site.hex_id}'
        name, n = base, 2
        while SiteDatabase.query.filter_by(database_name=name).first() is not None:
            name = f'{base}_{n}'
            n += 1
        return name

    @staticmethod
    def username_for(database_name: str) -> str:
        digest = hashlib.sha1(database_name.encode('utf-8')).hexdigest()
        return f'u_{digest}'[:MAX_USERNAME_LENGTH]

    @staticmethod
    def connection_url(record: SiteDatabase) -> URL:
        return URL.create(
            'mysql+pymysql',
            username=record.username,
            password=record.password,
            host=record.host,
            port=record.port,
            database=record.database_name
        )

    # ==================== Provisioning ====================

    def _provision(self, database_name: str, username: str, password: str):
        """
        Create the schema and its user. MySQL commits each DDL statement on
        its own, so a failure part way drops whatever was already created.
        """
        name = _identifier(database_name)
        user = _identifier(username)
        try:
            with self.engine.begin() as conn:
                conn.execute(text(
                    f"CREATE DATABASE `{name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                ))
                conn.execute(
                    text(f"CREATE USER '{user}'@'%' IDENTIFIED BY :password"),
                    {'password': password}
                )
                conn.execute(text(f"GRANT ALL PRIVILEGES ON `{name}`.* TO '{user}'@'%'"))
                conn.execute(text("FLUSH PRIVILEGES"))
        except Exception:
            logger.warning(f'Provisioning {name} failed, removing partial schema and user')
            try:
                self._deprovision(name, user)
            except Exception as cleanup_error:
                logger.error(f'Cleanup of {name} failed: {cleanup_error}')
            raise

    def _deprovision(self, database_name: str, username: str):
        name = _identifier(database_name)
        user = _identifier(username)
        with self.engine.begin() as conn:
            conn.execute(text(f"DROP DATABASE IF EXISTS `{name}`"))
            conn.execute(text(f"DROP USER IF EXISTS '{user}'@'%'"))

    def create_database(self, site) -> Optional[SiteDatabase]:
        """
        Create a database and a dedicated user for a site.

        Returns:
            SiteDatabase, or None when provisioning failed
        """
        try:
            database_name = self.database_name_for(site)
            username = self.username_for(database_name)
            password = generate_password()

            self._provision(database_name, username, password)

            record = SiteDatabase(
                site_id=site.id,
                database_name=database_name,
                username=username,
                password=password,
                host=current_app.config['SITE_DB_HOST'],
                port=current_app.config['SITE_DB_PORT'],
                database_type='mysql'
            )
            db.session.add(record)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f'Database provisioning failed for site {site.id}: {e}')
            return None

        logger.info(f'Database {database_name} created for site {site.id}')
        return record

    def drop_database(self, database_id: str) -> Dict:
        """
        Drop a database and its user, then forget the record.

        Returns:
            dict: ``{'success': True}`` or a failure tagged ``not_found`` /
            ``provider_error``
        """
        record = db.session.get(SiteDatabase, database_id)
        if record is None:
            return failure(NOT_FOUND, f'Database {database_id} not found')

        try:
            self._deprovision(record.database_name, record.username)
        except Exception as e:
            logger.error(f'Dropping {record.database_name} failed: {e}')
            return failure(PROVIDER_ERROR, str(e))

        name = record.database_name
        db.session.delete(record)
        db.session.commit()
        logger.info(f'Database {name} dropped')
        return {'success': True, 'message': f'Database {name} dropped'}

    def clone_database(self, source_database_id: str, target_site_id: str) -> Optional[SiteDatabase]:
        """
        Create a database for the target site and copy the source data into it.

        Returns:
            SiteDatabase, or None if the source is missing or the copy failed
        """
        source = db.session.get(SiteDatabase, source_database_id)
        if source is None:
            logger.warning(f'Clone source database {source_database_id} not found')
            return None
        target_site = db.session.get(Site, target_site_id)
        if target_site is None:
            logger.warning(f'Clone target site {target_site_id} not found')
            return None

        clone = self.create_database(target_site)
        if clone is None:
            return None

        try:
            with tempfile.TemporaryDirectory(prefix='sitepanel-clone-') as tmp:
                dump_path = os.path.join(tmp, f'{source.database_name}.sql')
                self._dump(source, dump_path)
                self._import(clone, dump_path)
        except Exception as e:
            logger.error(f'Copying {source.database_name} to {clone.database_name} failed: {e}')
            self.drop_database(clone.id)
            return None

        logger.info(f'Database {source.database_name} cloned to {clone.database_name}')
        return clone

    # ==================== Dump / Import ====================

    @staticmethod
    def _client_env(record: SiteDatabase) -> Dict[str, str]:
        env = dict(os.environ)
        env['MYSQL_PWD'] = record.password
        return env

    def _dump(self, record: SiteDatabase, path: str):
        run_command(
            [
                current_app.config['MYSQLDUMP_PATH'],
                '-h', record.host,
                '-P', str(record.port),
                '-u', record.username,
                '--single-transaction',
                '--routines',
                '--result-file', path,
                record.database_name
            ],
            env=self._client_env(record),
            provider='mysql'
        )

    def _import(self, record: SiteDatabase, path: str):
        with open(path, 'rb') as dump:
            run_command(
                [
                    current_app.config['MYSQL_CLIENT_PATH'],
                    '-h', record.host,
                    '-P', str(record.port),
                    '-u', record.username,
                    record.database_name
                ],
                stdin=dump,
                env=self._client_env(record),
                provider='mysql'
            )

    def _get_record(self, database_id: str) -> SiteDatabase:
        record = db.session.get(SiteDatabase, database_id)
        if record is None:
            raise NotFoundError(f'Database {database_id} not found')
        return record

    def dump_database(self, database_id: str, path: str) -> str:
        """Write a SQL dump. Raises on failure, used by backups."""
        self._dump(self._get_record(database_id), path)
        return path

    def import_database(self, database_id: str, path: str):
        """Load a SQL dump. Raises on failure, used by restores."""
        self._import(self._get_record(database_id), path)

    # ==================== Introspection ====================

    def test_connection(self, database_id: str) -> bool:
        """Connect with the site's own credentials."""
        record = db.session.get(SiteDatabase, database_id)
        if record is None:
            return False
        engine = create_engine(self.connection_url(record))
        try:
            with engine.connect() as conn:
                conn.execute(text('SELECT 1'))
            return True
        except Exception as e:
            logger.warning(f'Connection test for {record.database_name} failed: {e}')
            return False
        finally:
            engine.dispose()

    def list_tables(self, database_id: str) -> List[str]:
        record = db.session.get(SiteDatabase, database_id)
        if record is None:
            return []
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    text(
                        "SELECT table_name FROM information_schema.tables "
                        "WHERE table_schema = :name ORDER BY table_name"
                    ),
                    {'name': record.database_name}
                )
                return [row[0] for row in rows]
        except Exception as e:
            logger.warning(f'Listing tables of {record.database_name} failed: {e}')
            return []

    def get_size(self, database_id: str) -> int:
        """Data plus index size in bytes."""
        record = db.session.get(SiteDatabase, database_id)
        if record is None:
            return 0
        try:
            with self.engine.connect() as conn:
                size = conn.execute(
                    text(
                        "SELECT COALESCE(SUM(data_length + index_length), 0) "
                        "FROM information_schema.tables WHERE table_schema = :name"
                    ),
                    {'name': record.database_name}
                ).scalar()
                return int(size or 0)
        except Exception as e:
            logger.warning(f'Size query for {record.database_name} failed: {e}')
            return 0


# Singleton instance
database_service = DatabaseService()
