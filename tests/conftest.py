"""Shared test fixtures for the SitePanel test suite.

Provides:
- app: Flask app built from TestingConfig (in-memory SQLite, inline workflows)
- db_session: clean database and filesystem roots per test
- client: Flask test client
- owner / actor: a site owner and the Actor for it
- docker / databases / domains: MagicMock providers for the orchestrator
- site_service: SiteService wired to the mocks, real files and ledger
- make_site: factory for a Site with its primary Domain
"""

from unittest.mock import MagicMock

import pytest

from app import create_app
from config import TestingConfig
from database import db as _db
from models import Domain, Site, SiteDatabase, User
from services.actor import Actor
from services.deployment_ledger import DeploymentLedger
from services.dispatcher import WorkflowDispatcher
from services.file_service import FileService
from services.site_service import SiteService


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app(TestingConfig)
    yield app


@pytest.fixture(autouse=True)
def db_session(app, tmp_path):
    """Fresh tables and filesystem roots for every test."""
    app.config.update(
        SITES_ROOT=str(tmp_path / "sites"),
        TEMPLATES_ROOT=str(tmp_path / "templates"),
        BACKUP_ROOT=str(tmp_path / "backups"),
        SSL_CERT_DIR=str(tmp_path / "ssl" / "certs"),
        SSL_KEY_DIR=str(tmp_path / "ssl" / "private"),
        NGINX_SITES_AVAILABLE=str(tmp_path / "nginx" / "sites-available"),
        NGINX_SITES_ENABLED=str(tmp_path / "nginx" / "sites-enabled"),
    )
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def owner(db_session):
    user = User(username="owner", email="owner@example.com", password="secret-pass")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def actor(owner):
    return Actor.for_user(owner)


@pytest.fixture
def docker():
    mock = MagicMock()
    mock.create_site_container.return_value = {
        "container_id": "c0ffee",
        "container_name": "site-test",
        "host_port": 32768,
        "image": "nginx:alpine",
    }
    for method in ("remove_container", "restart_container", "start_container", "stop_container"):
        getattr(mock, method).return_value = {"success": True}
    mock.get_container_logs.return_value = "2026-01-01T00:00:00Z started\n"
    return mock


@pytest.fixture
def databases(db_session):
    """Database provider that records rows without touching MySQL."""
    mock = MagicMock()

    def create_database(site):
        record = SiteDatabase(
            site_id=site.id,
            database_name=f"site_{site.hex_id}",
            username=f"u_{site.hex_id[:30]}",
            password="x" * 16,
            host="mysql",
            port=3306,
        )
        db_session.add(record)
        db_session.commit()
        return record

    def drop_database(database_id):
        record = db_session.get(SiteDatabase, database_id)
        if record is None:
            return {"success": False, "kind": "not_found", "error": "missing"}
        db_session.delete(record)
        db_session.commit()
        return {"success": True}

    mock.create_database.side_effect = create_database
    mock.drop_database.side_effect = drop_database
    mock.clone_database.return_value = None
    return mock


@pytest.fixture
def domains():
    mock = MagicMock()
    mock.configure_domain.return_value = {"dns_verified": True, "ssl_enabled": False}
    mock.remove_ssl_certificate.return_value = True
    mock.remove_domain_config.return_value = True
    return mock


@pytest.fixture
def dispatcher():
    return WorkflowDispatcher(spawn=lambda fn, *args: fn(*args))


@pytest.fixture
def site_service(docker, databases, domains, dispatcher):
    return SiteService(
        docker=docker,
        databases=databases,
        domains=domains,
        files=FileService(),
        ledger=DeploymentLedger(),
        dispatcher=dispatcher,
    )


@pytest.fixture
def make_site(db_session, owner):
    """Factory: a site in ``creating`` with its primary domain."""
    def _make(domain="blog.example.test", platform="nginx", status=Site.STATUS_CREATING, **kwargs):
        site = Site(
            name=kwargs.pop("name", domain.split(".")[0]),
            domain=domain,
            user_id=owner.id,
            platform=platform,
            **kwargs,
        )
        site.status = status
        Domain(domain, is_primary=True, site=site)
        db_session.add(site)
        db_session.commit()
        return site
    return _make
