"""Tests for tenant database naming, provisioning and cloning."""

from unittest.mock import MagicMock, PropertyMock, patch

import pytest

from database import db
from errors import ProviderError
from models import SiteDatabase
from services.database_service import (
    MAX_USERNAME_LENGTH, PASSWORD_ALPHABET, DatabaseService, generate_password
)


@pytest.fixture
def service():
    return DatabaseService()


class TestNaming:

    def test_password(self):
        password = generate_password()
        assert len(password) == 16
        assert set(password) <= set(PASSWORD_ALPHABET)
        assert generate_password() != password

    def test_database_name(self, service, make_site, db_session):
        site = make_site()
        name = service.database_name_for(site)
        assert name == f"site_{site.hex_id}"

        db_session.add(SiteDatabase(site_id=site.id, database_name=name, username="u_x", password="p"))
        db_session.commit()
        assert service.database_name_for(site) == f"{name}_2"

    def test_username_fits_mysql_limit(self, service):
        username = service.username_for("site_" + "a" * 32)
        assert len(username) <= MAX_USERNAME_LENGTH
        assert username.startswith("u_")
        assert username == service.username_for("site_" + "a" * 32)
        assert username != service.username_for("site_" + "a" * 32 + "_2")


class TestProvisioning:

    def test_create_database(self, service, make_site, app):
        site = make_site()
        with patch.object(DatabaseService, "_provision") as provision:
            record = service.create_database(site)

        assert record is not None
        assert record.site_id == site.id
        assert record.host == app.config["SITE_DB_HOST"]
        assert record.port == app.config["SITE_DB_PORT"]
        provision.assert_called_once_with(record.database_name, record.username, record.password)

    def test_create_failure_returns_none(self, service, make_site):
        site = make_site()
        with patch.object(DatabaseService, "_provision", side_effect=ProviderError("denied", "mysql")):
            assert service.create_database(site) is None
        assert SiteDatabase.query.count() == 0

    def test_drop_database_twice(self, service, make_site):
        site = make_site()
        with patch.object(DatabaseService, "_provision"):
            record = service.create_database(site)
        record_id = record.id

        with patch.object(DatabaseService, "_deprovision") as deprovision:
            assert service.drop_database(record_id)["success"] is True
            second = service.drop_database(record_id)

        deprovision.assert_called_once()
        assert second["success"] is False
        assert second["kind"] == "not_found"

    def test_drop_failure_keeps_record(self, service, make_site):
        site = make_site()
        with patch.object(DatabaseService, "_provision"):
            record = service.create_database(site)

        with patch.object(DatabaseService, "_deprovision", side_effect=RuntimeError("gone away")):
            result = service.drop_database(record.id)

        assert result["kind"] == "provider_error"
        assert db.session.get(SiteDatabase, record.id) is not None

    def test_partial_provision_is_rolled_back(self, service, make_site):
        site = make_site()
        engine = MagicMock()
        conn = engine.begin.return_value.__enter__.return_value
        conn.execute.side_effect = [None, RuntimeError("CREATE USER denied"), None, None]

        with patch.object(DatabaseService, "engine", new_callable=PropertyMock, return_value=engine):
            assert service.create_database(site) is None

        statements = [str(call.args[0]) for call in conn.execute.call_args_list]
        assert statements[0].startswith("CREATE DATABASE")
        assert any(s.startswith("DROP DATABASE IF EXISTS") for s in statements)
        assert any(s.startswith("DROP USER IF EXISTS") for s in statements)
        assert SiteDatabase.query.count() == 0


class TestClone:

    def test_missing_source(self, service, make_site):
        target = make_site()
        assert service.clone_database("missing", target.id) is None

    def test_clone_copies_through_dump(self, service, make_site):
        source_site = make_site(domain="one.example.test")
        target_site = make_site(domain="two.example.test")
        with patch.object(DatabaseService, "_provision"):
            source = service.create_database(source_site)

        with patch.object(DatabaseService, "_provision"), \
                patch.object(DatabaseService, "_dump") as dump, \
                patch.object(DatabaseService, "_import") as load:
            clone = service.clone_database(source.id, target_site.id)

        assert clone.site_id == target_site.id
        assert clone.database_name != source.database_name
        assert dump.call_args.args[0].id == source.id
        assert load.call_args.args[0].id == clone.id

    def test_failed_copy_drops_clone(self, service, make_site):
        source_site = make_site(domain="one.example.test")
        target_site = make_site(domain="two.example.test")
        with patch.object(DatabaseService, "_provision"):
            source = service.create_database(source_site)

        with patch.object(DatabaseService, "_provision"), \
                patch.object(DatabaseService, "_deprovision"), \
                patch.object(DatabaseService, "_dump", side_effect=ProviderError("dump failed", "mysql")):
            assert service.clone_database(source.id, target_site.id) is None

        assert SiteDatabase.query.filter_by(site_id=target_site.id).count() == 0


class TestIntrospection:

    @pytest.fixture
    def record(self, service, make_site):
        with patch.object(DatabaseService, "_provision"):
            return service.create_database(make_site())

    def test_size_and_tables(self, service, record):
        engine = MagicMock()
        conn = engine.connect.return_value.__enter__.return_value
        conn.execute.return_value.scalar.return_value = 4096
        with patch.object(DatabaseService, "engine", new_callable=PropertyMock, return_value=engine):
            assert service.get_size(record.id) == 4096

        conn.execute.return_value = [("posts",), ("users",)]
        with patch.object(DatabaseService, "engine", new_callable=PropertyMock, return_value=engine):
            assert service.list_tables(record.id) == ["posts", "users"]

    def test_engine_failure_is_reported_as_empty(self, service, record):
        engine = MagicMock()
        engine.connect.side_effect = RuntimeError("connection refused")
        with patch.object(DatabaseService, "engine", new_callable=PropertyMock, return_value=engine):
            assert service.get_size(record.id) == 0
            assert service.list_tables(record.id) == []

    def test_unknown_record(self, service):
        assert service.get_size("missing") == 0
        assert service.list_tables("missing") == []
        assert service.test_connection("missing") is False

    def test_connection_url(self, service, record):
        url = service.connection_url(record)
        assert url.drivername == "mysql+pymysql"
        assert url.database == record.database_name
        assert url.username == record.username
