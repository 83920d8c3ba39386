"""Tests for domain configuration, DNS verification and certificates."""

import os
import subprocess
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests

from errors import NotFoundError, ProcessError
from models import Domain, Site
from services.domain_service import DomainService
from services.nginx_service import NginxService
from services.ssl_service import SslService


@pytest.fixture
def ssl():
    return SslService()


@pytest.fixture
def fake_ssl():
    mock = MagicMock()
    mock.request_certificate.return_value = True
    mock.get_certificate_expiry.return_value = datetime(2027, 1, 1)
    mock.certificate_paths.return_value = ("/certs/x.crt", "/keys/x.key")
    mock.revoke_certificate.return_value = True
    return mock


@pytest.fixture
def domain_service(fake_ssl):
    return DomainService(ssl=fake_ssl, nginx=NginxService())


def completed(stdout):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


class TestSslService:

    def test_renew_skipped_when_far_from_expiry(self, ssl):
        far = datetime.utcnow() + timedelta(days=60)
        with patch.object(SslService, "get_certificate_expiry", return_value=far), \
                patch.object(SslService, "_issue") as issue:
            assert ssl.renew_certificate("blog.example.test") is True
        issue.assert_not_called()

    def test_renew_within_threshold_reissues(self, ssl):
        soon = datetime.utcnow() + timedelta(days=10)
        with patch.object(SslService, "get_certificate_expiry", return_value=soon), \
                patch.object(SslService, "_issue") as issue:
            assert ssl.renew_certificate("blog.example.test") is True
        issue.assert_called_once_with("blog.example.test")

    def test_renew_without_certificate(self, ssl):
        assert ssl.renew_certificate("blog.example.test") is False

    def test_unreachable_domain_is_not_issued(self, ssl):
        with patch("services.ssl_service.requests.get",
                   side_effect=requests.ConnectionError("refused")), \
                patch.object(SslService, "_issue") as issue:
            assert ssl.request_certificate("blog.example.test") is False
        issue.assert_not_called()

    def test_issue_failure_returns_false(self, ssl):
        with patch("services.ssl_service.requests.get", return_value=MagicMock(status_code=404)), \
                patch.object(SslService, "_issue",
                             side_effect=ProcessError(["openssl"], exit_code=1, provider="ssl")):
            assert ssl.request_certificate("blog.example.test") is False

    def test_expiry_parsing(self, ssl, app):
        cert_path, _ = ssl.certificate_paths("blog.example.test")
        os.makedirs(os.path.dirname(cert_path), exist_ok=True)
        open(cert_path, "w").close()

        with patch("services.ssl_service.run_command",
                   return_value=completed("notAfter=Jan  1 00:00:00 2027 GMT\n")):
            assert ssl.get_certificate_expiry("blog.example.test") == datetime(2027, 1, 1)

    def test_revoke_missing_certificate(self, ssl):
        assert ssl.revoke_certificate("nothing.example.test") is True


class TestConfigureDomain:

    def test_subdomain_is_verified_and_routed(self, domain_service, make_site, fake_ssl, app):
        site = make_site(status=Site.STATUS_ACTIVE)
        site.host_port = 32768
        domain = site.primary_domain

        result = domain_service.configure_domain(domain.id)

        assert result["dns_verified"] is True
        assert result["ssl_enabled"] is True
        assert len(domain.verification_token) == 16
        assert domain.ssl_enabled
        assert domain.ssl_expires_at == datetime(2027, 1, 1)
        with open(domain.config_path) as f:
            config = f.read()
        assert "proxy_pass http://127.0.0.1:32768;" in config
        assert "ssl_certificate /certs/x.crt;" in config
        fake_ssl.request_certificate.assert_called_once_with(
            "blog.example.test", "admin@blog.example.test"
        )

    def test_custom_domain_waits_for_dns(self, domain_service, make_site, db_session, fake_ssl):
        site = make_site(status=Site.STATUS_ACTIVE)
        custom = Domain("www.customer.test", domain_type=Domain.TYPE_CUSTOM, site=site)
        db_session.add(custom)
        db_session.commit()

        result = domain_service.configure_domain(custom.id)

        assert result["dns_verified"] is False
        assert result["ssl_enabled"] is False
        fake_ssl.request_certificate.assert_not_called()

    def test_ssl_failure_is_reported_not_raised(self, domain_service, make_site, fake_ssl):
        fake_ssl.request_certificate.return_value = False
        site = make_site(status=Site.STATUS_ACTIVE)

        result = domain_service.configure_domain(site.primary_domain.id)

        assert result["ssl_enabled"] is False
        assert site.primary_domain.ssl_enabled is False

    def test_unknown_domain(self, domain_service):
        with pytest.raises(NotFoundError):
            domain_service.configure_domain("missing")


class TestDnsVerification:

    @pytest.fixture
    def custom(self, make_site, db_session):
        site = make_site(status=Site.STATUS_ACTIVE)
        domain = Domain("www.customer.test", domain_type=Domain.TYPE_CUSTOM, site=site)
        domain.verification_token = "ABCDEF0123456789"
        db_session.add(domain)
        db_session.commit()
        return domain

    def test_matching_txt_record(self, domain_service, custom):
        with patch("services.domain_service.run_command",
                   return_value=completed('"unrelated"\n"ABCDEF0123456789"\n')) as run:
            assert domain_service.verify_dns(custom.id) is True
        assert run.call_args.args[0] == [
            "dig", "+short", "TXT", "_sitepanel-challenge.www.customer.test"
        ]
        assert custom.dns_verified

    def test_missing_txt_record(self, domain_service, custom):
        with patch("services.domain_service.run_command", return_value=completed("")):
            assert domain_service.verify_dns(custom.id) is False

    def test_lookup_failure(self, domain_service, custom):
        with patch("services.domain_service.run_command",
                   side_effect=ProcessError(["dig"], timed_out=True, provider="dns")):
            assert domain_service.verify_dns(custom.id) is False

    def test_ssl_requires_verified_dns(self, domain_service, custom, fake_ssl):
        assert domain_service.setup_ssl_certificate(custom.id) is False
        fake_ssl.request_certificate.assert_not_called()


class TestRenewal:

    def test_renew_expiring_certificates(self, domain_service, make_site, fake_ssl, db_session):
        soon = make_site(domain="soon.example.test").primary_domain
        later = make_site(domain="later.example.test").primary_domain
        for domain, days in ((soon, 5), (later, 80)):
            domain.ssl_enabled = True
            domain.ssl_expires_at = datetime.utcnow() + timedelta(days=days)
        db_session.commit()
        fake_ssl.renew_certificate.return_value = True

        result = domain_service.renew_expiring_certificates(30)

        assert result == {"renewed": ["soon.example.test"], "failed": []}
        fake_ssl.renew_certificate.assert_called_once_with("soon.example.test")

    def test_remove_certificate_rewrites_plain_vhost(self, domain_service, make_site, fake_ssl):
        site = make_site(status=Site.STATUS_ACTIVE)
        site.host_port = 32768
        domain = site.primary_domain
        domain_service.configure_domain(domain.id)

        assert domain_service.remove_ssl_certificate(domain.id) is True

        assert domain.ssl_enabled is False
        with open(domain.config_path) as f:
            assert "ssl_certificate" not in f.read()


class TestNginxService:

    def test_plain_and_tls_configs(self):
        nginx = NginxService()
        plain = nginx.generate_config("blog.example.test", 32768)
        tls = nginx.generate_config("blog.example.test", 32768, ssl_certificate="/c", ssl_key="/k")
        assert "listen 443" not in plain
        assert "listen 443 ssl http2;" in tls
        assert "return 301 https://$server_name$request_uri;" in tls

    def test_enable_and_delete(self, app):
        nginx = NginxService()
        result = nginx.create_site_config("blog.example.test", 32768)
        assert nginx.enable_site("blog.example.test")["success"]
        enabled = os.path.join(app.config["NGINX_SITES_ENABLED"], "blog.example.test.conf")
        assert os.path.islink(enabled)

        assert nginx.delete_config("blog.example.test")["success"]
        assert not os.path.lexists(enabled)
        assert not os.path.exists(result["config_path"])

    def test_reload_disabled_in_tests(self):
        assert NginxService().reload_nginx() == {"success": True, "message": "Reload disabled"}


class TestExpiringCertificates:

    def test_scans_certificate_directory(self, ssl, app):
        os.makedirs(app.config["SSL_CERT_DIR"], exist_ok=True)
        for name in ("soon.example.test", "later.example.test"):
            open(os.path.join(app.config["SSL_CERT_DIR"], f"{name}.crt"), "w").close()

        expiries = {
            "soon.example.test": datetime.utcnow() + timedelta(days=3),
            "later.example.test": datetime.utcnow() + timedelta(days=300),
        }
        with patch.object(SslService, "get_certificate_expiry", side_effect=expiries.get):
            assert ssl.get_expiring_certificates(30) == ["soon.example.test"]
