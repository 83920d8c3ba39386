"""
Domain Service
===============
DNS verification, reverse-proxy routing and SSL lifecycle for site domains.

Subdomains under the panel's own zone are verified automatically. Custom
domains are verified when a TXT record ``<DNS_CHALLENGE_PREFIX>.<domain>``
carries the domain's verification token.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from flask import current_app

from database import db
from errors import NotFoundError, ProviderError
from models import Domain
from services.nginx_service import nginx_service
from services.process import run_command
from services.ssl_service import ssl_service

logger = logging.getLogger(__name__)


class DomainService:
    """Service for configuring domains and their certificates."""

    def __init__(self, ssl=None, nginx=None):
        self.ssl = ssl or ssl_service
        self.nginx = nginx or nginx_service

    @staticmethod
    def generate_verification_token() -> str:
        return uuid.uuid4().hex[:16].upper()

    @staticmethod
    def _get(domain_id: str) -> Domain:
        domain = db.session.get(Domain, domain_id)
        if domain is None:
            raise NotFoundError(f'Domain {domain_id} not found')
        return domain

    # ==================== Configuration ====================

    def configure_domain(self, domain_id: str) -> Dict:
        """
        Prepare a domain for traffic.

        Generates a verification token, auto-verifies subdomains, writes the
        reverse-proxy vhost and requests a certificate once DNS is verified.

        Returns:
            dict: dns_verified, ssl_enabled and verification_token

        Raises:
            NotFoundError: unknown domain id
        """
        domain = self._get(domain_id)
        domain.verification_token = self.generate_verification_token()
        domain.dns_verified = domain.is_subdomain
        db.session.commit()

        if not domain.is_subdomain:
            self.create_dns_record(
                domain.domain_name, 'TXT',
                f"{current_app.config['DNS_CHALLENGE_PREFIX']}.{domain.domain_name}",
                domain.verification_token
            )

        self._write_proxy_config(domain)

        ssl_enabled = False
        if domain.dns_verified:
            ssl_enabled = self.setup_ssl_certificate(domain.id)

        logger.info(
            f'Domain {domain.domain_name} configured '
            f'(dns_verified={domain.dns_verified}, ssl_enabled={ssl_enabled})'
        )
        return {
            'domain_id': domain.id,
            'dns_verified': domain.dns_verified,
            'ssl_enabled': ssl_enabled,
            'verification_token': domain.verification_token
        }

    def _write_proxy_config(self, domain: Domain, with_ssl: bool = False) -> bool:
        site = domain.site
        if not site.host_port:
            logger.info(f'Site {site.id} has no host port yet, vhost for {domain.domain_name} skipped')
            return False

        cert_path = key_path = None
        if with_ssl:
            cert_path, key_path = self.ssl.certificate_paths(domain.domain_name)

        result = self.nginx.create_site_config(domain.domain_name, site.host_port, cert_path, key_path)
        if not result.get('success'):
            logger.warning(f"Vhost for {domain.domain_name} not written: {result.get('error')}")
            return False

        domain.config_path = result['config_path']
        db.session.commit()
        self.nginx.enable_site(domain.domain_name)
        reload_result = self.nginx.reload_nginx()
        if not reload_result.get('success'):
            logger.warning(f"Nginx reload failed: {reload_result.get('error')}")
        return True

    def remove_domain_config(self, domain_id: str) -> bool:
        domain = self._get(domain_id)
        result = self.nginx.delete_config(domain.domain_name)
        if not result.get('success'):
            logger.warning(f"Vhost for {domain.domain_name} not removed: {result.get('error')}")
            return False
        domain.config_path = None
        db.session.commit()
        self.nginx.reload_nginx()
        return True

    # ==================== DNS ====================

    def verify_dns(self, domain_id: str) -> bool:
        """Check the TXT challenge record of a custom domain."""
        domain = self._get(domain_id)
        if domain.is_subdomain:
            domain.dns_verified = True
            db.session.commit()
            return True
        if not domain.verification_token:
            return False

        record = f"{current_app.config['DNS_CHALLENGE_PREFIX']}.{domain.domain_name}"
        try:
            result = run_command(
                ['dig', '+short', 'TXT', record],
                timeout=current_app.config['DNS_LOOKUP_TIMEOUT'],
                provider='dns'
            )
        except ProviderError as e:
            logger.warning(f'DNS lookup for {record} failed: {e.message}')
            return False

        values = [line.strip().strip('"') for line in result.stdout.splitlines()]
        domain.dns_verified = domain.verification_token in values
        db.session.commit()
        logger.info(f'DNS verification for {domain.domain_name}: {domain.dns_verified}')
        return domain.dns_verified

    def create_dns_record(self, domain_name: str, record_type: str, name: str, value: str) -> bool:
        # No DNS provider integration; records are managed by the domain owner
        logger.info(f'DNS record requested for {domain_name}: {record_type} {name} {value}')
        return True

    def update_dns_record(self, domain_name: str, record_type: str, name: str, value: str) -> bool:
        logger.info(f'DNS record update for {domain_name}: {record_type} {name} {value}')
        return True

    def delete_dns_record(self, domain_name: str, record_type: str, name: str) -> bool:
        logger.info(f'DNS record removal for {domain_name}: {record_type} {name}')
        return True

    # ==================== SSL ====================

    def setup_ssl_certificate(self, domain_id: str) -> bool:
        """Request a certificate for a DNS-verified domain and switch its vhost to TLS."""
        domain = self._get(domain_id)
        if not domain.dns_verified:
            logger.warning(f'{domain.domain_name} is not DNS verified, SSL setup skipped')
            return False

        if not self.ssl.request_certificate(domain.domain_name, f'admin@{domain.domain_name}'):
            return False

        expiry = self.ssl.get_certificate_expiry(domain.domain_name)
        domain.ssl_enabled = True
        domain.ssl_expires_at = expiry or datetime.utcnow() + timedelta(days=90)
        db.session.commit()

        self._write_proxy_config(domain, with_ssl=True)
        return True

    def remove_ssl_certificate(self, domain_id: str, rewrite_config: bool = True) -> bool:
        domain = self._get(domain_id)
        if not self.ssl.revoke_certificate(domain.domain_name):
            return False

        domain.ssl_enabled = False
        domain.ssl_expires_at = None
        db.session.commit()
        if rewrite_config:
            self._write_proxy_config(domain)
        return True

    def renew_ssl_certificate(self, domain_id: str) -> bool:
        """Renew when within the renewal window; a no-op success otherwise."""
        domain = self._get(domain_id)
        if not domain.ssl_enabled:
            return False

        if not self.ssl.renew_certificate(domain.domain_name):
            return False

        expiry = self.ssl.get_certificate_expiry(domain.domain_name)
        if expiry is not None:
            domain.ssl_expires_at = expiry
            db.session.commit()
        return True

    def get_certificate_expiry(self, domain_id: str) -> Optional[datetime]:
        return self.ssl.get_certificate_expiry(self._get(domain_id).domain_name)

    def is_certificate_valid(self, domain_id: str) -> bool:
        return self.ssl.is_certificate_valid(self._get(domain_id).domain_name)

    def get_expiring_certificates(self, threshold_days: int = 30) -> List[Domain]:
        cutoff = datetime.utcnow() + timedelta(days=threshold_days)
        return (
            Domain.query
            .filter(Domain.ssl_enabled.is_(True))
            .filter(Domain.ssl_expires_at.isnot(None))
            .filter(Domain.ssl_expires_at <= cutoff)
            .order_by(Domain.ssl_expires_at)
            .all()
        )

    def renew_expiring_certificates(self, threshold_days: int = 30) -> Dict[str, List[str]]:
        renewed, failed = [], []
        for domain in self.get_expiring_certificates(threshold_days):
            if self.renew_ssl_certificate(domain.id):
                renewed.append(domain.domain_name)
            else:
                failed.append(domain.domain_name)
        return {'renewed': renewed, 'failed': failed}


# Singleton instance
domain_service = DomainService()
