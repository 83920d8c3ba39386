"""
SSL Service
============
Certificate issuance, renewal, revocation and expiry inspection.

Two providers are supported through ``SSL_PROVIDER``:

- ``self-signed``: openssl certificates under SSL_CERT_DIR / SSL_KEY_DIR
- ``certbot``: Let's Encrypt certificates under /etc/letsencrypt/live
"""

import logging
import os
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import requests
from flask import current_app

from errors import ProviderError
from services.process import run_command

logger = logging.getLogger(__name__)


class SslService:
    LETSENCRYPT_LIVE = '/etc/letsencrypt/live'
    EXPIRY_FORMAT = '%b %d %H:%M:%S %Y %Z'
    SELF_SIGNED_DAYS = 90

    @property
    def provider(self) -> str:
        return current_app.config['SSL_PROVIDER']

    def certificate_paths(self, domain: str) -> Tuple[str, str]:
        """(certificate, private key) paths for a domain."""
        if self.provider == 'certbot':
            live = os.path.join(self.LETSENCRYPT_LIVE, domain)
            return os.path.join(live, 'fullchain.pem'), os.path.join(live, 'privkey.pem')
        return (
            os.path.join(current_app.config['SSL_CERT_DIR'], f'{domain}.crt'),
            os.path.join(current_app.config['SSL_KEY_DIR'], f'{domain}.key'),
        )

    def has_certificate(self, domain: str) -> bool:
        return os.path.isfile(self.certificate_paths(domain)[0])

    # ==================== Issuance ====================

    def is_domain_accessible(self, domain: str) -> bool:
        """Check the domain answers plain HTTP before spending an issuance attempt."""
        try:
            response = requests.get(
                f'http://{domain}',
                timeout=current_app.config['SSL_HTTP_TIMEOUT'],
                allow_redirects=True
            )
            return response.status_code < 500
        except requests.RequestException as e:
            logger.info(f'{domain} is not reachable over HTTP: {e}')
            return False

    def request_certificate(self, domain: str, email: Optional[str] = None) -> bool:
        if not self.is_domain_accessible(domain):
            logger.warning(f'Skipping certificate request for unreachable {domain}')
            return False
        try:
            self._issue(domain, email)
        except ProviderError as e:
            logger.error(f'Certificate request for {domain} failed: {e.message}')
            return False
        logger.info(f'Certificate issued for {domain}')
        return True

    def _issue(self, domain: str, email: Optional[str] = None):
        timeout = current_app.config['CERT_ISSUE_TIMEOUT']
        if self.provider == 'certbot':
            cmd = [
                current_app.config['CERTBOT_PATH'], 'certonly', '--nginx',
                '-d', domain,
                '--non-interactive', '--agree-tos'
            ]
            if email:
                cmd.extend(['--email', email])
            else:
                cmd.append('--register-unsafely-without-email')
            run_command(cmd, timeout=timeout, provider='ssl')
            return

        cert_path, key_path = self.certificate_paths(domain)
        os.makedirs(os.path.dirname(cert_path), exist_ok=True)
        os.makedirs(os.path.dirname(key_path), exist_ok=True)
        run_command(
            [
                'openssl', 'req', '-x509', '-nodes',
                '-newkey', 'rsa:2048',
                '-days', str(self.SELF_SIGNED_DAYS),
                '-subj', f'/CN={domain}',
                '-keyout', key_path,
                '-out', cert_path
            ],
            timeout=timeout,
            provider='ssl'
        )

    # ==================== Lifecycle ====================

    def renew_certificate(self, domain: str, threshold_days: Optional[int] = None) -> bool:
        """
        Renew a certificate that expires within the threshold.

        Returns:
            bool: False without a certificate or when renewal failed; True when
            renewed or when expiry is still far enough away
        """
        if threshold_days is None:
            threshold_days = current_app.config['SSL_RENEW_THRESHOLD_DAYS']

        expiry = self.get_certificate_expiry(domain)
        if expiry is None:
            logger.warning(f'No certificate to renew for {domain}')
            return False

        if expiry - datetime.utcnow() > timedelta(days=threshold_days):
            logger.info(f'Certificate for {domain} valid until {expiry:%Y-%m-%d}, renewal not needed')
            return True

        try:
            if self.provider == 'certbot':
                run_command(
                    [
                        current_app.config['CERTBOT_PATH'], 'renew',
                        '--cert-name', domain, '--force-renewal', '--non-interactive'
                    ],
                    timeout=current_app.config['CERT_ISSUE_TIMEOUT'],
                    provider='ssl'
                )
            else:
                self._issue(domain)
        except ProviderError as e:
            logger.error(f'Renewal for {domain} failed: {e.message}')
            return False

        logger.info(f'Certificate for {domain} renewed')
        return True

    def revoke_certificate(self, domain: str) -> bool:
        """Revoke and delete a certificate. Missing certificates count as revoked."""
        cert_path, key_path = self.certificate_paths(domain)
        if not os.path.exists(cert_path):
            return True

        try:
            if self.provider == 'certbot':
                run_command(
                    [
                        current_app.config['CERTBOT_PATH'], 'revoke',
                        '--cert-name', domain, '--delete-after-revoke', '--non-interactive'
                    ],
                    timeout=current_app.config['CERT_ISSUE_TIMEOUT'],
                    provider='ssl'
                )
            else:
                for path in (cert_path, key_path):
                    if os.path.exists(path):
                        os.remove(path)
        except (ProviderError, OSError) as e:
            logger.error(f'Revoking certificate for {domain} failed: {e}')
            return False

        logger.info(f'Certificate for {domain} revoked')
        return True

    # ==================== Inspection ====================

    def get_certificate_expiry(self, domain: str) -> Optional[datetime]:
        cert_path = self.certificate_paths(domain)[0]
        if not os.path.isfile(cert_path):
            return None
        try:
            result = run_command(
                ['openssl', 'x509', '-enddate', '-noout', '-in', cert_path],
                timeout=10,
                provider='ssl'
            )
            # notAfter=Jan  1 00:00:00 2026 GMT
            value = result.stdout.strip().split('=', 1)[1]
            return datetime.strptime(value, self.EXPIRY_FORMAT)
        except (ProviderError, IndexError, ValueError) as e:
            logger.warning(f'Cannot read expiry of {cert_path}: {e}')
            return None

    def is_certificate_valid(self, domain: str) -> bool:
        expiry = self.get_certificate_expiry(domain)
        return expiry is not None and expiry > datetime.utcnow()

    def _known_domains(self) -> List[str]:
        if self.provider == 'certbot':
            root = self.LETSENCRYPT_LIVE
            if not os.path.isdir(root):
                return []
            return sorted(d for d in os.listdir(root) if os.path.isdir(os.path.join(root, d)))

        root = current_app.config['SSL_CERT_DIR']
        if not os.path.isdir(root):
            return []
        return sorted(f[:-len('.crt')] for f in os.listdir(root) if f.endswith('.crt'))

    def get_expiring_certificates(self, threshold_days: int = 30) -> List[str]:
        """Domains whose certificate on disk expires within the threshold."""
        cutoff = datetime.utcnow() + timedelta(days=threshold_days)
        expiring = []
        for domain in self._known_domains():
            expiry = self.get_certificate_expiry(domain)
            if expiry is not None and expiry <= cutoff:
                expiring.append(domain)
        return expiring


# Singleton instance
ssl_service = SslService()
