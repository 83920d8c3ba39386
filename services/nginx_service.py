"""
Nginx Service
==============
Reverse-proxy virtual hosts routing each site domain to its container port.
"""

import logging
import os
from datetime import datetime
from typing import Dict, Optional

from flask import current_app

from errors import ProviderError
from services.process import run_command

logger = logging.getLogger(__name__)


class NginxService:
    """
    Service for per-domain Nginx configuration files.
    """
    
    # Config templates
    REVERSE_PROXY_TEMPLATE = """# Managed by SitePanel - {domain}
# Created: {created_at}

server {{
    listen 80;
    listen [::]:80;
    server_name {domain};

{location_block}
}}
"""

    SSL_TEMPLATE = """# Managed by SitePanel - {domain}
# Created: {created_at}

server {{
    listen 443 ssl http2;
    listen [::]:443 ssl http2;
    server_name {domain};

    ssl_certificate {ssl_certificate};
    ssl_certificate_key {ssl_key};
    ssl_session_timeout 1d;
    ssl_session_cache shared:SSL:50m;
    ssl_session_tickets off;

    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_prefer_server_ciphers off;

    add_header Strict-Transport-Security "max-age=63072000" always;

{location_block}
}}

# Redirect HTTP to HTTPS
server {{
    listen 80;
    listen [::]:80;
    server_name {domain};
    return 301 https://$server_name$request_uri;
}}
"""

    LOCATION_BLOCK = """    location / {{
        proxy_pass http://{target_host}:{target_port};
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection 'upgrade';
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_cache_bypass $http_upgrade;
    }}

    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;"""

    @property
    def sites_available(self) -> str:
        return current_app.config['NGINX_SITES_AVAILABLE']

    @property
    def sites_enabled(self) -> str:
        return current_app.config['NGINX_SITES_ENABLED']
    
    def _get_config_path(self, domain: str) -> str:
        return os.path.join(self.sites_available, f"{domain}.conf")
    
    def _get_enabled_path(self, domain: str) -> str:
        return os.path.join(self.sites_enabled, f"{domain}.conf")
    
    # ==================== Config Generation ====================
    
    def generate_config(
        self,
        domain: str,
        target_port: int,
        target_host: str = '127.0.0.1',
        ssl_certificate: Optional[str] = None,
        ssl_key: Optional[str] = None
    ) -> str:
        """
        Render a reverse proxy vhost, with a TLS server block when a
        certificate is given.
        """
        location_block = self.LOCATION_BLOCK.format(target_host=target_host, target_port=target_port)
        created_at = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        if ssl_certificate and ssl_key:
            return self.SSL_TEMPLATE.format(
                domain=domain,
                ssl_certificate=ssl_certificate,
                ssl_key=ssl_key,
                location_block=location_block,
                created_at=created_at
            )
        return self.REVERSE_PROXY_TEMPLATE.format(
            domain=domain,
            location_block=location_block,
            created_at=created_at
        )
    
    # ==================== Config Management ====================
    
    def create_site_config(
        self,
        domain: str,
        target_port: int,
        ssl_certificate: Optional[str] = None,
        ssl_key: Optional[str] = None
    ) -> Dict:
        """
        Write (or overwrite) the vhost for a domain.
        
        Returns:
            dict: Result with success status and config_path
        """
        if not target_port:
            return {'success': False, 'error': 'Target port is required'}

        config_path = self._get_config_path(domain)
        content = self.generate_config(domain, target_port, ssl_certificate=ssl_certificate, ssl_key=ssl_key)
        try:
            os.makedirs(self.sites_available, exist_ok=True)
            with open(config_path, 'w') as f:
                f.write(content)
        except OSError as e:
            return {'success': False, 'error': f'Cannot write {config_path}: {e}'}

        return {
            'success': True,
            'message': f'Config written: {config_path}',
            'config_path': config_path
        }
    
    def delete_config(self, domain: str) -> Dict:
        """Delete a domain's configuration and its enabled link."""
        try:
            config_path = self._get_config_path(domain)
            enabled_path = self._get_enabled_path(domain)
            
            if os.path.lexists(enabled_path):
                os.unlink(enabled_path)
            if os.path.exists(config_path):
                os.remove(config_path)
            
            return {'success': True, 'message': 'Config deleted'}
            
        except OSError as e:
            return {'success': False, 'error': str(e)}
    
    def enable_site(self, domain: str) -> Dict:
        """Enable a site by creating symlink in sites-enabled."""
        try:
            config_path = self._get_config_path(domain)
            enabled_path = self._get_enabled_path(domain)
            
            if not os.path.exists(config_path):
                return {'success': False, 'error': 'Config not found'}
            if os.path.lexists(enabled_path):
                return {'success': True, 'message': 'Site already enabled'}
            
            os.makedirs(self.sites_enabled, exist_ok=True)
            os.symlink(config_path, enabled_path)
            return {'success': True, 'message': 'Site enabled'}
            
        except OSError as e:
            return {'success': False, 'error': str(e)}
    
    # ==================== Nginx Control ====================
    
    def test_config(self) -> Dict:
        """Test Nginx configuration syntax."""
        try:
            run_command(['nginx', '-t'], timeout=10, provider='nginx')
            return {'success': True, 'message': 'Syntax OK'}
        except ProviderError as e:
            return {'success': False, 'error': e.message}
    
    def reload_nginx(self) -> Dict:
        """Test, then reload Nginx. Disabled by ``NGINX_RELOAD = False``."""
        if not current_app.config.get('NGINX_RELOAD', True):
            return {'success': True, 'message': 'Reload disabled'}

        test_result = self.test_config()
        if not test_result['success']:
            return test_result

        try:
            run_command(['systemctl', 'reload', 'nginx'], timeout=10, provider='nginx')
            return {'success': True, 'message': 'Nginx reloaded'}
        except ProviderError as e:
            return {'success': False, 'error': e.message}


# Singleton instance
nginx_service = NginxService()
