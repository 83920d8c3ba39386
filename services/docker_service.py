"""
Docker Service
===============
Site container management via the Docker SDK.
"""

import logging
import socket
from typing import Dict, List, Optional

import docker
from docker.errors import DockerException, NotFound, APIError
from flask import current_app

from errors import NOT_FOUND, PROVIDER_ERROR, ProviderError, failure

logger = logging.getLogger(__name__)


class DockerService:
    """
    Service for site containers: one container per site, all joined to a
    shared bridge network, with the site's ``public/`` mounted as web root.
    """

    PLATFORM_IMAGES = {
        'wordpress': 'wordpress:latest',
        'nginx': 'nginx:alpine',
        'apache': 'httpd:latest',
        'php': 'php:8-apache',
        'node': 'node:18-alpine',
        'hugo': 'klakegg/hugo:ext-alpine',
        'jekyll': 'jekyll/jekyll:latest',
    }
    DEFAULT_IMAGE = 'nginx:alpine'

    WEB_ROOT = '/var/www/html'
    SITE_LABEL = 'sitepanel.site_id'
    
    def __init__(self):
        """Initialize Docker client."""
        self._client = None
    
    @property
    def client(self):
        """Lazily initialize Docker client."""
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise ProviderError(f"Cannot connect to Docker: {e}", provider='docker')
        return self._client

    @property
    def stop_timeout(self) -> int:
        return current_app.config['CONTAINER_STOP_TIMEOUT']

    # ==================== Naming / Allocation ====================

    @classmethod
    def image_for_platform(cls, platform: Optional[str]) -> str:
        """Base image for a platform, falling back to the default image."""
        return cls.PLATFORM_IMAGES.get((platform or '').lower(), cls.DEFAULT_IMAGE)

    @staticmethod
    def container_name_for(site) -> str:
        return f"site-{site.hex_id}"

    @staticmethod
    def find_free_port() -> int:
        """Ask the OS for an unused TCP port. The port may be taken before use."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(('', 0))
            return sock.getsockname()[1]

    def ensure_network(self, name: Optional[str] = None) -> str:
        """Create the shared site network if it does not exist."""
        name = name or current_app.config['DOCKER_NETWORK']
        try:
            self.client.networks.get(name)
        except NotFound:
            try:
                self.client.networks.create(name, driver='bridge')
                logger.info(f'Created docker network {name}')
            except APIError as e:
                raise ProviderError(f'Cannot create network {name}: {e}', provider='docker')
        except APIError as e:
            raise ProviderError(f'Cannot inspect network {name}: {e}', provider='docker')
        return name

    # ==================== Container Lifecycle ====================

    def create_site_container(self, site) -> Dict:
        """
        Create and start the container for a site.
        
        Args:
            site: Site with ``site_directory`` already allocated
        
        Returns:
            dict: container_id, container_name, host_port, image

        Raises:
            ProviderError: if the container cannot be created
        """
        if not site.site_directory:
            raise ProviderError(f'Site {site.id} has no directory to mount', provider='docker')

        name = self.container_name_for(site)
        image = self.image_for_platform(site.platform)
        network = self.ensure_network()
        self._remove_stale(name)
        host_port = self.find_free_port()

        try:
            container = self.client.containers.run(
                image=image,
                name=name,
                detach=True,
                environment={
                    'SITE_ID': site.id,
                    'DOMAIN': site.domain,
                    'PLATFORM': site.platform,
                    'SITE_PATH': self.WEB_ROOT,
                },
                ports={'80/tcp': host_port},
                volumes={
                    f"{site.site_directory.rstrip('/')}/public": {'bind': self.WEB_ROOT, 'mode': 'rw'}
                },
                mem_limit=current_app.config['SITE_CONTAINER_MEMORY'],
                network=network,
                restart_policy={'Name': 'unless-stopped'},
                labels={self.SITE_LABEL: site.id}
            )
        except DockerException as e:
            raise ProviderError(f'Failed to create container {name}: {e}', provider='docker')

        logger.info(f'Container {name} ({image}) started on port {host_port}')
        return {
            'container_id': container.id,
            'container_name': container.name,
            'host_port': host_port,
            'image': image
        }

    def _remove_stale(self, name: str):
        """Remove a leftover container with the same name from an earlier attempt."""
        try:
            stale = self.client.containers.get(name)
        except NotFound:
            return
        except APIError as e:
            raise ProviderError(f'Cannot inspect container {name}: {e}', provider='docker')
        logger.warning(f'Removing stale container {name}')
        try:
            stale.remove(force=True, v=True)
        except APIError as e:
            raise ProviderError(f'Cannot remove stale container {name}: {e}', provider='docker')

    def start_container(self, container_id: str) -> Dict:
        """Start a container."""
        try:
            container = self.client.containers.get(container_id)
            container.start()
            return {'success': True, 'message': 'Container started'}
        except NotFound:
            return failure(NOT_FOUND, f'Container {container_id} not found')
        except APIError as e:
            return failure(PROVIDER_ERROR, str(e))
    
    def stop_container(self, container_id: str, timeout: Optional[int] = None) -> Dict:
        """Stop a container, waiting ``timeout`` seconds before it is killed."""
        try:
            container = self.client.containers.get(container_id)
            container.stop(timeout=timeout if timeout is not None else self.stop_timeout)
            return {'success': True, 'message': 'Container stopped'}
        except NotFound:
            return failure(NOT_FOUND, f'Container {container_id} not found')
        except APIError as e:
            return failure(PROVIDER_ERROR, str(e))
    
    def restart_container(self, container_id: str, timeout: Optional[int] = None) -> Dict:
        """Restart a container."""
        try:
            container = self.client.containers.get(container_id)
            container.restart(timeout=timeout if timeout is not None else self.stop_timeout)
            return {'success': True, 'message': 'Container restarted'}
        except NotFound:
            return failure(NOT_FOUND, f'Container {container_id} not found')
        except APIError as e:
            return failure(PROVIDER_ERROR, str(e))
    
    def remove_container(self, container_id: str) -> Dict:
        """Stop a container, then remove it together with its volumes."""
        try:
            container = self.client.containers.get(container_id)
            container.stop(timeout=self.stop_timeout)
            container.remove(force=True, v=True)
            logger.info(f'Container {container_id} removed')
            return {'success': True, 'message': 'Container removed'}
        except NotFound:
            return failure(NOT_FOUND, f'Container {container_id} not found')
        except APIError as e:
            return failure(PROVIDER_ERROR, str(e))

    # ==================== Inspection ====================
    
    def get_container_logs(self, container_id: str, tail: Optional[int] = None) -> Optional[str]:
        """
        Get the last lines of a container's log with timestamps.

        Returns:
            str or None if the container does not exist
        """
        tail = tail or current_app.config['CONTAINER_LOG_TAIL']
        try:
            container = self.client.containers.get(container_id)
            logs = container.logs(tail=tail, timestamps=True)
            return logs.decode('utf-8', errors='replace')
        except NotFound:
            return None
        except APIError as e:
            raise ProviderError(f'Cannot read logs of {container_id}: {e}', provider='docker')
    
    def exec_command(self, container_id: str, command: str) -> Dict:
        """
        Execute a shell command in a container.
        
        Returns:
            dict: Command output and exit code
        """
        try:
            container = self.client.containers.get(container_id)
            exit_code, output = container.exec_run(['/bin/sh', '-c', command])
            
            return {
                'success': exit_code == 0,
                'exit_code': exit_code,
                'output': output.decode('utf-8', errors='replace')
            }
            
        except NotFound:
            return failure(NOT_FOUND, f'Container {container_id} not found')
        except APIError as e:
            return failure(PROVIDER_ERROR, str(e))
    
    def get_container_info(self, container_id: str) -> Optional[Dict]:
        """Status, CPU/memory usage, ports and networks of a container."""
        try:
            container = self.client.containers.get(container_id)
            stats = container.stats(stream=False)
        except NotFound:
            return None
        except APIError as e:
            raise ProviderError(f'Cannot inspect {container_id}: {e}', provider='docker')

        cpu_percent = 0.0
        cpu_stats = stats.get('cpu_stats', {})
        precpu_stats = stats.get('precpu_stats', {})
        cpu_delta = cpu_stats.get('cpu_usage', {}).get('total_usage', 0) - \
                    precpu_stats.get('cpu_usage', {}).get('total_usage', 0)
        system_delta = cpu_stats.get('system_cpu_usage', 0) - precpu_stats.get('system_cpu_usage', 0)
        if system_delta > 0:
            cpu_count = cpu_stats.get('online_cpus', 1)
            cpu_percent = (cpu_delta / system_delta) * cpu_count * 100.0

        mem_usage = stats.get('memory_stats', {}).get('usage', 0)
        mem_limit = stats.get('memory_stats', {}).get('limit', 0)
        mem_percent = (mem_usage / mem_limit) * 100.0 if mem_limit else 0.0

        network_settings = container.attrs.get('NetworkSettings', {})
        ports = []
        for port, bindings in (network_settings.get('Ports') or {}).items():
            for b in bindings or []:
                ports.append(f"{b.get('HostPort', '?')}:{port}")

        return {
            'id': container.id,
            'name': container.name,
            'status': container.status,
            'image': container.image.tags[0] if container.image.tags else 'unknown',
            'cpu_percent': round(cpu_percent, 2),
            'memory_usage': mem_usage,
            'memory_limit': mem_limit,
            'memory_percent': round(mem_percent, 2),
            'ports': ports,
            'networks': list((network_settings.get('Networks') or {}).keys())
        }

    def list_site_containers(self) -> List[Dict]:
        """All containers created for sites, including stopped ones."""
        try:
            containers = self.client.containers.list(all=True, filters={'label': self.SITE_LABEL})
        except APIError as e:
            raise ProviderError(f'Cannot list containers: {e}', provider='docker')
        return [
            {
                'id': c.id,
                'name': c.name,
                'status': c.status,
                'site_id': c.labels.get(self.SITE_LABEL)
            }
            for c in containers
        ]

    # ==================== Resources ====================

    def update_resources(
        self,
        container_id: str,
        memory_limit: Optional[str] = None,
        cpu_limit: Optional[float] = None
    ) -> Dict:
        """
        Change memory and CPU limits of a running container.

        Args:
            memory_limit: Docker memory string, e.g. '512m'
            cpu_limit: Number of CPUs, e.g. 0.5
        """
        kwargs = {}
        if memory_limit:
            kwargs['mem_limit'] = memory_limit
            kwargs['memswap_limit'] = -1
        if cpu_limit:
            kwargs['cpu_period'] = 100000
            kwargs['cpu_quota'] = int(cpu_limit * 100000)
        if not kwargs:
            return {'success': True, 'message': 'Nothing to update'}

        try:
            container = self.client.containers.get(container_id)
            container.update(**kwargs)
            return {'success': True, 'message': 'Resources updated'}
        except NotFound:
            return failure(NOT_FOUND, f'Container {container_id} not found')
        except APIError as e:
            return failure(PROVIDER_ERROR, str(e))


# Singleton instance
docker_service = DockerService()
