"""
SitePanel Errors
=================
Exception taxonomy shared by services, the orchestrator and the HTTP layer.

Providers that report results as dicts tag failures with a ``kind`` so
callers can tell a missing resource from a failed operation.
"""

from typing import List, Optional

NOT_FOUND = 'not_found'
PROVIDER_ERROR = 'provider_error'


class PanelError(Exception):
    """Base class for all panel errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message, 'type': self.__class__.__name__}


class ValidationError(PanelError):
    """Request rejected before any side effect."""
    status_code = 400


class NotProvisionedError(ValidationError):
    """Site has no container reference yet."""


class NotFoundError(PanelError):
    status_code = 404


class WorkflowBusyError(PanelError):
    """Another workflow already holds the site."""
    status_code = 409

    def __init__(self, site_id: str, running: Optional[str] = None):
        message = f'Site {site_id} is busy'
        if running:
            message = f'{message} ({running} in progress)'
        super().__init__(message)
        self.site_id = site_id
        self.running = running


class InvalidTransitionError(PanelError):
    status_code = 409

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f'{entity} cannot move from {current} to {target}')
        self.current = current
        self.target = target


class ProviderError(PanelError):
    """An external subsystem (docker, mysql, ssl, filesystem) failed."""
    status_code = 502

    def __init__(self, message: str, provider: str = 'unknown'):
        super().__init__(message)
        self.provider = provider


class ProcessError(ProviderError):
    """External command exited non-zero or timed out."""

    def __init__(
        self,
        command: List[str],
        exit_code: Optional[int] = None,
        stderr: str = '',
        timed_out: bool = False,
        provider: str = 'process'
    ):
        name = command[0] if command else '?'
        if timed_out:
            message = f'{name} timed out'
        else:
            message = f'{name} exited with code {exit_code}: {stderr.strip()[:500]}'
        super().__init__(message, provider=provider)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out


def failure(kind: str, error: str) -> dict:
    """Build a failed result dict."""
    return {'success': False, 'kind': kind, 'error': error}
