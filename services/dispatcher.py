"""
Workflow Dispatcher
====================
Runs orchestration workflows as Socket.IO background tasks with per-site
single flight: while a workflow holds a site id, any other workflow for the
same site is rejected with ``WorkflowBusyError``. Completion is observed
through the Deployment ledger, not through the handle.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from flask import current_app, has_app_context

from errors import WorkflowBusyError
from extensions import socketio

logger = logging.getLogger(__name__)

Keys = Union[str, Iterable[str]]


class WorkflowHandle:
    """Returned by ``submit``; observable but not joinable."""

    def __init__(self, name: str, keys: Tuple[str, ...]):
        self.id = str(uuid.uuid4())
        self.name = name
        self.keys = keys
        self.submitted_at = datetime.utcnow()
        self.done = False
        self.error = None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'keys': list(self.keys),
            'submitted_at': self.submitted_at.isoformat(),
            'done': self.done,
            'error': self.error
        }


class WorkflowDispatcher:
    def __init__(self, spawn: Optional[Callable] = None):
        self._spawn = spawn
        self._active: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._app = None

    def init_app(self, app):
        self._app = app
        app.extensions['workflow_dispatcher'] = self

    @staticmethod
    def _normalize(keys: Keys) -> Tuple[str, ...]:
        if isinstance(keys, str):
            return (keys,)
        return tuple(dict.fromkeys(keys))

    def _acquire(self, keys: Tuple[str, ...], name: str):
        with self._lock:
            for key in keys:
                if key in self._active:
                    raise WorkflowBusyError(key, self._active[key])
            for key in keys:
                self._active[key] = name

    def _release(self, keys: Tuple[str, ...]):
        with self._lock:
            for key in keys:
                self._active.pop(key, None)

    def is_busy(self, site_id: str) -> bool:
        with self._lock:
            return site_id in self._active

    def running(self, site_id: str) -> Optional[str]:
        """Name of the workflow holding a site, if any."""
        with self._lock:
            return self._active.get(site_id)

    @contextmanager
    def hold(self, keys: Keys, name: str):
        """Hold site ids for a synchronous workflow."""
        keys = self._normalize(keys)
        self._acquire(keys, name)
        try:
            yield
        finally:
            self._release(keys)

    def _get_spawn(self, app) -> Callable:
        if self._spawn is not None:
            return self._spawn
        if app is not None and app.config.get('WORKFLOWS_INLINE'):
            return lambda fn, *args: fn(*args)
        return socketio.start_background_task

    def submit(self, keys: Keys, name: str, func: Callable, *args, **kwargs) -> WorkflowHandle:
        """
        Dispatch a workflow in the background.

        Raises:
            WorkflowBusyError: if any of the site ids is already held
        """
        keys = self._normalize(keys)
        app = current_app._get_current_object() if has_app_context() else self._app

        self._acquire(keys, name)
        handle = WorkflowHandle(name, keys)
        try:
            self._get_spawn(app)(self._run, app, handle, func, args, kwargs)
        except Exception:
            self._release(keys)
            raise

        logger.info(f"Dispatched {name} workflow for {', '.join(keys)}")
        return handle

    def _run(self, app, handle: WorkflowHandle, func: Callable, args, kwargs):
        try:
            if has_app_context():
                func(*args, **kwargs)
            else:
                with app.app_context():
                    func(*args, **kwargs)
        except Exception as e:
            handle.error = str(e)
            logger.exception(f'{handle.name} workflow for {", ".join(handle.keys)} crashed')
        finally:
            handle.done = True
            self._release(handle.keys)


# Singleton instance
workflow_dispatcher = WorkflowDispatcher()
