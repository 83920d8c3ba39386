"""
Deployment Ledger
==================
Append-only record of orchestration runs.

Every workflow invocation opens exactly one fresh Deployment row and moves
it through ``pending -> running -> completed | failed``. Each transition is
committed before the workflow continues, so the row doubles as the recovery
checkpoint, and is pushed to Socket.IO clients as ``deployment_update``.
"""

import logging
from datetime import datetime
from typing import List, Optional

from database import db
from errors import InvalidTransitionError, NotFoundError, ValidationError
from extensions import socketio
from models import Deployment

logger = logging.getLogger(__name__)


class DeploymentLedger:
    """Creates Deployment rows and enforces their monotonic status."""

    TRANSITIONS = {
        Deployment.STATUS_PENDING: {Deployment.STATUS_RUNNING, Deployment.STATUS_FAILED},
        # running -> running records step progress
        Deployment.STATUS_RUNNING: {
            Deployment.STATUS_RUNNING, Deployment.STATUS_COMPLETED, Deployment.STATUS_FAILED
        },
        Deployment.STATUS_COMPLETED: set(),
        Deployment.STATUS_FAILED: set(),
    }

    EVENT = 'deployment_update'

    def open(self, site_id: str, deployment_type: str, actor, message: Optional[str] = None) -> Deployment:
        """Create a pending Deployment for one workflow run."""
        if deployment_type not in Deployment.TYPES:
            raise ValidationError(f'Unknown deployment type: {deployment_type}')

        deployment = Deployment(
            site_id=site_id,
            user_id=actor.user_id,
            initiated_by=actor.name,
            deployment_type=deployment_type,
            status=Deployment.STATUS_PENDING,
            message=message
        )
        self._append_log(deployment, f'{deployment_type} requested by {actor.name}')
        db.session.add(deployment)
        db.session.commit()
        self._publish(deployment)
        return deployment

    def start(self, deployment: Deployment, message: Optional[str] = None) -> Deployment:
        return self._transition(deployment, Deployment.STATUS_RUNNING, message)

    def progress(self, deployment: Deployment, message: str) -> Deployment:
        """Record a step of a running deployment."""
        if deployment.status != Deployment.STATUS_RUNNING:
            raise InvalidTransitionError('Deployment', deployment.status, Deployment.STATUS_RUNNING)
        return self._transition(deployment, Deployment.STATUS_RUNNING, message)

    def complete(self, deployment: Deployment, message: Optional[str] = None) -> Deployment:
        return self._transition(deployment, Deployment.STATUS_COMPLETED, message)

    def fail(self, deployment: Deployment, message: str) -> Deployment:
        return self._transition(deployment, Deployment.STATUS_FAILED, message)

    def _transition(self, deployment: Deployment, status: str, message: Optional[str]) -> Deployment:
        current = deployment.status
        if status not in self.TRANSITIONS.get(current, set()):
            raise InvalidTransitionError('Deployment', current, status)

        now = datetime.utcnow()
        if status == Deployment.STATUS_RUNNING and deployment.started_at is None:
            deployment.started_at = now
        if status in Deployment.TERMINAL:
            deployment.completed_at = now

        deployment.status = status
        if message is not None:
            deployment.message = message
            self._append_log(deployment, message, now)
        db.session.commit()

        logger.info(f'Deployment {deployment.id} ({deployment.deployment_type}) {status}: {message or ""}')
        self._publish(deployment)
        return deployment

    @staticmethod
    def _append_log(deployment: Deployment, line: str, when: Optional[datetime] = None):
        stamp = (when or datetime.utcnow()).strftime('%Y-%m-%d %H:%M:%S')
        entry = f'[{stamp}] {line}'
        deployment.log_output = f'{deployment.log_output}\n{entry}' if deployment.log_output else entry

    def _publish(self, deployment: Deployment):
        try:
            socketio.emit(self.EVENT, deployment.to_dict())
        except Exception as e:
            logger.warning(f'Could not publish deployment {deployment.id}: {e}')

    # ==================== Queries ====================

    def get(self, deployment_id: str) -> Deployment:
        deployment = db.session.get(Deployment, deployment_id)
        if deployment is None:
            raise NotFoundError(f'Deployment {deployment_id} not found')
        return deployment

    def for_site(self, site_id: str, limit: int = 50) -> List[Deployment]:
        return (
            Deployment.query
            .filter_by(site_id=site_id)
            .order_by(Deployment.created_at.desc())
            .limit(limit)
            .all()
        )

    def latest(self, site_id: str, deployment_type: Optional[str] = None) -> Optional[Deployment]:
        query = Deployment.query.filter_by(site_id=site_id)
        if deployment_type:
            query = query.filter_by(deployment_type=deployment_type)
        return query.order_by(Deployment.created_at.desc()).first()


# Singleton instance
deployment_ledger = DeploymentLedger()
