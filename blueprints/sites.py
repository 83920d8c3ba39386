"""
Sites Blueprint
================
JSON API over the site lifecycle orchestrator.

Create, delete and clone answer 202 with the site in ``creating`` or
``deleting``; clients follow progress through the deployments endpoints or
the ``deployment_update`` Socket.IO event.
"""

from functools import wraps

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from database import db
from errors import NotFoundError, ValidationError
from models import Domain, Site
from services.actor import Actor
from services.database_service import database_service
from services.domain_service import domain_service
from services.site_service import site_service

sites_bp = Blueprint('sites', __name__)


def _actor():
    return Actor.for_user(current_user)


def site_access(f):
    """Load the site from the URL and check the current user may manage it."""
    @wraps(f)
    def decorated_function(site_id, *args, **kwargs):
        site = db.session.get(Site, site_id)
        if site is None or not current_user.can_manage(site):
            raise NotFoundError(f'Site {site_id} not found')
        return f(site, *args, **kwargs)
    return decorated_function


def _flag(data, key, default=True):
    value = data.get(key, default)
    if isinstance(value, str):
        return value.lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


# ==================== Sites ====================

@sites_bp.route('/')
@login_required
def list_sites():
    query = Site.query.filter(Site.status != Site.STATUS_DELETED)
    if not current_user.is_admin:
        query = query.filter_by(user_id=current_user.id)
    sites = query.order_by(Site.created_at.desc()).all()
    return jsonify({'sites': [s.to_dict() for s in sites]})


@sites_bp.route('/', methods=['POST'])
@login_required
def create_site():
    """
    Register a site and start provisioning it.

    JSON body:
        name, domain, platform: required
        template, description, storage_limit_gb: optional
        domain_type: 'subdomain' (default) or 'custom'
    """
    data = request.get_json() or {}
    storage = data.get('storage_limit_gb')
    try:
        storage = int(storage) if storage is not None else None
    except (TypeError, ValueError):
        raise ValidationError('storage_limit_gb must be an integer')

    site = site_service.register_site(
        _actor(),
        name=data.get('name'),
        domain=data.get('domain'),
        platform=data.get('platform'),
        template=data.get('template'),
        description=data.get('description'),
        storage_limit_gb=storage,
        domain_type=data.get('domain_type', Domain.TYPE_SUBDOMAIN)
    )
    return jsonify({'site': site.to_dict(include_relations=True)}), 202


@sites_bp.route('/<site_id>')
@login_required
@site_access
def get_site(site):
    data = site.to_dict(include_relations=True)
    latest = site_service.get_latest_deployment(site.id)
    data['latest_deployment'] = latest.to_dict() if latest else None
    return jsonify({'site': data})


@sites_bp.route('/<site_id>', methods=['DELETE'])
@login_required
@site_access
def delete_site(site):
    site_service.schedule_delete(site.id, _actor())
    return jsonify({'site': db.session.get(Site, site.id).to_dict()}), 202


@sites_bp.route('/<site_id>/retry', methods=['POST'])
@login_required
@site_access
def retry_site(site):
    site_service.retry_site(site.id, _actor())
    return jsonify({'site': db.session.get(Site, site.id).to_dict()}), 202


@sites_bp.route('/<site_id>/clone', methods=['POST'])
@login_required
@site_access
def clone_site(site):
    """
    JSON body:
        name, domain: required
        description: optional
        clone_files, clone_database: default true
    """
    data = request.get_json() or {}
    new_id = site_service.clone_site(
        site.id,
        _actor(),
        name=data.get('name'),
        domain=data.get('domain'),
        description=data.get('description'),
        clone_files=_flag(data, 'clone_files'),
        clone_database=_flag(data, 'clone_database')
    )
    return jsonify({'site_id': new_id}), 202


# ==================== Container ====================

@sites_bp.route('/<site_id>/restart', methods=['POST'])
@login_required
@site_access
def restart_site(site):
    site_service.restart_site(site.id, _actor())
    return jsonify({'success': True})


@sites_bp.route('/<site_id>/suspend', methods=['POST'])
@login_required
@site_access
def suspend_site(site):
    site_service.suspend_site(site.id, _actor())
    return jsonify({'success': True, 'status': Site.STATUS_SUSPENDED})


@sites_bp.route('/<site_id>/resume', methods=['POST'])
@login_required
@site_access
def resume_site(site):
    site_service.resume_site(site.id, _actor())
    return jsonify({'success': True, 'status': Site.STATUS_ACTIVE})


@sites_bp.route('/<site_id>/logs')
@login_required
@site_access
def site_logs(site):
    tail = request.args.get('tail', type=int)
    logs = site_service.get_site_logs(site.id, tail)
    if logs is None:
        return jsonify({'error': 'Site has no container'}), 404
    return jsonify({'logs': logs})


@sites_bp.route('/<site_id>/container')
@login_required
@site_access
def container_info(site):
    info = site_service.get_container_info(site.id)
    if info is None:
        return jsonify({'error': 'Site has no container'}), 404
    return jsonify({'container': info})


@sites_bp.route('/<site_id>/storage', methods=['POST'])
@login_required
@site_access
def refresh_storage(site):
    used = site_service.update_storage_usage(site.id)
    return jsonify({'storage_used_mb': used, 'storage_limit_gb': site.storage_limit_gb})


@sites_bp.route('/<site_id>/databases')
@login_required
@site_access
def list_databases(site):
    """Database credentials of a site with their current size and tables."""
    result = []
    for record in site.databases:
        data = record.to_dict(include_password=True)
        data['size_bytes'] = database_service.get_size(record.id)
        data['tables'] = database_service.list_tables(record.id)
        result.append(data)
    return jsonify({'databases': result})


# ==================== Backups ====================

@sites_bp.route('/<site_id>/backups')
@login_required
@site_access
def list_backups(site):
    return jsonify({'backups': [b.to_dict() for b in site_service.list_backups(site.id)]})


@sites_bp.route('/<site_id>/backups', methods=['POST'])
@login_required
@site_access
def create_backup(site):
    data = request.get_json() or {}
    backup_id = site_service.create_backup(
        site.id,
        _actor(),
        description=data.get('description'),
        include_files=_flag(data, 'include_files'),
        include_database=_flag(data, 'include_database')
    )
    return jsonify({'backup_id': backup_id}), 201


@sites_bp.route('/<site_id>/backups/<backup_id>/restore', methods=['POST'])
@login_required
@site_access
def restore_backup(site, backup_id):
    site_service.restore_backup(site.id, backup_id, _actor())
    return jsonify({'success': True})


# ==================== Deployments ====================

@sites_bp.route('/<site_id>/deployments')
@login_required
@site_access
def list_deployments(site):
    limit = request.args.get('limit', 50, type=int)
    deployments = site_service.get_deployments(site.id, limit)
    return jsonify({'deployments': [d.to_dict() for d in deployments]})


@sites_bp.route('/deployments/<deployment_id>')
@login_required
def get_deployment(deployment_id):
    deployment = site_service.get_deployment(deployment_id)
    if not current_user.can_manage(deployment.site):
        raise NotFoundError(f'Deployment {deployment_id} not found')
    return jsonify({'deployment': deployment.to_dict()})


# ==================== Domains ====================

def _site_domain(site, domain_id):
    domain = db.session.get(Domain, domain_id)
    if domain is None or domain.site_id != site.id:
        raise NotFoundError(f'Domain {domain_id} not found')
    return domain


@sites_bp.route('/<site_id>/domains/<domain_id>/verify', methods=['POST'])
@login_required
@site_access
def verify_domain(site, domain_id):
    domain = _site_domain(site, domain_id)
    verified = domain_service.verify_dns(domain.id)
    return jsonify({'dns_verified': verified, 'domain': domain.to_dict()})


@sites_bp.route('/<site_id>/domains/<domain_id>/ssl', methods=['POST'])
@login_required
@site_access
def setup_ssl(site, domain_id):
    domain = _site_domain(site, domain_id)
    if not domain_service.setup_ssl_certificate(domain.id):
        return jsonify({'success': False, 'error': 'Certificate could not be issued'}), 502
    return jsonify({'success': True, 'domain': domain.to_dict()})


@sites_bp.route('/<site_id>/domains/<domain_id>/ssl/renew', methods=['POST'])
@login_required
@site_access
def renew_ssl(site, domain_id):
    domain = _site_domain(site, domain_id)
    if not domain_service.renew_ssl_certificate(domain.id):
        return jsonify({'success': False, 'error': 'Certificate could not be renewed'}), 502
    return jsonify({'success': True, 'domain': domain.to_dict()})
