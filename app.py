"""
SitePanel - Site Hosting Control Panel
=======================================
Application factory with Flask, SocketIO and the site lifecycle services.
"""

import logging

import click
from flask import Flask, jsonify

from config import get_config
from database import db, init_db
from errors import PanelError
from extensions import login_manager, socketio

logger = logging.getLogger(__name__)


def create_app(config_class=None):
    """
    Application factory for creating Flask app.
    
    Args:
        config_class: Configuration class to use (optional)
    
    Returns:
        Flask application instance
    """
    app = Flask(__name__)
    
    # Load configuration
    if config_class is None:
        config_class = get_config()
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    problems = config_class.validate()
    if problems:
        raise RuntimeError('Invalid configuration: ' + '; '.join(problems))
    
    # Initialize extensions
    init_db(app)
    socketio.init_app(app, async_mode=app.config['SOCKETIO_ASYNC_MODE'])
    login_manager.init_app(app)

    from services.dispatcher import workflow_dispatcher
    workflow_dispatcher.init_app(app)
    
    @login_manager.user_loader
    def load_user(user_id):
        from models import User
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401
    
    # Register blueprints
    from blueprints.auth import auth_bp
    from blueprints.sites import sites_bp
    
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(sites_bp, url_prefix='/api/sites')
    
    @app.route('/health')
    def health():
        return {'status': 'ok'}
    
    # Error handlers
    @app.errorhandler(PanelError)
    def panel_error(error):
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return {'error': 'Not found'}, 404
    
    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return {'error': 'Internal server error'}, 500

    register_commands(app)
    return app


def register_commands(app):
    """CLI commands for scheduled maintenance (cron or systemd timers)."""

    @app.cli.command('purge-backups')
    def purge_backups():
        """Delete backups past their expiry date."""
        from services.site_service import site_service
        count = site_service.purge_expired_backups()
        click.echo(f'Purged {count} expired backup(s)')

    @app.cli.command('renew-certificates')
    @click.option('--days', default=30, show_default=True, help='Renew certificates expiring within N days')
    def renew_certificates(days):
        """Renew SSL certificates that are about to expire."""
        from services.domain_service import domain_service
        result = domain_service.renew_expiring_certificates(days)
        for name in result['renewed']:
            click.echo(f'renewed  {name}')
        for name in result['failed']:
            click.echo(f'FAILED   {name}')
        if result['failed']:
            raise SystemExit(1)

    @app.cli.command('create-admin')
    @click.option('--username', prompt=True)
    @click.option('--email', prompt=True)
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
    def create_admin(username, email, password):
        """Create an administrator account."""
        from models import User
        if User.query.filter_by(username=username).first():
            raise click.ClickException(f'User {username} already exists')
        db.session.add(User(username=username, email=email, password=password, is_admin=True))
        db.session.commit()
        click.echo(f'Admin {username} created')
