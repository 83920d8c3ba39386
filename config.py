"""
SitePanel Configuration Module
===============================
Centralized configuration for the application.
"""

import os
import secrets

# Base directory of the application
BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    """Base configuration class."""
    
    # Flask
    SECRET_KEY = os.environ.get('SITEPANEL_SECRET_KEY') or secrets.token_hex(32)
    DEBUG = os.environ.get('SITEPANEL_DEBUG', 'False').lower() == 'true'
    TESTING = False
    LOG_LEVEL = os.environ.get('SITEPANEL_LOG_LEVEL', 'INFO')
    
    # Server
    HOST = os.environ.get('SITEPANEL_HOST', '0.0.0.0')
    PORT = int(os.environ.get('SITEPANEL_PORT', 8888))
    SOCKETIO_ASYNC_MODE = 'eventlet'
    
    # Panel database
    DATABASE_PATH = os.path.join(BASE_DIR, 'data', 'sitepanel.db')
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'SITEPANEL_DATABASE_URI', f'sqlite:///{DATABASE_PATH}'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    
    # Session
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours
    
    # Sites
    SITES_ROOT = os.environ.get('SITEPANEL_SITES_ROOT', '/var/www/sites')
    TEMPLATES_ROOT = os.environ.get('SITEPANEL_TEMPLATES_ROOT', '/templates')
    MAX_SITES_PER_USER = int(os.environ.get('SITEPANEL_MAX_SITES_PER_USER', 50))
    DEFAULT_STORAGE_LIMIT_GB = 10
    
    # Backups
    BACKUP_ROOT = os.environ.get('SITEPANEL_BACKUP_ROOT', '/var/backups/sitepanel')
    BACKUP_RETENTION_DAYS = int(os.environ.get('SITEPANEL_BACKUP_RETENTION_DAYS', 30))
    
    # Docker
    DOCKER_NETWORK = os.environ.get('SITEPANEL_DOCKER_NETWORK', 'sitepanel-sites')
    SITE_CONTAINER_MEMORY = os.environ.get('SITEPANEL_CONTAINER_MEMORY', '512m')
    CONTAINER_STOP_TIMEOUT = 10
    CONTAINER_LOG_TAIL = 100
    
    # Tenant databases (MySQL)
    SITE_DB_ADMIN_URL = os.environ.get(
        'SITEPANEL_SITE_DB_ADMIN_URL', 'mysql+pymysql://root@mysql:3306/mysql'
    )
    SITE_DB_HOST = os.environ.get('SITEPANEL_SITE_DB_HOST', 'mysql')
    SITE_DB_PORT = int(os.environ.get('SITEPANEL_SITE_DB_PORT', 3306))
    MYSQLDUMP_PATH = os.environ.get('SITEPANEL_MYSQLDUMP_PATH', 'mysqldump')
    MYSQL_CLIENT_PATH = os.environ.get('SITEPANEL_MYSQL_CLIENT_PATH', 'mysql')
    
    # SSL
    SSL_PROVIDER = os.environ.get('SITEPANEL_SSL_PROVIDER', 'self-signed')  # self-signed, certbot
    SSL_CERT_DIR = os.environ.get('SITEPANEL_SSL_CERT_DIR', '/etc/ssl/sitepanel/certs')
    SSL_KEY_DIR = os.environ.get('SITEPANEL_SSL_KEY_DIR', '/etc/ssl/sitepanel/private')
    SSL_HTTP_TIMEOUT = 10
    SSL_RENEW_THRESHOLD_DAYS = 30
    CERTBOT_PATH = '/usr/bin/certbot'
    CERT_ISSUE_TIMEOUT = 120
    
    # DNS
    DNS_LOOKUP_TIMEOUT = 10
    DNS_CHALLENGE_PREFIX = '_sitepanel-challenge'
    
    # Nginx Paths
    NGINX_SITES_AVAILABLE = '/etc/nginx/sites-available'
    NGINX_SITES_ENABLED = '/etc/nginx/sites-enabled'
    NGINX_RELOAD = True
    
    # External processes (tar, mysqldump, install scripts)
    PROCESS_TIMEOUT = 600
    
    # Workflows run on socketio background tasks unless inline
    WORKFLOWS_INLINE = False

    @staticmethod
    def validate():
        """Check required settings. Returns a list of problems."""
        return []


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SITES_ROOT = os.path.join(BASE_DIR, 'data', 'sites')
    BACKUP_ROOT = os.path.join(BASE_DIR, 'data', 'backups')
    SSL_CERT_DIR = os.path.join(BASE_DIR, 'data', 'ssl', 'certs')
    SSL_KEY_DIR = os.path.join(BASE_DIR, 'data', 'ssl', 'private')
    NGINX_RELOAD = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False

    @staticmethod
    def validate():
        problems = []
        if not os.environ.get('SITEPANEL_SECRET_KEY'):
            problems.append('SITEPANEL_SECRET_KEY is not set')
        if not os.environ.get('SITEPANEL_SITE_DB_ADMIN_URL'):
            problems.append('SITEPANEL_SITE_DB_ADMIN_URL is not set')
        return problems


class TestingConfig(Config):
    """Testing configuration: in-memory database, inline workflows."""
    TESTING = True
    SECRET_KEY = 'test-secret'
    DATABASE_PATH = None
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SOCKETIO_ASYNC_MODE = 'threading'
    WORKFLOWS_INLINE = True
    NGINX_RELOAD = False
    SSL_HTTP_TIMEOUT = 1
    DNS_LOOKUP_TIMEOUT = 1


# Configuration mapping
config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def get_config():
    """Get configuration based on environment."""
    env = os.environ.get('SITEPANEL_ENV', 'production')
    return config_map.get(env, config_map['default'])
