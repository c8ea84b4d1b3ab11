from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

from .errors import AuthzError, CredentialsMissing

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _load_config(app: Flask, overrides: Optional[Dict[str, Any]]):
    app.config['APP_ENV'] = os.getenv('APP_ENV', 'production')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///groomery.db')
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY')
    app.config['ADMIN_EMAIL'] = os.getenv('ADMIN_EMAIL')
    app.config['ADMIN_EMAIL_DOMAIN'] = os.getenv('ADMIN_EMAIL_DOMAIN', 'groomery.in')
    app.config['DEFAULT_BRANCH_ID'] = os.getenv('DEFAULT_BRANCH_ID', 'main')
    app.config['PERMISSION_CACHE_TTL'] = float(os.getenv('PERMISSION_CACHE_TTL', '300'))
    app.config['AUTO_CREATE_SCHEMA'] = _env_bool('AUTO_CREATE_SCHEMA', False)
    app.config['BOOTSTRAP_ON_START'] = _env_bool('BOOTSTRAP_ON_START', True)
    app.config['BOOTSTRAP_MAX_ATTEMPTS'] = int(os.getenv('BOOTSTRAP_MAX_ATTEMPTS', '3'))
    app.config['BOOTSTRAP_RETRY_DELAY'] = float(os.getenv('BOOTSTRAP_RETRY_DELAY', '1.0'))
    app.config['REMOTE_TIMEOUT'] = float(os.getenv('REMOTE_TIMEOUT', '5.0'))
    app.config['USERS_PAGE_SIZE'] = int(os.getenv('USERS_PAGE_SIZE', '100'))
    app.config['USERS_MAX_PAGE_SIZE'] = int(os.getenv('USERS_MAX_PAGE_SIZE', '1000'))

    if overrides:
        # allow tests or callers to override default config values
        app.config.update(overrides)

    app.config['IS_DEVELOPMENT'] = app.config['APP_ENV'] == 'development'
    if not app.config.get('JWT_SECRET_KEY'):
        if not app.config['IS_DEVELOPMENT']:
            raise CredentialsMissing('JWT_SECRET_KEY must be set outside development')
        app.logger.warning('JWT_SECRET_KEY not set; using development secret')
        app.config['JWT_SECRET_KEY'] = 'dev-secret'


def _create_engine(db_url: str, timeout: float):
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        return create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False, "timeout": timeout},
            poolclass=StaticPool,
        )
    if db_url.startswith('sqlite'):
        return create_engine(db_url, echo=False, future=True, connect_args={"timeout": timeout})
    return create_engine(db_url, echo=False, future=True, pool_timeout=timeout, pool_pre_ping=True)


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)
    _load_config(app, config)

    # Database
    db_engine = _create_engine(app.config['DATABASE_URL'], app.config['REMOTE_TIMEOUT'])
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    if app.config['AUTO_CREATE_SCHEMA']:
        # Lightweight fallback for local runs and tests; real deployments run alembic upgrade
        from .models.store import Base
        import groomery.models.identity  # noqa: F401
        Base.metadata.create_all(db_engine)

    jwt.init_app(app)

    from .services.registry import build_services, get_services
    app.extensions['authz'] = build_services(app.config)

    @jwt.token_in_blocklist_loader
    def token_revoked(jwt_header, jwt_payload):
        return get_services().identity.is_token_revoked(jwt_payload.get('sub'), jwt_payload.get('iat'))

    @app.teardown_appcontext
    def remove_session(exc):
        if SessionLocal is not None:
            SessionLocal.remove()

    from .routes.iam import iam_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')

    @app.route('/healthz')
    def health():
        return {'status': 'ok', 'catalog': 'defaults' if app.extensions['authz'].catalog.using_defaults else 'store'}

    @app.errorhandler(AuthzError)
    def handle_authz_error(e):  # type: ignore
        if e.status >= 500:
            app.logger.error('%s: %s', e.title, e.detail)
        return e.to_payload(), e.status

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    if app.config['BOOTSTRAP_ON_START']:
        from .services.bootstrap import bootstrap
        with app.app_context():
            bootstrap(app)

    return app


def get_db():
    return SessionLocal()
