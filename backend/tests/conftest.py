import os, sys, pytest
# Ensure backend directory is on path so 'groomery' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from groomery import create_app
from groomery.services.registry import get_services

BASE_CONFIG = {
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'test-secret',
    'APP_ENV': 'production',
    'ADMIN_EMAIL': None,
    'AUTO_CREATE_SCHEMA': True,
    'BOOTSTRAP_RETRY_DELAY': 0,
}


def make_app(**overrides):
    cfg = dict(BASE_CONFIG)
    cfg.update(overrides)
    return create_app(cfg)


@pytest.fixture()
def app_instance():
    # Fresh in-memory database per test; bootstrap seeds the system roles
    app = make_app()
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


@pytest.fixture()
def dev_app():
    app = make_app(APP_ENV='development')
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


@pytest.fixture()
def services(app_instance):
    return get_services(app_instance)


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()
