import importlib.util, json, pathlib

from groomery.constants.permissions import permission_values, default_permissions
from test_utils_seed import ensure_identity

SCRIPT = pathlib.Path(__file__).resolve().parents[1] / 'scripts' / 'manage_roles.py'


def _load_script():
    module_spec = importlib.util.spec_from_file_location('manage_roles', SCRIPT)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def test_seed_reports_unchanged_roles(app_instance, capsys):
    manage = _load_script()
    assert manage.main(['seed'], app=app_instance) == 0
    out = capsys.readouterr().out
    assert '[INFO] manager: unchanged' in out


def test_show_roles_json(app_instance, capsys):
    manage = _load_script()
    assert manage.main(['show-roles', '--json'], app=app_instance) == 0
    roles = json.loads(capsys.readouterr().out)
    assert roles['staff'] == permission_values(default_permissions('staff'))


def test_show_roles_table(app_instance, capsys):
    manage = _load_script()
    manage.main(['show-roles'], app=app_instance)
    out = capsys.readouterr().out
    assert out.splitlines()[0].startswith('Role')
    assert 'receptionist' in out


def test_setup_admin_and_rejection(app_instance, services, capsys):
    manage = _load_script()
    assert manage.main(['setup-admin', 'lead@groomery.in'], app=app_instance) == 0
    assert services.identity.get_user_by_email('lead@groomery.in').custom_claims['role'] == 'admin'
    assert manage.main(['setup-admin', 'lead@example.com'], app=app_instance) == 2
    assert '[ERROR] Administrator Email Rejected' in capsys.readouterr().out


def test_sync_command(app_instance, services, capsys):
    manage = _load_script()
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    assert manage.main(['sync', '--page-size', '5'], app=app_instance) == 0
    assert 'checked=1 repaired=1 failed=0' in capsys.readouterr().out
    assert services.identity.get_user('u1').custom_claims['role'] == 'staff'
