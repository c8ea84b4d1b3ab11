import pytest

from groomery.constants.permissions import Permission, SYSTEM_ROLES, default_permissions, permission_values
from groomery.errors import RoleExists, RoleNotFound, SystemRoleImmutable


def test_bootstrap_seeds_system_roles(services):
    docs = services.store.list('role-definitions')
    assert set(docs) == set(SYSTEM_ROLES)
    for name, doc in docs.items():
        assert doc['is_system'] is True
        assert doc['permissions'] == permission_values(default_permissions(name))
        assert doc['created_at']


def test_seeding_twice_is_a_noop(services):
    before = services.store.list('role-definitions')
    outcome = services.catalog.ensure_system_roles_exist()
    assert set(outcome.values()) == {'unchanged'}
    assert services.store.list('role-definitions') == before


def test_seeding_heals_system_role_and_keeps_created_at(services):
    doc = services.store.get('role-definitions/staff')
    doc['permissions'] = ['view_services']
    doc['description'] = 'Groomers on the floor'
    services.store.set('role-definitions/staff', doc)

    outcome = services.catalog.ensure_system_roles_exist()
    assert outcome['staff'] == 'updated'
    healed = services.store.get('role-definitions/staff')
    assert healed['permissions'] == permission_values(default_permissions('staff'))
    assert healed['created_at'] == doc['created_at']
    assert healed['description'] == 'Groomers on the floor'


def test_seeding_leaves_non_system_doc_alone(services):
    services.store.set('role-definitions/receptionist', {'name': 'receptionist', 'is_system': False,
                                                        'permissions': ['view_services']})
    outcome = services.catalog.ensure_system_roles_exist()
    assert outcome['receptionist'] == 'skipped'
    assert services.store.get('role-definitions/receptionist')['permissions'] == ['view_services']


def test_get_role_and_missing_role(services):
    manager = services.catalog.get_role('manager')
    assert manager.is_system and manager.allow_multi_branch
    assert manager.permissions == default_permissions('manager')
    with pytest.raises(RoleNotFound):
        services.catalog.get_role('ghost')


def test_system_roles_are_immutable(services):
    with pytest.raises(SystemRoleImmutable):
        services.catalog.update_role_definition('manager', ['view_reports'])
    assert services.catalog.get_role('manager').permissions == default_permissions('manager')


def test_update_missing_role(services):
    with pytest.raises(RoleNotFound):
        services.catalog.update_role_definition('ghost', ['view_reports'])


def test_create_and_update_custom_role_with_history(services):
    role = services.catalog.create_role('bather', ['view_appointments', 'bogus'], description='Bath station',
                                        actor='owner')
    assert role.permissions == {Permission.VIEW_APPOINTMENTS}
    assert not role.is_system
    with pytest.raises(RoleExists):
        services.catalog.create_role('bather', [])
    with pytest.raises(RoleExists):
        services.catalog.create_role('admin', [])
    with pytest.raises(ValueError):
        services.catalog.create_role('a/b', [])

    updated = services.catalog.update_role_definition('bather', ['view_appointments', 'view_services'],
                                                      actor='owner')
    assert updated.permissions == {Permission.VIEW_APPOINTMENTS, Permission.VIEW_SERVICES}
    assert updated.description == 'Bath station'
    assert updated.created_at == role.created_at

    entries = [v for _, v in services.history.entries_for_role('bather')]
    assert [e['type'] for e in entries] == ['create', 'update']
    assert entries[1]['previous_permissions'] == ['view_appointments']
    assert entries[1]['new_permissions'] == ['view_appointments', 'view_services']
    assert entries[1]['actor'] == 'owner'


def test_role_definitions_overlay_custom_roles(services):
    services.catalog.create_role('bather', ['view_services'])
    roles = services.catalog.get_role_definitions()
    assert list(roles) == sorted(roles)
    assert set(SYSTEM_ROLES) <= set(roles)
    assert roles['bather'].permissions == {Permission.VIEW_SERVICES}


def test_defaults_mode_serves_presets(services):
    services.catalog.use_defaults('store offline')
    assert services.catalog.get_role('staff').permissions == default_permissions('staff')
    assert set(services.catalog.get_role_definitions()) == set(SYSTEM_ROLES)
    with pytest.raises(RoleNotFound):
        services.catalog.get_role('bather')
