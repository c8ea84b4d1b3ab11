import pytest

from groomery.constants.permissions import Permission, default_permissions, permission_values
from groomery.errors import RemoteUnavailable, RoleNotFound, UserNotFound
from groomery.services.assignment import LOCK_STRIPES
from test_utils_seed import ensure_identity


def _active(mapping, branch_id):
    return [a for a in mapping.roles if a.branch_id == branch_id and a.is_active]


def test_manager_then_staff_at_same_branch(services):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    services.assignments.assign_role('u1', 'manager', branch_id='b1', actor='owner')
    resolved = services.assignments.assign_role('u1', 'staff', branch_id='b1', actor='owner')
    assert resolved.role == 'staff' and resolved.branch_id == 'b1'

    mapping = services.mappings.get('u1')
    assert mapping.default_branch_id == 'b1'
    assert [(a.role, a.is_active) for a in mapping.roles] == [('manager', False), ('staff', True)]

    history = [v for _, v in services.history.entries_for_user('u1')]
    assert len(history) == 2
    assert history[1]['previous_role'] == 'manager'
    assert history[1]['new_role'] == 'staff'
    assert history[1]['branch_id'] == 'b1'
    assert history[1]['type'] == 'role_change'
    assert history[1]['actor'] == 'owner'

    claims = services.identity.get_user('u1').custom_claims
    assert claims['role'] == 'staff'
    assert claims['branch_id'] == 'b1'
    assert claims['permissions'] == permission_values(default_permissions('staff'))


def test_reassigning_same_role_keeps_one_active_entry(services):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    for _ in range(3):
        services.assignments.assign_role('u1', 'receptionist', branch_id='b1')
    mapping = services.mappings.get('u1')
    assert len(_active(mapping, 'b1')) == 1
    assert services.resolver.resolve('u1').role == 'receptionist'


def test_unknown_role_or_user_writes_nothing(services):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    with pytest.raises(RoleNotFound):
        services.assignments.assign_role('u1', 'ghost')
    with pytest.raises(UserNotFound):
        services.assignments.assign_role('nobody', 'staff')
    assert services.mappings.get('u1') is None
    assert services.mappings.get('nobody') is None
    assert services.history.entries_for_user('u1') == []


def test_branch_defaults_and_second_branch(services):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    first = services.assignments.assign_role('u1', 'manager', is_multi_branch_enabled=True)
    assert first.branch_id == 'main'
    services.assignments.assign_role('u1', 'receptionist', branch_id='b2')
    mapping = services.mappings.get('u1')
    assert mapping.default_branch_id == 'main'
    assert mapping.is_multi_branch_enabled
    assert services.resolver.resolve('u1', 'b2').role == 'receptionist'
    assert services.resolver.resolve('u1').role == 'manager'
    # claims mirror the default branch view
    assert services.identity.get_user('u1').custom_claims['role'] == 'manager'


def test_multi_branch_flag_requires_role_support(services):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    services.assignments.assign_role('u1', 'staff', branch_id='b1', is_multi_branch_enabled=True)
    assert services.mappings.get('u1').is_multi_branch_enabled is False


def test_admin_assignment_carries_wildcard(services):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    resolved = services.assignments.assign_role('u1', 'admin', branch_id='b1')
    assert Permission.ALL in resolved.permissions
    claims = services.identity.get_user('u1').custom_claims
    assert 'all' in claims['permissions']
    assert claims['is_admin'] is True


def test_custom_permissions_are_filtered(services):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    resolved = services.assignments.assign_role('u1', 'staff', branch_id='b1',
                                                custom_permissions=['view_reports', 'bogus'])
    assert resolved.permissions == {Permission.VIEW_REPORTS}
    assert services.identity.get_user('u1').custom_claims['permissions'] == ['view_reports']
    assert services.mappings.get('u1').roles[-1].has_custom_permissions


def test_invalid_window_is_rejected(services):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    with pytest.raises(ValueError):
        services.assignments.assign_role('u1', 'staff', start_date='2030-01-02T00:00:00Z',
                                         end_date='2030-01-01T00:00:00Z')
    assert services.mappings.get('u1') is None


def test_assignment_revokes_existing_tokens(services):
    user = ensure_identity(services, 'u1@groomery.in', uid='u1')
    assert user.tokens_valid_after is None
    services.assignments.assign_role('u1', 'staff', branch_id='b1')
    assert services.identity.get_user('u1').tokens_valid_after is not None


def test_claims_failure_keeps_store_and_sync_repairs(services, monkeypatch):
    ensure_identity(services, 'u1@groomery.in', uid='u1')

    def unavailable(uid, payload):
        raise RemoteUnavailable('identity provider down')

    monkeypatch.setattr(services.identity, 'set_claims', unavailable)
    resolved = services.assignments.assign_role('u1', 'manager', branch_id='b1')
    assert resolved.role == 'manager'
    assert services.mappings.get('u1').roles[-1].role == 'manager'
    assert len(services.history.entries_for_user('u1')) == 1
    assert services.identity.get_user('u1').custom_claims is None

    monkeypatch.undo()
    assert services.sync.sync_one('u1') is True
    assert services.identity.get_user('u1').custom_claims['role'] == 'manager'


def test_list_users_with_roles(services):
    for uid in ('a1', 'a2', 'a3'):
        ensure_identity(services, f'{uid}@groomery.in', uid=uid)
    services.assignments.assign_role('a2', 'manager', branch_id='b1')

    page = services.assignments.list_users_with_roles(2)
    assert [u.uid for u in page.users] == ['a1', 'a2']
    assert page.page_token == 'a2'
    assert page.users[0].role == 'staff' and page.users[0].branch_id is None
    assert page.users[1].role == 'manager' and page.users[1].branch_id == 'b1'
    assert page.to_dict()['has_next_page'] is True

    rest = services.assignments.list_users_with_roles(2, page.page_token)
    assert [u.uid for u in rest.users] == ['a3']
    assert rest.to_dict()['has_next_page'] is False


def test_catalog_outage_does_not_downgrade_claims(services, monkeypatch):
    ensure_identity(services, 'u1@groomery.in', uid='u1')
    services.assignments.assign_role('u1', 'manager', branch_id='b1')
    services.cache.clear()

    def unavailable(name):
        raise RemoteUnavailable('store down')

    monkeypatch.setattr(services.catalog, 'role_permissions', unavailable)
    mapping = services.mappings.get('u1')
    assert services.assignments.refresh_claims('u1', mapping) is False
    assert services.identity.get_user('u1').custom_claims['role'] == 'manager'


def test_user_lock_is_stable_per_user(services):
    assignments = services.assignments
    assert assignments._user_lock('u1') is assignments._user_lock('u1')
    for n in range(500):
        assignments._user_lock(f'user-{n}')
    assert len(assignments._locks) == LOCK_STRIPES
