import logging

from groomery.constants.permissions import (
    ALL_PERMISSIONS, Permission, SYSTEM_ROLES, WILDCARD, default_permissions, expand_wildcard,
    is_valid_permission, permission_values, validate_permissions,
)


def test_validate_filters_unknown_tokens(caplog):
    with caplog.at_level(logging.WARNING):
        out = validate_permissions(['view_customers', 'not_a_real_permission'])
    assert out == {Permission.VIEW_CUSTOMERS}
    assert 'not_a_real_permission' in caplog.text


def test_validate_rejects_non_list_input():
    assert validate_permissions('view_customers') == set()
    assert validate_permissions(None) == set()
    assert validate_permissions(42) == set()
    assert validate_permissions([]) == set()


def test_validate_accepts_enum_members_and_unhashable_noise():
    out = validate_permissions([Permission.VIEW_REPORTS, 'view_reports', ['nested'], {'a': 1}, None])
    assert out == {Permission.VIEW_REPORTS}


def test_is_valid_permission():
    assert is_valid_permission('all')
    assert is_valid_permission(Permission.MANAGE_INVENTORY)
    assert not is_valid_permission('ALL')
    assert not is_valid_permission('view customers')
    assert not is_valid_permission(None)


def test_permission_values_are_sorted_strings():
    values = permission_values({Permission.VIEW_SERVICES, Permission.CANCEL_APPOINTMENTS})
    assert values == ['cancel_appointments', 'view_services']
    assert all(type(v) is str for v in values)


def test_wildcard_expands_to_catalog():
    assert expand_wildcard({WILDCARD}) == set(ALL_PERMISSIONS)
    assert expand_wildcard({Permission.VIEW_SERVICES}) == {Permission.VIEW_SERVICES}


def test_system_role_presets():
    assert set(SYSTEM_ROLES) == {'admin', 'manager', 'staff', 'receptionist'}
    assert default_permissions('admin') == ALL_PERMISSIONS
    assert SYSTEM_ROLES['admin'].allow_multi_branch
    assert SYSTEM_ROLES['manager'].allow_multi_branch
    assert not SYSTEM_ROLES['staff'].allow_multi_branch
    staff = default_permissions('staff')
    assert Permission.MANAGE_OWN_SCHEDULE in staff
    assert Permission.VIEW_FINANCIAL_REPORTS not in staff
    # Every non-admin preset is a subset of the catalog without the wildcard
    for name in ('manager', 'staff', 'receptionist'):
        assert WILDCARD not in default_permissions(name)
        assert default_permissions(name) <= ALL_PERMISSIONS
