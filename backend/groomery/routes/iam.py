from flask import Blueprint, request, abort, current_app
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from groomery.constants.permissions import Permission
from groomery.config.pagination import normalize_page_size, normalize_page_token
from groomery.decorators.auth import require_permissions
from groomery.models.store import utcnow
from groomery.services.assignment import UserWithRole
from groomery.services.policy import assert_branch_access
from groomery.services.registry import get_services

iam_bp = Blueprint('iam', __name__)


def _page_args(source):
    try:
        page_size = normalize_page_size(
            source.get('page_size'),
            default=current_app.config['USERS_PAGE_SIZE'],
            maximum=current_app.config['USERS_MAX_PAGE_SIZE'],
        )
    except ValueError as e:
        abort(400, description=str(e))
    return page_size, normalize_page_token(source.get('page_token'))


def _resolved_payload(user_id, resolved):
    payload = resolved.to_dict()
    payload['user_id'] = user_id
    payload['source'] = resolved.source
    return payload


@iam_bp.post('/auth/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    services = get_services()
    user = services.identity.verify_password(email, password)
    if not user:
        abort(401, description='invalid credentials')
    services.identity.record_sign_in(user.uid)
    # Tokens carry the identity provider's claims; drift is repaired by the synchronizer
    claims = dict(user.custom_claims or services.resolver.resolve(user.uid).to_claims())
    mapping = services.mappings.get(user.uid)
    if mapping is not None and mapping.is_multi_branch_enabled:
        claims['branch_ids'] = sorted({a.branch_id for a in mapping.effective_assignments(utcnow())})
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.uid), additional_claims=claims)
    return {'access_token': token}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    user_id = get_jwt_identity()
    branch_id = request.args.get('branch_id')
    if branch_id:
        assert_branch_access(branch_id)
    services = get_services()
    user = services.identity.get_user(user_id)
    resolved = services.resolver.resolve(user_id, branch_id or None)
    payload = UserWithRole.build(user, resolved).to_dict()
    payload['source'] = resolved.source
    return payload


# --- Role definitions ---

@iam_bp.get('/roles')
@require_permissions(Permission.ALL)
def list_roles():
    roles = get_services().catalog.get_role_definitions()
    return {'data': [r.to_dict() for r in roles.values()]}


@iam_bp.post('/roles')
@require_permissions(Permission.ALL)
def create_role():
    data = request.json or {}
    name = data.get('name')
    if not name:
        abort(400, description='name required')
    permissions = data.get('permissions') or []
    if not isinstance(permissions, list):
        abort(400, description='permissions must be a list')
    try:
        role = get_services().catalog.create_role(
            name,
            permissions,
            description=data.get('description') or '',
            allow_multi_branch=bool(data.get('allow_multi_branch', False)),
            branch_specific_permissions=bool(data.get('branch_specific_permissions', False)),
            actor=get_jwt_identity(),
        )
    except ValueError as e:
        abort(400, description=str(e))
    return role.to_dict(), 201


@iam_bp.put('/roles/<name>')
@require_permissions(Permission.ALL)
def update_role(name: str):
    data = request.json or {}
    permissions = data.get('permissions')
    if not isinstance(permissions, list):
        abort(400, description='permissions list required')
    role = get_services().catalog.update_role_definition(
        name, permissions, description=data.get('description'), actor=get_jwt_identity(),
    )
    return role.to_dict()


# --- Users ---

@iam_bp.get('/users')
@require_permissions(Permission.ALL)
def list_users():
    page_size, page_token = _page_args(request.args)
    return get_services().assignments.list_users_with_roles(page_size, page_token).to_dict()


@iam_bp.get('/users/<user_id>/role')
@require_permissions(Permission.ALL)
def get_user_role(user_id: str):
    services = get_services()
    services.identity.get_user(user_id)
    resolved = services.resolver.resolve(user_id, request.args.get('branch_id') or None)
    return _resolved_payload(user_id, resolved)


@iam_bp.put('/users/<user_id>/role')
@require_permissions(Permission.ALL)
def set_user_role(user_id: str):
    data = request.json or {}
    role = data.get('role')
    if not role:
        abort(400, description='role required')
    custom = data.get('custom_permissions')
    if custom is not None and not isinstance(custom, list):
        abort(400, description='custom_permissions must be a list')
    try:
        resolved = get_services().assignments.assign_role(
            user_id,
            role,
            branch_id=data.get('branch_id'),
            custom_permissions=custom,
            is_multi_branch_enabled=data.get('is_multi_branch_enabled'),
            start_date=data.get('start_date'),
            end_date=data.get('end_date'),
            actor=get_jwt_identity(),
        )
    except ValueError as e:
        abort(400, description=str(e))
    return _resolved_payload(user_id, resolved)


@iam_bp.get('/users/<user_id>/history')
@require_permissions(Permission.ALL)
def user_role_history(user_id: str):
    entries = get_services().history.entries_for_user(user_id)
    return {'data': [dict(value, id=entry_id) for entry_id, value in entries]}


# --- Claims synchronisation ---

@iam_bp.post('/users/<user_id>/sync')
@require_permissions(Permission.ALL)
def sync_user(user_id: str):
    repaired = get_services().sync.sync_one(user_id)
    return {'user_id': user_id, 'repaired': repaired}


@iam_bp.post('/sync')
@require_permissions(Permission.ALL)
def sync_all():
    data = request.get_json(silent=True) or {}
    page_size, page_token = _page_args(data)
    max_pages = data.get('max_pages')
    if max_pages is not None and (not isinstance(max_pages, int) or max_pages < 1):
        abort(400, description='max_pages must be a positive int')
    report = get_services().sync.sync_all(page_size=page_size, page_token=page_token, max_pages=max_pages)
    return report.to_dict()
