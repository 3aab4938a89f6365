"""
Permission decorators for role-based access control.
Permissions are looked up from the ROLE_PERMISSIONS config map.
"""

from functools import wraps
from flask import g, current_app

from salesdesk.exceptions import ForbiddenError, UnauthorizedError


def role_permissions(role):
    """
    Permissions granted to a role by the ROLE_PERMISSIONS config map.

    Returns the string 'all' for unrestricted roles, otherwise a list.
    """
    permission_map = current_app.config.get('ROLE_PERMISSIONS', {})
    return permission_map.get(role, [])


def has_permission(role, permission_name):
    """Check if a role grants a permission."""
    if not role:
        return False
    permissions = role_permissions(role)
    if permissions == 'all':
        return True
    return permission_name in permissions


def require_permission(permission_name):
    """
    Decorator to check for specific permission.

    Usage:
        @require_permission('sales.create')
        @require_permission('sales.payment')

    Args:
        permission_name: Name of the required permission

    Returns:
        Decorator function
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Must be logged in
            if not g.get('user'):
                raise UnauthorizedError()

            user_role = g.get('user_role')
            if not has_permission(user_role, permission_name):
                current_app.logger.warning(
                    f"Permission denied: user={g.get('user_id')} role={user_role} permission={permission_name}"
                )
                raise ForbiddenError(f'Missing permission: {permission_name}')

            return f(*args, **kwargs)

        return decorated_function
    return decorator
