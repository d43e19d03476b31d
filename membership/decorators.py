"""
Custom route decorators for access control.

- member_required: a valid bearer credential for an active member.
- admin_required: member_required + role == "admin".

Both raise PortalError subclasses, so callers get JSON 401/403 from the
app-level error handler.
"""

from functools import wraps

from flask_login import current_user, login_required

from membership.errors import Forbidden

member_required = login_required


def admin_required(f):
    """Require a valid credential + admin role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            raise Forbidden("Unauthorized: Admin access required")
        return f(*args, **kwargs)

    return decorated
