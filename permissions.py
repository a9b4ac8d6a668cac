from functools import wraps
from flask_login import current_user
from flask import abort

from models import ROLE_SUPER_ADMIN


def roles_required(*roles):
    """Role gate that respects User.has_role() normalization.

    - SUPER_ADMIN → always allowed.
    - Otherwise, user must match one of the required roles.
    """

    allowed_roles = [str(r).strip() for r in roles if r]

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)

            if current_user.has_role(ROLE_SUPER_ADMIN):
                return f(*args, **kwargs)

            for r in allowed_roles:
                if current_user.has_role(r):
                    return f(*args, **kwargs)

            abort(403)

        return decorated_function

    return decorator


def reviewer_required(f):
    """Allow users holding at least one reviewer capability (or admins)."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if current_user.is_admin or any((
            current_user.can_be_mentor,
            current_user.can_be_supervisor,
            current_user.can_be_ka_unit,
            current_user.can_be_manager,
        )):
            return f(*args, **kwargs)
        abort(403)

    return decorated_function
