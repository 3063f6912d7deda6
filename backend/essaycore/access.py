"""Role and ownership checks applied at service boundaries."""
from typing import Optional

from .errors import PermissionDeniedError, ValidationError
from .models import User, UserRole


def assert_role(user: User, *roles: UserRole) -> User:
    """Fail with ValidationError unless the user holds one of ``roles``.

    Role is checked here rather than in the schema because it can change over
    a user's lifetime.
    """
    if user.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise ValidationError(
            f"User {user.id} has role {user.role.value}; expected {allowed}",
            entity="User", key=user.id, field="role",
        )
    return user


def require_owner_or_staff(actor: Optional[User], owner_id: str, entity: str, key: str) -> None:
    """Allow the owner, teachers and admins; None means a trusted internal caller."""
    if actor is None:
        return
    if actor.id == owner_id or actor.role in (UserRole.teacher, UserRole.admin):
        return
    raise PermissionDeniedError(f"Not allowed to access {entity} {key}", entity=entity, key=key)
