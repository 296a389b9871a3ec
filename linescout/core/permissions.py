from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from linescout.core.security_current import get_current_user
from linescout.models.user import User

USER_ROLES = {"customer", "agent", "admin"}
STAFF_ROLES = ("agent", "admin")


def is_admin(user: User) -> bool:
    return (user.role or "").lower() == "admin"


def require_roles(*allowed_roles: str) -> Callable[[User], User]:
    normalized_allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")
    unknown = normalized_allowed - USER_ROLES
    if unknown:
        raise ValueError(f"Unknown role(s): {', '.join(sorted(unknown))}")

    def dependency(user: User = Depends(get_current_user)) -> User:
        current_role = (user.role or "").lower()
        if current_role not in normalized_allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this action",
            )
        return user

    return dependency


require_staff = require_roles(*STAFF_ROLES)
require_admin = require_roles("admin")
require_agent = require_roles("agent")
