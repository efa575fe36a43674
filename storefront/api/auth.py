"""Caller identity.

Authentication happens upstream; the auth gateway forwards the
authenticated user in ``X-User-Id`` and their role in ``X-User-Role``.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller."""

    user_id: str
    is_admin: bool = False


def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> CurrentUser:
    """Resolve the caller from the forwarded identity headers.

    Raises:
        HTTPException: 401 if no user id was forwarded.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "UNAUTHENTICATED",
                "message": "Missing X-User-Id header",
                "details": {},
            },
        )
    return CurrentUser(
        user_id=x_user_id.strip(),
        is_admin=(x_user_role or "").strip().lower() == "admin",
    )


def require_admin(user: Annotated[CurrentUser, Depends(get_current_user)]) -> CurrentUser:
    """Allow only admin callers.

    Raises:
        HTTPException: 403 if the caller is not an admin.
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error_code": "FORBIDDEN",
                "message": "Admin role required",
                "details": {},
            },
        )
    return user
