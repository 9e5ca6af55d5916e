from fastapi import Depends, HTTPException, status

from crm.middleware.auth import get_current_user

ADMIN = "ADMIN"
EDITOR = "EDITOR"
VIEWER = "VIEWER"

ROLES = (ADMIN, EDITOR, VIEWER)

# Roles allowed to create and update business records
EDITORS = (ADMIN, EDITOR)


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.delete("/{company_id}")
        async def delete_company(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles("ADMIN")),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": (
                            f"Role '{current_user['role']}' cannot perform this action. "
                            f"Required: {allowed_roles}"
                        ),
                    }
                },
            )
        return None

    return check_role
