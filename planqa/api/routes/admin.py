"""
Permission Admin Routes

CRUD over per-user permission records. Outside production the endpoints
are open; in production the caller (``x-user-id`` / ``x-username``) must be
an admin in the permission store.
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status

from planqa.config import get_settings
from planqa.models.permissions import UserPermissions, UserPermissionsUpdate
from planqa.stores import PermissionStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_permission_store() -> PermissionStore:
    from planqa.api.main import app_state

    store = app_state.get("permission_store")
    if store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Permission store not initialized")
    if not store.ensure_available():
        logger.error(f"Permission admin request refused: {store.load_error}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Permission file could not be loaded; fix it before editing permissions",
        )
    return store


def require_admin(
    x_user_id: str | None = Header(default=None),
    x_username: str | None = Header(default=None),
) -> PermissionStore:
    from planqa.api.main import app_state

    store = _get_permission_store()
    settings = app_state.get("settings") or get_settings()
    if settings.is_production and not store.is_admin(x_user_id, x_username):
        logger.warning("Rejected permission admin request from non-admin caller")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return store


@router.get("/permissions", response_model=list[UserPermissions], response_model_by_alias=True)
async def list_permissions(store: PermissionStore = Depends(require_admin)) -> list[UserPermissions]:
    return store.get_all()


@router.get("/permissions/{user_id}", response_model=UserPermissions, response_model_by_alias=True)
async def get_permissions(user_id: str, store: PermissionStore = Depends(require_admin)) -> UserPermissions:
    record = store.get_by_id(user_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No permissions for user {user_id}")
    return record


@router.put("/permissions/{user_id}", response_model=UserPermissions, response_model_by_alias=True)
async def put_permissions(
    user_id: str,
    update: UserPermissionsUpdate,
    store: PermissionStore = Depends(require_admin),
) -> UserPermissions:
    return store.upsert(user_id, update)


@router.delete("/permissions/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permissions(user_id: str, store: PermissionStore = Depends(require_admin)) -> Response:
    if not store.delete(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No permissions for user {user_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
