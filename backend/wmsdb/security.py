# backend/wmsdb/security.py

"""
Actor resolution for the WMS API.

Authentication itself lives in front of this service. Requests carry the
acting user's id in the `X-Actor-Id` header; these dependencies turn it
into a `User` row and enforce that the account is active.
"""

from __future__ import annotations

from typing import Callable, Optional, Set, Union

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .database import get_db
from wmsdb.apps.catalog import models as catalog_models
from wmsdb.apps.catalog.models import UserRole


def get_user_by_id(db: Session, user_id: Union[str, int]) -> Optional[catalog_models.User]:
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return db.query(catalog_models.User).filter(catalog_models.User.id == user_id).first()


def get_optional_actor(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    db: Session = Depends(get_db),
) -> Optional[catalog_models.User]:
    """
    Resolve the header if present. Movements may instead name the actor
    in the payload, so a missing header is not an error here.
    """
    if x_actor_id is None:
        return None
    user = get_user_by_id(db, x_actor_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown actor.",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user account",
        )
    return user


def get_current_actor(
    actor: Optional[catalog_models.User] = Depends(get_optional_actor),
) -> catalog_models.User:
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required.",
        )
    return actor


def require_roles(
    *allowed_roles: Union[UserRole, str],
) -> Callable[[catalog_models.User], catalog_models.User]:
    """
    Dependency factory to enforce that the acting user has one of the given roles.

    ADMIN always passes, even if not explicitly listed in `allowed_roles`.
    """
    normalised_roles: Set[UserRole] = {UserRole(r) for r in allowed_roles}

    def dependency(
        current_user: catalog_models.User = Depends(get_current_actor),
    ) -> catalog_models.User:
        if current_user.role == UserRole.ADMIN:
            return current_user
        if current_user.role not in normalised_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient privileges for this operation.",
            )
        return current_user

    return dependency
