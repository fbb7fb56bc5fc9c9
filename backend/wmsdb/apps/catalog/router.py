from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wmsdb.database import get_db, get_read_db
from wmsdb.security import require_roles

from . import models, schemas, services

router = APIRouter(prefix="", tags=["catalog"])

CATALOG_WRITE_ROLES = [models.UserRole.ADMIN]


def _raise_http(exc: Exception) -> None:
    if isinstance(exc, services.CatalogNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, services.CatalogConflict):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, IntegrityError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Record conflicts with an existing row.",
        )
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    raise exc


def _commit_or_raise(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        _raise_http(exc)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


@router.post(
    "/products",
    response_model=schemas.ProductRead,
    status_code=status.HTTP_201_CREATED,
)
def create_product(
    payload: schemas.ProductCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    try:
        product = services.create_product(db, payload)
    except (services.CatalogNotFound, services.CatalogConflict) as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    db.refresh(product)
    return product


@router.get("/products", response_model=List[schemas.ProductRead])
def list_products(
    category: Optional[str] = None,
    db: Session = Depends(get_read_db),
):
    return services.list_products(db, category=category)


@router.get("/products/barcode/{code}", response_model=schemas.BarcodeLookupRead)
def lookup_product_by_barcode(
    code: str,
    db: Session = Depends(get_read_db),
):
    try:
        return services.lookup_by_barcode(db, code)
    except services.CatalogNotFound as exc:
        _raise_http(exc)


@router.get("/products/{product_id}", response_model=schemas.ProductRead)
def get_product(
    product_id: int,
    db: Session = Depends(get_read_db),
):
    try:
        return services.get_product(db, product_id)
    except services.CatalogNotFound as exc:
        _raise_http(exc)


@router.patch("/products/{product_id}", response_model=schemas.ProductRead)
def update_product(
    product_id: int,
    payload: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    try:
        product = services.update_product(db, product_id, payload)
    except (services.CatalogNotFound, services.CatalogConflict, ValueError) as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    db.refresh(product)
    return product


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(
    product_id: int,
    cascade: bool = False,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    try:
        services.delete_product(db, product_id, cascade=cascade)
    except (services.CatalogNotFound, services.CatalogConflict) as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


@router.post(
    "/locations",
    response_model=schemas.LocationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_location(
    payload: schemas.LocationCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    try:
        location = services.create_location(db, payload)
    except services.CatalogConflict as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    db.refresh(location)
    return location


@router.get("/locations", response_model=List[schemas.LocationRead])
def list_locations(
    warehouse: Optional[str] = None,
    db: Session = Depends(get_read_db),
):
    return services.list_locations(db, warehouse=warehouse)


@router.get("/locations/{location_id}", response_model=schemas.LocationRead)
def get_location(
    location_id: int,
    db: Session = Depends(get_read_db),
):
    try:
        return services.get_location(db, location_id)
    except services.CatalogNotFound as exc:
        _raise_http(exc)


@router.patch("/locations/{location_id}", response_model=schemas.LocationRead)
def update_location(
    location_id: int,
    payload: schemas.LocationUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    try:
        location = services.update_location(db, location_id, payload)
    except (services.CatalogNotFound, services.CatalogConflict, ValueError) as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    db.refresh(location)
    return location


@router.delete("/locations/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_location(
    location_id: int,
    cascade: bool = False,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    try:
        services.delete_location(db, location_id, cascade=cascade)
    except (services.CatalogNotFound, services.CatalogConflict) as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.post(
    "/users",
    response_model=schemas.UserRead,
    status_code=status.HTTP_201_CREATED,
)
def create_user(
    payload: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    try:
        user = services.create_user(db, payload)
    except services.CatalogConflict as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    db.refresh(user)
    return user


@router.get("/users", response_model=List[schemas.UserRead])
def list_users(db: Session = Depends(get_read_db)):
    return services.list_users(db)


@router.get("/users/{user_id}", response_model=schemas.UserRead)
def get_user(
    user_id: int,
    db: Session = Depends(get_read_db),
):
    try:
        return services.get_user(db, user_id)
    except services.CatalogNotFound as exc:
        _raise_http(exc)


@router.patch("/users/{user_id}", response_model=schemas.UserRead)
def update_user(
    user_id: int,
    payload: schemas.UserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    try:
        user = services.update_user(db, user_id, payload)
    except (services.CatalogNotFound, services.CatalogConflict, ValueError) as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    db.refresh(user)
    return user


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*CATALOG_WRITE_ROLES)),
):
    if current_user.id == user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account.",
        )
    try:
        services.delete_user(db, user_id)
    except (services.CatalogNotFound, services.CatalogConflict) as exc:
        db.rollback()
        _raise_http(exc)
    _commit_or_raise(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
