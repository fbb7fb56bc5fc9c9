from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from wmsdb.apps.catalog import models as catalog_models
from wmsdb.database import get_db, get_read_db
from wmsdb.security import get_optional_actor

from . import models, movement_log, queries, schemas, services
from .errors import LedgerError

router = APIRouter(prefix="", tags=["inventory"])

MOVEMENT_WRITE_ROLES = [
    catalog_models.UserRole.ADMIN,
    catalog_models.UserRole.OPERATOR,
]


def _ledger_http_error(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.as_detail())


@router.post(
    "/movements",
    response_model=schemas.MovementRead,
    status_code=status.HTTP_201_CREATED,
)
def submit_movement(
    payload: schemas.MovementCreate,
    db: Session = Depends(get_db),
    actor: Optional[catalog_models.User] = Depends(get_optional_actor),
):
    if actor is not None and actor.role not in MOVEMENT_WRITE_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient privileges for this operation.",
        )
    try:
        entry = services.submit_movement(
            db,
            payload=payload,
            actor_id=actor.id if actor is not None else None,
        )
    except LedgerError as exc:
        raise _ledger_http_error(exc)
    db.refresh(entry)
    return entry


@router.get("/movements", response_model=List[schemas.MovementHistoryItem])
def list_movements(
    kind: Optional[models.MovementKind] = None,
    product_id: Optional[int] = None,
    location_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_read_db),
):
    listing = movement_log.list_movements(
        db,
        kind=kind,
        product_id=product_id,
        location_id=location_id,
        limit=limit,
    )
    return queries.to_history_items(listing)


@router.get("/balances", response_model=schemas.BalanceBreakdown)
def read_balance(
    product_id: int,
    location_id: Optional[int] = None,
    db: Session = Depends(get_read_db),
):
    try:
        return services.read_balance(db, product_id=product_id, location_id=location_id)
    except LedgerError as exc:
        raise _ledger_http_error(exc)


@router.get("/dashboard/stats", response_model=schemas.DashboardSnapshot)
def dashboard_stats(db: Session = Depends(get_read_db)):
    return queries.dashboard_snapshot(db)


@router.get("/dashboard/recent-activity", response_model=List[schemas.MovementHistoryItem])
def dashboard_recent_activity(
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: Session = Depends(get_read_db),
):
    return queries.recent_activity(db, limit=limit)


@router.get("/dashboard/low-stock", response_model=List[schemas.LowStockItem])
def dashboard_low_stock(db: Session = Depends(get_read_db)):
    return queries.low_stock(db)
