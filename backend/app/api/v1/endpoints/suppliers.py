from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import PurchaseOrder, Supplier
from backend.services.errors import UnknownSupplier

router = APIRouter(prefix="/suppliers")


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    lead_time_days: int = Field(default=14, ge=0)


class SupplierUpdate(BaseModel):
    email: str | None = Field(default=None, max_length=255)
    lead_time_days: int | None = Field(default=None, ge=0)
    active: bool | None = None


def _serialize(s: Supplier) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "email": s.email,
        "lead_time_days": s.lead_time_days,
        "active": s.active,
    }


def _get(db: Session, supplier_id: int) -> Supplier:
    s = db.get(Supplier, supplier_id)
    if not s:
        raise UnknownSupplier(supplier_id)
    return s


@router.get("")
def list_suppliers(include_inactive: bool = False, db: Session = Depends(get_db)):
    stmt = select(Supplier).order_by(Supplier.name)
    if not include_inactive:
        stmt = stmt.where(Supplier.active.is_(True))
    return [_serialize(s) for s in db.execute(stmt).scalars().all()]


@router.get("/{supplier_id}")
def get_supplier(supplier_id: int, db: Session = Depends(get_db)):
    s = _get(db, supplier_id)
    po_ids = db.execute(
        select(PurchaseOrder.id).where(PurchaseOrder.supplier_id == s.id)
    ).scalars().all()
    return {**_serialize(s), "purchase_orders": po_ids}


@router.post("")
def create_supplier(payload: SupplierCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(Supplier).where(Supplier.name == payload.name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Supplier already exists")

    s = Supplier(**payload.model_dump())
    db.add(s)
    db.commit()
    db.refresh(s)
    return _serialize(s)


@router.patch("/{supplier_id}")
def update_supplier(supplier_id: int, payload: SupplierUpdate, db: Session = Depends(get_db)):
    s = _get(db, supplier_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(s, field, value)
    db.commit()
    db.refresh(s)
    return _serialize(s)
