from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import Product
from backend.services.errors import UnknownProduct
from backend.services.ledger import StockLedger, stock_status

router = APIRouter(prefix="/products")


class ProductCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(default="general", min_length=1, max_length=64)
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    initial_quantity: int = Field(default=0, ge=0)
    reorder_threshold: int = Field(default=10, ge=0)
    active: bool = True


class ProductUpdate(BaseModel):
    # pas de champ stock ici : le stock ne bouge que via le ledger
    name: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = Field(default=None, min_length=1, max_length=64)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    reorder_threshold: int | None = Field(default=None, ge=0)
    active: bool | None = None


def _serialize(p: Product) -> dict:
    return {
        "id": p.id,
        "sku": p.sku,
        "name": p.name,
        "category": p.category,
        "unit_cost": str(p.unit_cost),
        "unit_price": str(p.unit_price),
        "on_hand_quantity": p.on_hand_quantity,
        "reorder_threshold": p.reorder_threshold,
        "status": stock_status(p),
        "active": p.active,
    }


@router.get("")
def list_products(db: Session = Depends(get_db)):
    rows = db.execute(select(Product).order_by(Product.sku)).scalars().all()
    return [_serialize(p) for p in rows]


@router.post("")
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(Product).where(Product.sku == payload.sku)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="SKU already exists")

    p = Product(
        sku=payload.sku,
        name=payload.name,
        category=payload.category,
        unit_cost=payload.unit_cost,
        unit_price=payload.unit_price,
        on_hand_quantity=0,
        reorder_threshold=payload.reorder_threshold,
        active=payload.active,
    )
    db.add(p)
    db.flush()
    if payload.initial_quantity:
        StockLedger(db).apply_correction(p.id, payload.initial_quantity, reason="initial stock")
    db.commit()
    db.refresh(p)

    return _serialize(p)


@router.patch("/{product_id}")
def update_product(product_id: int, payload: ProductUpdate, db: Session = Depends(get_db)):
    p = db.get(Product, product_id)
    if not p:
        raise UnknownProduct(product_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(p, field, value)
    db.commit()
    db.refresh(p)
    return _serialize(p)


@router.delete("/{product_id}")
def deactivate_product(product_id: int, db: Session = Depends(get_db)):
    # soft delete uniquement : lignes de commandes et mouvements gardent leur FK
    p = db.get(Product, product_id)
    if not p:
        raise UnknownProduct(product_id)
    p.active = False
    db.commit()
    db.refresh(p)
    return _serialize(p)
