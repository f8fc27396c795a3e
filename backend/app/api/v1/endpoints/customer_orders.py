from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.errors import http_error
from backend.app.db.models.core_types import OrderStatus, PaymentStatus
from backend.app.db.models.models_v1 import CustomerOrder
from backend.services.sales import OrderLineInput, SalesService

router = APIRouter(prefix="/customer-orders")


class OrderLineCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)


class OrderCreate(BaseModel):
    customer_id: int
    status: OrderStatus = OrderStatus.pending
    order_number: str | None = Field(default=None, min_length=1, max_length=64)
    payment_method: str = Field(default="cash", max_length=32)
    delivery_date: date | None = None
    notes: str | None = None
    lines: list[OrderLineCreate] = Field(min_length=1)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    expected_status: OrderStatus | None = None


class OrderNotes(BaseModel):
    notes: str | None = None
    delivery_date: date | None = None
    payment_method: str | None = Field(default=None, max_length=32)
    payment_status: PaymentStatus | None = None


def _serialize(o: CustomerOrder) -> dict:
    return {
        "id": o.id,
        "order_number": o.order_number,
        "customer_id": o.customer_id,
        "status": o.status,
        "stock_reserved": o.stock_reserved,
        "total_amount": str(o.total_amount),
        "payment_method": o.payment_method,
        "payment_status": o.payment_status,
        "delivery_date": o.delivery_date,
        "notes": o.notes,
        "version": o.version,
        "lines": [
            {
                "id": l.id,
                "product_id": l.product_id,
                "quantity": l.quantity,
                "unit_price": str(l.unit_price),
            }
            for l in o.lines
        ],
    }


@router.get("")
def list_orders(status: OrderStatus | None = None, db: Session = Depends(get_db)):
    stmt = select(CustomerOrder).order_by(CustomerOrder.id.desc())
    if status is not None:
        stmt = stmt.where(CustomerOrder.status == status)
    return [_serialize(o) for o in db.execute(stmt).scalars().all()]


@router.get("/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db)):
    return _serialize(SalesService(db).get_order(order_id))


@router.post("")
def create_order(payload: OrderCreate, db: Session = Depends(get_db)):
    try:
        result = SalesService(db).create_order(
            customer_id=payload.customer_id,
            lines=[OrderLineInput(ln.product_id, ln.quantity, ln.unit_price) for ln in payload.lines],
            status=payload.status,
            order_number=payload.order_number,
            payment_method=payload.payment_method,
            delivery_date=payload.delivery_date,
            notes=payload.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    db.refresh(result.order)
    return _serialize(result.order)


@router.post("/{order_id}/status")
def update_status(order_id: int, payload: OrderStatusUpdate, db: Session = Depends(get_db)):
    """
    Changement de statut :
    - l'effet stock est décidé par la table de transitions + stock_reserved
    - redemander le statut courant ne fait rien
    """
    result = SalesService(db).transition(order_id, payload.status, payload.expected_status)
    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    return result.to_dict()


@router.patch("/{order_id}")
def update_notes(order_id: int, payload: OrderNotes, db: Session = Depends(get_db)):
    order = SalesService(db).update_notes(
        order_id,
        payload.notes,
        payload.delivery_date,
        payment_method=payload.payment_method,
        payment_status=payload.payment_status,
    )
    db.commit()
    db.refresh(order)
    return _serialize(order)


@router.delete("/{order_id}")
def delete_order(order_id: int, db: Session = Depends(get_db)):
    result = SalesService(db).delete_order(order_id)
    db.commit()
    return result.to_dict()
