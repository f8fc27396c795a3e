from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.errors import http_error
from backend.app.db.models.core_types import BillStatus
from backend.app.db.models.models_v1 import Bill
from backend.services.sales import BillLineInput, SalesService

router = APIRouter(prefix="/bills")


class BillLineCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)


class BillCreate(BaseModel):
    customer_id: int | None = None
    status: BillStatus = BillStatus.paid
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    payment_method: str = Field(default="cash", max_length=32)
    bill_number: str | None = Field(default=None, min_length=1, max_length=64)
    notes: str | None = None
    items: list[BillLineCreate] = Field(min_length=1)


class BillStatusUpdate(BaseModel):
    status: BillStatus
    expected_status: BillStatus | None = None


def _serialize(b: Bill) -> dict:
    return {
        "id": b.id,
        "bill_number": b.bill_number,
        "customer_id": b.customer_id,
        "status": b.status,
        "stock_reserved": b.stock_reserved,
        "subtotal": str(b.subtotal),
        "tax_amount": str(b.tax_amount),
        "total_amount": str(b.total_amount),
        "payment_method": b.payment_method,
        "notes": b.notes,
        "items": [
            {
                "id": l.id,
                "product_id": l.product_id,
                "quantity": l.quantity,
                "unit_price": str(l.unit_price),
                "discount": str(l.discount),
                "total_price": str(l.total_price),
            }
            for l in b.lines
        ],
    }


@router.get("")
def list_bills(db: Session = Depends(get_db)):
    rows = db.execute(select(Bill).order_by(Bill.id.desc())).scalars().all()
    return [_serialize(b) for b in rows]


@router.get("/{bill_id}")
def get_bill(bill_id: int, db: Session = Depends(get_db)):
    return _serialize(SalesService(db).get_bill(bill_id))


@router.post("")
def create_bill(payload: BillCreate, db: Session = Depends(get_db)):
    """
    Bill :
    - stock décrémenté à la création
    - une rupture sur n'importe quel article => 400, rien n'est écrit
    """
    try:
        result = SalesService(db).create_bill(
            lines=[BillLineInput(i.product_id, i.quantity, i.unit_price, i.discount) for i in payload.items],
            customer_id=payload.customer_id,
            status=payload.status,
            tax_rate=payload.tax_rate,
            payment_method=payload.payment_method,
            bill_number=payload.bill_number,
            notes=payload.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    db.refresh(result.bill)
    return _serialize(result.bill)


@router.post("/{bill_id}/status")
def update_bill_status(bill_id: int, payload: BillStatusUpdate, db: Session = Depends(get_db)):
    result = SalesService(db).transition_bill(bill_id, payload.status, payload.expected_status)
    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    return result.to_dict()


@router.delete("/{bill_id}")
def delete_bill(bill_id: int, db: Session = Depends(get_db)):
    result = SalesService(db).delete_bill(bill_id)
    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    return result.to_dict()
