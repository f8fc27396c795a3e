from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.errors import http_error
from backend.app.db.models.core_types import POStatus
from backend.app.db.models.models_v1 import PurchaseOrder
from backend.services.procurement import POLineInput, ProcurementService

router = APIRouter(prefix="/purchase-orders")


class POLineCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_cost: Decimal = Field(ge=0)


class POCreate(BaseModel):
    po_number: str | None = Field(default=None, min_length=1, max_length=64)
    supplier_id: int
    expected_eta: date | None = None
    notes: str | None = None
    lines: list[POLineCreate] = Field(min_length=1)


class POTransition(BaseModel):
    expected_status: POStatus | None = None


class POReceive(BaseModel):
    # {line_id: reçu cumulatif}
    lines: dict[int, int]
    expected_status: POStatus | None = None


class PONotes(BaseModel):
    notes: str | None = None
    expected_eta: date | None = None


def _serialize(po: PurchaseOrder) -> dict:
    return {
        "id": po.id,
        "po_number": po.po_number,
        "supplier_id": po.supplier_id,
        "status": po.status,
        "total_amount": str(po.total_amount),
        "expected_eta": po.expected_eta,
        "received_at": po.received_at,
        "notes": po.notes,
        "version": po.version,
        "created_at": po.created_at,
        "lines": [
            {
                "id": l.id,
                "product_id": l.product_id,
                "ordered_quantity": l.ordered_quantity,
                "received_quantity": l.received_quantity,
                "unit_cost": str(l.unit_cost),
            }
            for l in po.lines
        ],
    }


@router.get("")
def list_pos(status: POStatus | None = None, db: Session = Depends(get_db)):
    stmt = select(PurchaseOrder).order_by(PurchaseOrder.id.desc())
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    return [_serialize(po) for po in db.execute(stmt).scalars().all()]


@router.get("/{po_id}")
def get_po(po_id: int, db: Session = Depends(get_db)):
    return _serialize(ProcurementService(db).get_order(po_id))


@router.post("")
def create_po(payload: POCreate, db: Session = Depends(get_db)):
    if payload.po_number:
        exists = db.execute(
            select(PurchaseOrder).where(PurchaseOrder.po_number == payload.po_number)
        ).scalar_one_or_none()
        if exists:
            raise HTTPException(status_code=409, detail="PO number already exists")

    try:
        po = ProcurementService(db).create_order(
            supplier_id=payload.supplier_id,
            lines=[POLineInput(ln.product_id, ln.quantity, ln.unit_cost) for ln in payload.lines],
            po_number=payload.po_number,
            expected_eta=payload.expected_eta,
            notes=payload.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    db.commit()
    db.refresh(po)
    return _serialize(po)


def _transition(db: Session, po_id: int, action: str, payload: POTransition | None) -> dict:
    svc = ProcurementService(db)
    result = getattr(svc, action)(po_id, payload.expected_status if payload else None)
    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    return result.to_dict()


@router.post("/{po_id}/submit")
def submit_po(po_id: int, payload: POTransition | None = None, db: Session = Depends(get_db)):
    return _transition(db, po_id, "submit", payload)


@router.post("/{po_id}/approve")
def approve_po(po_id: int, payload: POTransition | None = None, db: Session = Depends(get_db)):
    return _transition(db, po_id, "approve", payload)


@router.post("/{po_id}/ship")
def ship_po(po_id: int, payload: POTransition | None = None, db: Session = Depends(get_db)):
    return _transition(db, po_id, "mark_shipped", payload)


@router.post("/{po_id}/complete")
def complete_po(po_id: int, payload: POTransition | None = None, db: Session = Depends(get_db)):
    return _transition(db, po_id, "complete", payload)


@router.post("/{po_id}/cancel")
def cancel_po(po_id: int, payload: POTransition | None = None, db: Session = Depends(get_db)):
    return _transition(db, po_id, "cancel", payload)


@router.post("/{po_id}/receive")
def receive_po(po_id: int, payload: POReceive, db: Session = Depends(get_db)):
    """
    Réception (best effort) :
    - les lignes valides sont appliquées et commitées
    - les lignes invalides sont renvoyées dans line_errors
    """
    result = ProcurementService(db).receive_items(po_id, payload.lines, payload.expected_status)
    if result.error is not None:
        raise http_error([result.error])
    db.commit()
    return result.to_dict()


@router.patch("/{po_id}")
def update_po_notes(po_id: int, payload: PONotes, db: Session = Depends(get_db)):
    po = ProcurementService(db).update_notes(po_id, payload.notes, payload.expected_eta)
    db.commit()
    db.refresh(po)
    return _serialize(po)


@router.delete("/{po_id}")
def delete_po(po_id: int, db: Session = Depends(get_db)):
    result = ProcurementService(db).delete_order(po_id)
    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    return result.to_dict()
