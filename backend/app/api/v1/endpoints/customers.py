from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import Customer
from backend.services.errors import UnknownCustomer

router = APIRouter(prefix="/customers")


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)


def _serialize(c: Customer) -> dict:
    return {"id": c.id, "name": c.name, "email": c.email, "phone": c.phone, "active": c.active}


@router.get("")
def list_customers(db: Session = Depends(get_db)):
    rows = db.execute(select(Customer).order_by(Customer.name)).scalars().all()
    return [_serialize(c) for c in rows]


@router.get("/{customer_id}")
def get_customer(customer_id: int, db: Session = Depends(get_db)):
    c = db.get(Customer, customer_id)
    if not c:
        raise UnknownCustomer(customer_id)
    return _serialize(c)


@router.post("")
def create_customer(payload: CustomerCreate, db: Session = Depends(get_db)):
    # pas d'unicité sur le nom : deux clients homonymes sont légitimes
    c = Customer(**payload.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    return _serialize(c)
