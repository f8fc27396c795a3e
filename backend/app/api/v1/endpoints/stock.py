from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.core_types import StockStatus
from backend.app.db.models.models_v1 import Product
from backend.app.schemas.stock_level import StockLevelRead, StockMovementRead
from backend.services.errors import UnknownProduct
from backend.services.ledger import StockLedger, stock_status

router = APIRouter(prefix="/stock")


class StockCorrection(BaseModel):
    # soit un delta signé, soit un comptage absolu (inventaire physique)
    delta: int | None = None
    quantity: int | None = Field(default=None, ge=0)
    reason: str = Field(min_length=1, max_length=255)

    @model_validator(mode="after")
    def _one_of(self):
        if (self.delta is None) == (self.quantity is None):
            raise ValueError("Provide exactly one of delta or quantity")
        return self


def _read(p: Product) -> StockLevelRead:
    return StockLevelRead(
        product_id=p.id,
        sku=p.sku,
        name=p.name,
        on_hand_quantity=p.on_hand_quantity,
        reorder_threshold=p.reorder_threshold,
        status=stock_status(p),
    )


@router.get(
    "",
    response_model=list[StockLevelRead],
)
def get_stock(
    status: StockStatus | None = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
):
    """
    Stock (READ ONLY)
    - status est calculé à la lecture, jamais stocké
    - écriture uniquement via le ledger (commandes, bills, corrections)
    """
    stmt = select(Product).order_by(Product.sku)
    if not include_inactive:
        stmt = stmt.where(Product.active.is_(True))

    rows = [_read(p) for p in db.execute(stmt).scalars().all()]
    if status is not None:
        rows = [r for r in rows if r.status == status]
    return rows


@router.get("/{product_id}", response_model=StockLevelRead)
def get_product_stock(product_id: int, db: Session = Depends(get_db)):
    p = db.get(Product, product_id)
    if not p:
        raise UnknownProduct(product_id)
    return _read(p)


@router.get("/{product_id}/movements", response_model=list[StockMovementRead])
def get_movements(product_id: int, db: Session = Depends(get_db)):
    if not db.get(Product, product_id):
        raise UnknownProduct(product_id)
    return StockLedger(db).movements(product_id=product_id)


@router.post("/{product_id}/correction", response_model=StockLevelRead)
def correct_stock(product_id: int, payload: StockCorrection, db: Session = Depends(get_db)):
    """Correction manuelle : seule écriture qui clampe à zéro au lieu d'échouer."""
    ledger = StockLedger(db)
    if payload.quantity is not None:
        ledger.set_quantity(product_id, payload.quantity, reason=payload.reason)
    else:
        ledger.apply_correction(product_id, payload.delta, reason=payload.reason)
    db.commit()
    return _read(db.get(Product, product_id))
