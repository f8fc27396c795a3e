from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from backend.app.db.models.core_types import MovementType, StockStatus


class StockLevelRead(BaseModel):
    product_id: int
    sku: str
    name: str

    on_hand_quantity: int
    reorder_threshold: int
    status: StockStatus  # READ ONLY : dérivé, jamais stocké


class StockMovementRead(BaseModel):
    id: int
    product_id: int | None
    material_id: int | None
    movement_type: MovementType
    delta: Decimal
    quantity_after: Decimal
    source_type: str | None
    source_id: int | None
    reason: str | None
    created_at: datetime

    class Config:
        from_attributes = True
