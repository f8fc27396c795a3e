"""
Garde d'idempotence + contrôle de cohérence.

1) Garde : décide si un delta doit être appliqué.
   - réception PO : delta = reçu cumulatif nouveau - reçu cumulatif stocké
   - réservation : pilotée par le flag stock_reserved, jamais par le texte du statut

2) Contrôle : recalcule, à partir des StockMovement (source de vérité),
   la contribution nette d'une commande au ledger et la compare à l'état
   stocké sur ses lignes.

   Propriétés :
   - déterministe
   - sans effet de bord
"""

from __future__ import annotations

import enum
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import (
    Bill,
    CustomerOrder,
    ProductionBatch,
    PurchaseOrder,
    PurchaseOrderLine,
    StockMovement,
)
from backend.services.errors import InvalidReceiptQuantity, OrderNotFound, OverReceipt

SOURCE_PO_LINE = "po_line"
SOURCE_CUSTOMER_ORDER = "customer_order"
SOURCE_BILL = "bill"
SOURCE_BATCH = "batch"


class StockEffect(str, enum.Enum):
    none = "NONE"
    reserve = "RESERVE"
    release = "RELEASE"
    consume = "CONSUME"


# ---------- GARDE ----------
def receipt_delta(line: PurchaseOrderLine, new_received: int) -> int:
    """Delta à appliquer pour passer le reçu cumulatif de la ligne à `new_received`."""
    old = line.received_quantity or 0
    if new_received > line.ordered_quantity:
        raise OverReceipt(line_id=line.id, ordered=line.ordered_quantity, received=new_received)
    if new_received < old:
        raise InvalidReceiptQuantity(line_id=line.id, previous=old, received=new_received)
    return new_received - old


def guarded_effect(effect: StockEffect, stock_reserved: bool) -> StockEffect:
    # réserver deux fois ou libérer ce qui n'a jamais été réservé = no-op
    if effect is StockEffect.reserve and stock_reserved:
        return StockEffect.none
    if effect is StockEffect.release and not stock_reserved:
        return StockEffect.none
    return effect


def should_reserve(stock_reserved: bool, effect: StockEffect) -> bool:
    return guarded_effect(effect, stock_reserved) is StockEffect.reserve


def should_release(stock_reserved: bool, effect: StockEffect) -> bool:
    return guarded_effect(effect, stock_reserved) is StockEffect.release


# ---------- CONTRÔLE ----------
@dataclass(frozen=True)
class Discrepancy:
    source_type: str
    source_id: int
    item_id: int
    expected: Decimal
    actual: Decimal

    @property
    def drift(self) -> Decimal:
        return self.actual - self.expected


def _net_by_item(db: Session, source_type: str, source_id: int, column) -> dict[int, Decimal]:
    rows = db.execute(
        select(column, func.coalesce(func.sum(StockMovement.delta), 0))
        .where(StockMovement.source_type == source_type)
        .where(StockMovement.source_id == source_id)
        .group_by(column)
    ).all()
    return {int(item_id): Decimal(str(total)) for item_id, total in rows if item_id is not None}


def _compare(source_type: str, source_id: int, expected: dict, actual: dict) -> list[Discrepancy]:
    out = []
    for item_id in sorted(set(expected) | set(actual)):
        exp = Decimal(expected.get(item_id, 0))
        act = Decimal(actual.get(item_id, 0))
        if exp != act:
            out.append(Discrepancy(source_type, source_id, item_id, exp, act))
    return out


def check_inbound_order(db: Session, po_id: int) -> list[Discrepancy]:
    """Somme des deltas appliqués pour chaque ligne == received_quantity."""
    po = db.get(PurchaseOrder, po_id)
    if po is None:
        raise OrderNotFound("purchase order", po_id)

    out: list[Discrepancy] = []
    for line in po.lines:
        actual = _net_by_item(db, SOURCE_PO_LINE, line.id, StockMovement.product_id)
        out.extend(
            _compare(SOURCE_PO_LINE, line.id, {line.product_id: line.received_quantity}, actual)
        )
    return out


def _reserved_lines(source_type: str, source_id: int, lines, reserved: bool, db: Session) -> list[Discrepancy]:
    expected: dict[int, int] = defaultdict(int)
    if reserved:
        for line in lines:
            expected[line.product_id] -= line.quantity
    actual = _net_by_item(db, source_type, source_id, StockMovement.product_id)
    return _compare(source_type, source_id, dict(expected), actual)


def check_outbound_order(db: Session, order_id: int) -> list[Discrepancy]:
    """Réservé => -quantité par produit, sinon contribution nette nulle."""
    order = db.get(CustomerOrder, order_id)
    if order is None:
        raise OrderNotFound("customer order", order_id)
    return _reserved_lines(SOURCE_CUSTOMER_ORDER, order.id, order.lines, order.stock_reserved, db)


def check_bill(db: Session, bill_id: int) -> list[Discrepancy]:
    bill = db.get(Bill, bill_id)
    if bill is None:
        raise OrderNotFound("bill", bill_id)
    return _reserved_lines(SOURCE_BILL, bill.id, bill.lines, bill.stock_reserved, db)


def check_batch(db: Session, batch_id: int) -> list[Discrepancy]:
    """Consommation matière du batch == -consumed_quantity du snapshot."""
    batch = db.get(ProductionBatch, batch_id)
    if batch is None:
        raise OrderNotFound("production batch", batch_id)

    expected: dict[int, Decimal] = defaultdict(Decimal)
    for m in batch.materials:
        expected[m.material_id] -= Decimal(m.consumed_quantity or 0)
    actual = _net_by_item(db, SOURCE_BATCH, batch.id, StockMovement.material_id)
    return _compare(SOURCE_BATCH, batch.id, {k: v for k, v in expected.items() if v != 0}, actual)
