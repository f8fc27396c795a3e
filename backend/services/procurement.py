"""
Procurement service.

Ce module orchestre le cycle de vie des PO (draft -> ... -> completed)
mais ne contient AUCUNE écriture de stock directe.

Toute écriture stock passe par :
    backend.services.ledger.StockLedger

Réception :
- le client envoie, par ligne, le reçu CUMULATIF (pas un incrément)
- delta appliqué = nouveau cumulatif - cumulatif stocké
  => rejouer la même requête applique un delta nul
- best effort : une ligne invalide est rapportée sans bloquer les autres
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Mapping, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import MovementType, POStatus
from backend.app.db.models.models_v1 import Product, PurchaseOrder, PurchaseOrderLine, Supplier
from backend.services.errors import (
    ConflictingTransition,
    InvalidReceiptQuantity,
    InvalidTransition,
    LedgerError,
    OrderNotFound,
    OverReceipt,
    UnknownLineItem,
    UnknownProduct,
    UnknownSupplier,
)
from backend.services.ledger import StockLedger
from backend.services.reconciliation import SOURCE_PO_LINE, receipt_delta
from backend.services.state_machine import (
    PURCHASE_ORDER_MACHINE,
    TransitionResult,
    check_expected_status,
    flush_versioned,
)

logger = logging.getLogger(__name__)

ENTITY = "purchase order"

# PO sur lesquels on accepte une réception (received : rejeu idempotent)
RECEIVABLE_STATUSES = {POStatus.approved, POStatus.shipped, POStatus.received}
DELETABLE_STATUSES = {POStatus.draft, POStatus.pending}


@dataclass(frozen=True)
class POLineInput:
    product_id: int
    quantity: int
    unit_cost: Decimal


@dataclass(frozen=True)
class LineReceipt:
    line_id: int
    product_id: int
    previous: int
    received: int
    delta: int


@dataclass
class ReceiveResult:
    po_id: int
    status: POStatus
    applied: list[LineReceipt] = field(default_factory=list)
    line_errors: list[LedgerError] = field(default_factory=list)
    fully_received: bool = False
    error: LedgerError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.line_errors

    def to_dict(self) -> dict:
        return {
            "po_id": self.po_id,
            "status": self.status,
            "fully_received": self.fully_received,
            "applied": [
                {
                    "line_id": r.line_id,
                    "product_id": r.product_id,
                    "previous": r.previous,
                    "received": r.received,
                    "delta": r.delta,
                }
                for r in self.applied
            ],
            "line_errors": [e.to_dict() for e in self.line_errors],
            "error": self.error.to_dict() if self.error else None,
        }


class ProcurementService:
    def __init__(self, db: Session, ledger: StockLedger | None = None):
        self.db = db
        self.ledger = ledger or StockLedger(db)

    # ---------- READ ----------
    def get_order(self, po_id: int, *, lock: bool = False) -> PurchaseOrder:
        stmt = select(PurchaseOrder).where(PurchaseOrder.id == po_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        po = self.db.execute(stmt).scalar_one_or_none()
        if po is None:
            raise OrderNotFound(ENTITY, po_id)
        return po

    # ---------- CREATE ----------
    def create_order(
        self,
        *,
        supplier_id: int,
        lines: Sequence[POLineInput],
        po_number: str | None = None,
        expected_eta: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        if not lines:
            raise ValueError("A purchase order needs at least one line")
        if not self.db.get(Supplier, supplier_id):
            raise UnknownSupplier(supplier_id)

        total = Decimal("0")
        for ln in lines:
            if ln.quantity <= 0:
                raise ValueError(f"Invalid quantity {ln.quantity} for product {ln.product_id}")
            if not self.db.get(Product, ln.product_id):
                raise UnknownProduct(ln.product_id)
            total += Decimal(ln.quantity) * Decimal(ln.unit_cost)

        po = PurchaseOrder(
            po_number=po_number or f"PO-{uuid.uuid4().hex[:12].upper()}",
            supplier_id=supplier_id,
            status=POStatus.draft,
            total_amount=total,
            expected_eta=expected_eta,
            notes=notes,
            lines=[
                PurchaseOrderLine(
                    product_id=ln.product_id,
                    ordered_quantity=ln.quantity,
                    received_quantity=0,
                    unit_cost=ln.unit_cost,
                )
                for ln in lines
            ],
        )
        self.db.add(po)
        self.db.flush()
        logger.info("purchase order %s created (%s lines, total=%s)", po.po_number, len(lines), total)
        return po

    # ---------- TRANSITIONS ----------
    def _transition(self, po_id: int, target: POStatus, expected_status: POStatus | None = None) -> TransitionResult:
        po = self.get_order(po_id, lock=True)
        current = po.status
        result = TransitionResult(ENTITY, po.id, current.value, target.value)
        try:
            check_expected_status(ENTITY, po.id, current, expected_status)
            result.effect = PURCHASE_ORDER_MACHINE.effect(po.id, current, target)
            if current != target:
                with self.db.begin_nested():
                    po.status = target
                    flush_versioned(self.db, ENTITY, po.id)
        except (InvalidTransition, ConflictingTransition) as e:
            logger.warning("purchase order %s: %s", po.id, e.message)
            result.errors = [e]
        return result

    def submit(self, po_id: int, expected_status: POStatus | None = None) -> TransitionResult:
        return self._transition(po_id, POStatus.pending, expected_status)

    def approve(self, po_id: int, expected_status: POStatus | None = None) -> TransitionResult:
        return self._transition(po_id, POStatus.approved, expected_status)

    def mark_shipped(self, po_id: int, expected_status: POStatus | None = None) -> TransitionResult:
        return self._transition(po_id, POStatus.shipped, expected_status)

    def complete(self, po_id: int, expected_status: POStatus | None = None) -> TransitionResult:
        return self._transition(po_id, POStatus.completed, expected_status)

    def cancel(self, po_id: int, expected_status: POStatus | None = None) -> TransitionResult:
        result = self._transition(po_id, POStatus.cancelled, expected_status)
        if not result.ok:
            return result
        # lu après le verrou : plus aucune réception ne peut s'intercaler
        already = self.db.execute(
            select(func.coalesce(func.sum(PurchaseOrderLine.received_quantity), 0))
            .where(PurchaseOrderLine.po_id == po_id)
        ).scalar_one()
        if already > 0:
            # la marchandise est physiquement arrivée : pas de reprise de stock
            logger.warning(
                "purchase order %s cancelled with %s units already received (stock kept)",
                self.get_order(po_id).po_number,
                already,
            )
        return result

    # ---------- RECEPTION ----------
    def receive_items(
        self,
        po_id: int,
        received: Mapping[int, int],
        expected_status: POStatus | None = None,
    ) -> ReceiveResult:
        """
        `received` : {line_id: reçu cumulatif}.

        Chaque ligne valide applique +delta au ledger ; chaque ligne invalide
        (id inconnu, recul, dépassement) est rapportée dans line_errors.
        Si toutes les lignes sont complètes, le PO passe en RECEIVED.
        """
        po = self.get_order(po_id, lock=True)
        result = ReceiveResult(po_id=po.id, status=po.status)

        try:
            check_expected_status(ENTITY, po.id, po.status, expected_status)
        except ConflictingTransition as e:
            result.error = e
            return result

        if po.status not in RECEIVABLE_STATUSES:
            result.error = InvalidTransition(
                entity=ENTITY,
                entity_id=po.id,
                from_status=po.status.value,
                to_status=POStatus.received.value,
                reason="order is not open for receiving",
            )
            logger.warning("purchase order %s: %s", po.id, result.error.message)
            return result

        lines = {l.id: l for l in po.lines}
        for line_id, new_received in received.items():
            line = lines.get(int(line_id))
            if line is None:
                result.line_errors.append(UnknownLineItem(int(line_id)))
                continue
            try:
                delta = receipt_delta(line, int(new_received))
            except (OverReceipt, InvalidReceiptQuantity) as e:
                result.line_errors.append(e)
                continue

            previous = line.received_quantity
            if delta:
                self.ledger.apply_delta(
                    line.product_id,
                    delta,
                    movement_type=MovementType.receipt,
                    source_type=SOURCE_PO_LINE,
                    source_id=line.id,
                    reason=f"PO {po.po_number}",
                )
                line.received_quantity = int(new_received)
            result.applied.append(LineReceipt(line.id, line.product_id, previous, int(new_received), delta))

        for e in result.line_errors:
            logger.warning("purchase order %s receive: %s", po.id, e.message)

        result.fully_received = all(l.received_quantity >= l.ordered_quantity for l in po.lines)
        if result.fully_received and po.status != POStatus.received:
            PURCHASE_ORDER_MACHINE.effect(po.id, po.status, POStatus.received)
            po.status = POStatus.received
            po.received_at = datetime.now(timezone.utc)
            logger.info("purchase order %s fully received", po.po_number)

        flush_versioned(self.db, ENTITY, po.id)
        result.status = po.status
        return result

    # ---------- METADATA ----------
    def update_notes(self, po_id: int, notes: str | None, expected_eta: date | None = None) -> PurchaseOrder:
        # autorisé même en état terminal : aucune incidence stock
        po = self.get_order(po_id, lock=True)
        po.notes = notes
        if expected_eta is not None:
            po.expected_eta = expected_eta
        flush_versioned(self.db, ENTITY, po.id)
        return po

    def delete_order(self, po_id: int) -> TransitionResult:
        po = self.get_order(po_id, lock=True)
        result = TransitionResult(ENTITY, po.id, po.status.value, "DELETED")
        if po.status not in DELETABLE_STATUSES:
            result.errors = [
                InvalidTransition(
                    entity=ENTITY,
                    entity_id=po.id,
                    from_status=po.status.value,
                    to_status="DELETED",
                    reason="only draft or pending orders can be deleted",
                )
            ]
            return result
        self.db.delete(po)
        self.db.flush()
        logger.info("purchase order %s deleted", po.po_number)
        return result
