"""
Sales service : commandes client + bills (point de vente).

Règle métier (réservation) :
- l'effet stock d'un changement de statut est lu dans CUSTOMER_ORDER_MACHINE
  (ou BILL_MACHINE) à partir du statut STOCKÉ
- il est ensuite filtré par le flag stock_reserved :
    réserver  seulement si stock_reserved == False
    libérer   seulement si stock_reserved == True
- une réservation multi-lignes est tout ou rien (SAVEPOINT) : un seul
  produit en rupture => aucune ligne décrémentée

Bill :
- stock décrémenté dès la création (statut paid par défaut)
- toutes les ruptures sont rapportées d'un coup, agrégées par produit
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.db.models.core_types import BillStatus, MovementType, OrderStatus, PaymentStatus
from backend.app.db.models.models_v1 import Bill, BillLine, Customer, CustomerOrder, CustomerOrderLine, Product
from backend.services.errors import (
    ConflictingTransition,
    InactiveProduct,
    InsufficientStock,
    InvalidTransition,
    LedgerError,
    OrderNotFound,
    UnknownCustomer,
    UnknownProduct,
)
from backend.services.ledger import StockLedger
from backend.services.reconciliation import (
    SOURCE_BILL,
    SOURCE_CUSTOMER_ORDER,
    StockEffect,
    guarded_effect,
)
from backend.services.state_machine import (
    BILL_MACHINE,
    CUSTOMER_ORDER_MACHINE,
    RESERVED_ORDER_STATUSES,
    TransitionResult,
    check_expected_status,
    flush_versioned,
)

logger = logging.getLogger(__name__)

ORDER = "customer order"
BILL = "bill"

CENT = Decimal("0.01")
CREATABLE_ORDER_STATUSES = {OrderStatus.pending, OrderStatus.confirmed, OrderStatus.processing}


@dataclass(frozen=True)
class OrderLineInput:
    product_id: int
    quantity: int
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class BillLineInput:
    product_id: int
    quantity: int
    unit_price: Decimal | None = None
    discount: Decimal = Decimal("0")


@dataclass
class OrderResult:
    order: CustomerOrder | None = None
    errors: list[LedgerError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class BillResult:
    bill: Bill | None = None
    errors: list[LedgerError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "bill_id": self.bill.id if self.bill else None,
            "errors": [e.to_dict() for e in self.errors],
        }


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def requirements(lines: Iterable) -> dict[int, int]:
    """Quantités agrégées par produit (deux lignes du même produit = un seul besoin)."""
    out: dict[int, int] = defaultdict(int)
    for ln in lines:
        out[int(ln.product_id)] += int(ln.quantity)
    return dict(out)


class SalesService:
    def __init__(self, db: Session, ledger: StockLedger | None = None):
        self.db = db
        self.ledger = ledger or StockLedger(db)

    # ---------- READ ----------
    def get_order(self, order_id: int, *, lock: bool = False) -> CustomerOrder:
        stmt = select(CustomerOrder).where(CustomerOrder.id == order_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        order = self.db.execute(stmt).scalar_one_or_none()
        if order is None:
            raise OrderNotFound(ORDER, order_id)
        return order

    def get_bill(self, bill_id: int, *, lock: bool = False) -> Bill:
        stmt = select(Bill).where(Bill.id == bill_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        bill = self.db.execute(stmt).scalar_one_or_none()
        if bill is None:
            raise OrderNotFound(BILL, bill_id)
        return bill

    # ---------- LEDGER ----------
    def _take(self, needed: dict[int, int], *, movement_type: MovementType, source_type: str, source_id: int, reason: str):
        """Décrémente tous les produits ou aucun. Doit tourner dans un SAVEPOINT."""
        for pid in sorted(needed):
            self.ledger.apply_delta(
                pid,
                -needed[pid],
                movement_type=movement_type,
                source_type=source_type,
                source_id=source_id,
                reason=reason,
            )

    def _give_back(self, needed: dict[int, int], *, movement_type: MovementType, source_type: str, source_id: int, reason: str):
        for pid in sorted(needed):
            self.ledger.apply_delta(
                pid,
                needed[pid],
                movement_type=movement_type,
                source_type=source_type,
                source_id=source_id,
                reason=reason,
            )

    def _products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        # un produit désactivé garde son historique mais n'entre plus dans une vente
        out = {}
        for pid in sorted(product_ids):
            p = self.db.get(Product, pid)
            if p is None:
                raise UnknownProduct(pid)
            if not p.active:
                raise InactiveProduct(pid, p.sku)
            out[pid] = p
        return out

    # ---------- CUSTOMER ORDERS ----------
    def create_order(
        self,
        *,
        customer_id: int,
        lines: Sequence[OrderLineInput],
        status: OrderStatus = OrderStatus.pending,
        order_number: str | None = None,
        payment_method: str = "cash",
        delivery_date: date | None = None,
        notes: str | None = None,
    ) -> OrderResult:
        """
        Une commande créée directement en confirmed / processing réserve
        immédiatement. En cas de rupture, rien n'est créé.
        """
        if not lines:
            raise ValueError("An order needs at least one line")
        if status not in CREATABLE_ORDER_STATUSES:
            raise ValueError(f"An order cannot be created in status {status.value}")
        if not self.db.get(Customer, customer_id):
            raise UnknownCustomer(customer_id)
        for ln in lines:
            if ln.quantity <= 0:
                raise ValueError(f"Invalid quantity {ln.quantity} for product {ln.product_id}")

        products = self._products({ln.product_id for ln in lines})
        needed = requirements(lines)
        reserve = status in RESERVED_ORDER_STATUSES

        if reserve:
            shortages = self.ledger.shortages(needed)
            if shortages:
                for e in shortages:
                    logger.warning("customer order rejected: %s", e.message)
                return OrderResult(errors=list(shortages))

        order_lines = [
            CustomerOrderLine(
                product_id=ln.product_id,
                quantity=ln.quantity,
                unit_price=ln.unit_price if ln.unit_price is not None else products[ln.product_id].unit_price,
            )
            for ln in lines
        ]
        order = CustomerOrder(
            order_number=order_number or f"ORD-{uuid.uuid4().hex[:12].upper()}",
            customer_id=customer_id,
            status=status,
            payment_method=payment_method,
            delivery_date=delivery_date,
            notes=notes,
            total_amount=_money(sum((Decimal(l.quantity) * Decimal(l.unit_price) for l in order_lines), Decimal("0"))),
            lines=order_lines,
        )

        try:
            with self.db.begin_nested():
                self.db.add(order)
                self.db.flush()
                if reserve:
                    self._take(
                        needed,
                        movement_type=MovementType.reserve,
                        source_type=SOURCE_CUSTOMER_ORDER,
                        source_id=order.id,
                        reason=f"order {order.order_number} {status.value}",
                    )
                    order.stock_reserved = True
                    self.db.flush()
        except InsufficientStock as e:
            return OrderResult(errors=[e])

        logger.info("customer order %s created in %s", order.order_number, status.value)
        return OrderResult(order=order)

    def transition(
        self,
        order_id: int,
        new_status: OrderStatus,
        expected_status: OrderStatus | None = None,
    ) -> TransitionResult:
        order = self.get_order(order_id, lock=True)
        current = order.status
        result = TransitionResult(ORDER, order.id, current.value, new_status.value, stock_reserved=order.stock_reserved)

        try:
            check_expected_status(ORDER, order.id, current, expected_status)
            effect = CUSTOMER_ORDER_MACHINE.effect(order.id, current, new_status)
        except (InvalidTransition, ConflictingTransition) as e:
            logger.warning("customer order %s: %s", order.id, e.message)
            result.errors = [e]
            return result

        if current == new_status:
            # re-demander le statut courant : no-op idempotent
            return result

        effect = guarded_effect(effect, order.stock_reserved)
        result.effect = effect
        needed = requirements(order.lines)
        reason = f"order {order.order_number} {current.value}->{new_status.value}"

        if effect is StockEffect.reserve:
            shortages = self.ledger.shortages(needed)
            if shortages:
                for e in shortages:
                    logger.warning("customer order %s: %s", order.id, e.message)
                result.errors = list(shortages)
                return result

        try:
            with self.db.begin_nested():
                if effect is StockEffect.reserve:
                    self._take(
                        needed,
                        movement_type=MovementType.reserve,
                        source_type=SOURCE_CUSTOMER_ORDER,
                        source_id=order.id,
                        reason=reason,
                    )
                    order.stock_reserved = True
                elif effect is StockEffect.release:
                    self._give_back(
                        needed,
                        movement_type=MovementType.release,
                        source_type=SOURCE_CUSTOMER_ORDER,
                        source_id=order.id,
                        reason=reason,
                    )
                    order.stock_reserved = False
                order.status = new_status
                flush_versioned(self.db, ORDER, order.id)
        except (InsufficientStock, ConflictingTransition) as e:
            logger.warning("customer order %s: %s", order_id, e.message)
            result.errors = [e]
            result.effect = StockEffect.none
            return result

        result.stock_reserved = order.stock_reserved
        logger.info("customer order %s: %s -> %s (%s)", order.id, current.value, new_status.value, effect.value)
        return result

    def update_notes(
        self,
        order_id: int,
        notes: str | None,
        delivery_date: date | None = None,
        *,
        payment_method: str | None = None,
        payment_status: PaymentStatus | None = None,
    ) -> CustomerOrder:
        """Métadonnées seulement (autorisé même en statut terminal) ; jamais de mouvement de stock."""
        order = self.get_order(order_id, lock=True)
        order.notes = notes
        if delivery_date is not None:
            order.delivery_date = delivery_date
        if payment_method is not None:
            order.payment_method = payment_method
        if payment_status is not None:
            order.payment_status = payment_status
        flush_versioned(self.db, ORDER, order.id)
        return order

    def delete_order(self, order_id: int) -> TransitionResult:
        """
        Suppression : une commande encore réservée (confirmed / processing)
        rend son stock. Expédiée / livrée : le stock est parti, rien à rendre.
        """
        order = self.get_order(order_id, lock=True)
        result = TransitionResult(ORDER, order.id, order.status.value, "DELETED", stock_reserved=order.stock_reserved)

        with self.db.begin_nested():
            if order.stock_reserved and order.status in RESERVED_ORDER_STATUSES:
                self._give_back(
                    requirements(order.lines),
                    movement_type=MovementType.release,
                    source_type=SOURCE_CUSTOMER_ORDER,
                    source_id=order.id,
                    reason=f"order {order.order_number} deleted",
                )
                result.effect = StockEffect.release
                result.stock_reserved = False
            self.db.delete(order)
            self.db.flush()

        logger.info("customer order %s deleted (%s)", order.order_number, result.effect.value)
        return result

    # ---------- BILLS ----------
    def create_bill(
        self,
        *,
        lines: Sequence[BillLineInput],
        customer_id: int | None = None,
        status: BillStatus = BillStatus.paid,
        tax_rate: Decimal | None = None,
        payment_method: str = "cash",
        bill_number: str | None = None,
        notes: str | None = None,
    ) -> BillResult:
        if not lines:
            raise ValueError("A bill needs at least one line")
        if status is BillStatus.cancelled:
            raise ValueError("A bill cannot be created cancelled")
        if customer_id is not None and not self.db.get(Customer, customer_id):
            raise UnknownCustomer(customer_id)
        for ln in lines:
            if ln.quantity <= 0:
                raise ValueError(f"Invalid quantity {ln.quantity} for product {ln.product_id}")
            if Decimal(ln.discount) < 0:
                raise ValueError(f"Invalid discount {ln.discount} for product {ln.product_id}")

        products = self._products({ln.product_id for ln in lines})
        needed = requirements(lines)

        shortages = self.ledger.shortages(needed)
        if shortages:
            for e in shortages:
                logger.warning("bill rejected: %s", e.message)
            return BillResult(errors=list(shortages))

        bill_lines = []
        for ln in lines:
            price = Decimal(ln.unit_price if ln.unit_price is not None else products[ln.product_id].unit_price)
            discount = Decimal(ln.discount)
            bill_lines.append(
                BillLine(
                    product_id=ln.product_id,
                    quantity=ln.quantity,
                    unit_price=price,
                    discount=discount,
                    total_price=_money(Decimal(ln.quantity) * price - discount),
                )
            )

        rate = Decimal(settings.default_tax_rate if tax_rate is None else tax_rate)
        subtotal = _money(sum((l.total_price for l in bill_lines), Decimal("0")))
        tax_amount = _money(subtotal * rate / Decimal(100))

        bill = Bill(
            bill_number=bill_number or f"BILL-{uuid.uuid4().hex[:12].upper()}",
            customer_id=customer_id,
            status=status,
            subtotal=subtotal,
            tax_amount=tax_amount,
            total_amount=subtotal + tax_amount,
            payment_method=payment_method,
            notes=notes,
            lines=bill_lines,
        )

        try:
            with self.db.begin_nested():
                self.db.add(bill)
                self.db.flush()
                self._take(
                    needed,
                    movement_type=MovementType.sale,
                    source_type=SOURCE_BILL,
                    source_id=bill.id,
                    reason=f"bill {bill.bill_number}",
                )
                bill.stock_reserved = True
                self.db.flush()
        except InsufficientStock as e:
            return BillResult(errors=[e])

        logger.info("bill %s created (%s lines, total=%s)", bill.bill_number, len(bill_lines), bill.total_amount)
        return BillResult(bill=bill)

    def transition_bill(
        self,
        bill_id: int,
        new_status: BillStatus,
        expected_status: BillStatus | None = None,
    ) -> TransitionResult:
        bill = self.get_bill(bill_id, lock=True)
        current = bill.status
        result = TransitionResult(BILL, bill.id, current.value, new_status.value, stock_reserved=bill.stock_reserved)

        try:
            check_expected_status(BILL, bill.id, current, expected_status)
            effect = BILL_MACHINE.effect(bill.id, current, new_status)
        except (InvalidTransition, ConflictingTransition) as e:
            logger.warning("bill %s: %s", bill.id, e.message)
            result.errors = [e]
            return result

        if current == new_status:
            return result

        effect = guarded_effect(effect, bill.stock_reserved)
        result.effect = effect
        try:
            with self.db.begin_nested():
                if effect is StockEffect.release:
                    self._release_bill(bill, reason=f"bill {bill.bill_number} cancelled")
                bill.status = new_status
                flush_versioned(self.db, BILL, bill.id)
        except ConflictingTransition as e:
            result.errors = [e]
            result.effect = StockEffect.none
            return result

        result.stock_reserved = bill.stock_reserved
        return result

    def _release_bill(self, bill: Bill, *, reason: str) -> None:
        self._give_back(
            requirements(bill.lines),
            movement_type=MovementType.sale_reversal,
            source_type=SOURCE_BILL,
            source_id=bill.id,
            reason=reason,
        )
        bill.stock_reserved = False

    def delete_bill(self, bill_id: int) -> TransitionResult:
        bill = self.get_bill(bill_id, lock=True)
        result = TransitionResult(BILL, bill.id, bill.status.value, "DELETED", stock_reserved=bill.stock_reserved)

        if bill.status is BillStatus.paid:
            # vente encaissée : la marchandise est partie
            result.errors = [
                InvalidTransition(
                    entity=BILL,
                    entity_id=bill.id,
                    from_status=bill.status.value,
                    to_status="DELETED",
                    reason="paid bills cannot be deleted",
                )
            ]
            return result

        with self.db.begin_nested():
            if bill.stock_reserved:
                self._release_bill(bill, reason=f"bill {bill.bill_number} deleted")
                result.effect = StockEffect.release
                result.stock_reserved = False
            self.db.delete(bill)
            self.db.flush()

        logger.info("bill %s deleted (%s)", bill.bill_number, result.effect.value)
        return result
