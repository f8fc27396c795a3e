from decimal import Decimal

import pytest
from sqlalchemy import update

from backend.app.db.models.core_types import BatchStatus, BillStatus, OrderStatus, POStatus
from backend.app.db.models.models_v1 import CustomerOrder, PurchaseOrderLine
from backend.services.errors import (
    ConflictingTransition,
    InvalidReceiptQuantity,
    InvalidTransition,
    OrderNotFound,
    OverReceipt,
)
from backend.services.procurement import POLineInput, ProcurementService
from backend.services.reconciliation import (
    StockEffect,
    check_inbound_order,
    check_outbound_order,
    guarded_effect,
    receipt_delta,
    should_release,
    should_reserve,
)
from backend.services.sales import OrderLineInput, SalesService
from backend.services.state_machine import (
    BATCH_MACHINE,
    BILL_MACHINE,
    CUSTOMER_ORDER_MACHINE,
    PURCHASE_ORDER_MACHINE,
    flush_versioned,
)


# ---------- GARDE ----------
def test_receipt_delta_rules():
    line = PurchaseOrderLine(id=1, ordered_quantity=50, received_quantity=20)
    assert receipt_delta(line, 20) == 0
    assert receipt_delta(line, 35) == 15
    with pytest.raises(OverReceipt):
        receipt_delta(line, 51)
    with pytest.raises(InvalidReceiptQuantity):
        receipt_delta(line, 10)


@pytest.mark.parametrize(
    "effect,reserved,expected",
    [
        (StockEffect.reserve, False, StockEffect.reserve),
        (StockEffect.reserve, True, StockEffect.none),
        (StockEffect.release, True, StockEffect.release),
        (StockEffect.release, False, StockEffect.none),
        (StockEffect.none, True, StockEffect.none),
    ],
)
def test_reservation_flag_guards_effect(effect, reserved, expected):
    assert guarded_effect(effect, reserved) == expected
    assert should_reserve(reserved, effect) == (expected is StockEffect.reserve)
    assert should_release(reserved, effect) == (expected is StockEffect.release)


# ---------- TABLES ----------
def test_customer_order_table():
    m = CUSTOMER_ORDER_MACHINE
    assert m.effect(1, OrderStatus.pending, OrderStatus.confirmed) == StockEffect.reserve
    assert m.effect(1, OrderStatus.pending, OrderStatus.shipped) == StockEffect.reserve
    assert m.effect(1, OrderStatus.processing, OrderStatus.rejected) == StockEffect.release
    assert m.effect(1, OrderStatus.confirmed, OrderStatus.delivered) == StockEffect.none
    assert m.effect(1, OrderStatus.pending, OrderStatus.cancelled) == StockEffect.none
    assert m.effect(1, OrderStatus.shipped, OrderStatus.shipped) == StockEffect.none
    with pytest.raises(InvalidTransition):
        m.effect(1, OrderStatus.shipped, OrderStatus.cancelled)
    with pytest.raises(InvalidTransition):
        m.effect(1, OrderStatus.processing, OrderStatus.pending)


def test_other_tables():
    assert BILL_MACHINE.effect(1, BillStatus.pending, BillStatus.cancelled) == StockEffect.release
    assert BILL_MACHINE.is_terminal(BillStatus.paid)
    assert BATCH_MACHINE.effect(1, BatchStatus.planned, BatchStatus.in_progress) == StockEffect.consume
    assert BATCH_MACHINE.effect(1, BatchStatus.in_progress, BatchStatus.completed) == StockEffect.none
    assert PURCHASE_ORDER_MACHINE.can(POStatus.shipped, POStatus.received)
    assert not PURCHASE_ORDER_MACHINE.can(POStatus.draft, POStatus.received)


# ---------- CONTRÔLE ----------
def test_inbound_check_reports_drift(db_session, factory):
    p = factory.product(0)
    svc = ProcurementService(db_session)
    po = svc.create_order(supplier_id=factory.supplier().id, lines=[POLineInput(p.id, 10, Decimal("1"))])
    svc.submit(po.id)
    svc.approve(po.id)
    svc.receive_items(po.id, {po.lines[0].id: 6})
    assert check_inbound_order(db_session, po.id) == []

    # écriture hors ledger : la ligne dit 8, les mouvements disent 6
    po.lines[0].received_quantity = 8
    db_session.flush()

    [d] = check_inbound_order(db_session, po.id)
    assert (d.item_id, d.expected, d.actual, d.drift) == (p.id, 8, 6, -2)


def test_outbound_check_reports_missing_reservation(db_session, factory):
    p = factory.product(10)
    order = SalesService(db_session).create_order(
        customer_id=factory.customer().id,
        lines=[OrderLineInput(p.id, 4)],
    ).order

    # flag posé sans mouvement
    order.stock_reserved = True
    db_session.flush()

    [d] = check_outbound_order(db_session, order.id)
    assert d.expected == -4
    assert d.actual == 0


def test_checks_raise_on_unknown_order(db_session):
    with pytest.raises(OrderNotFound):
        check_inbound_order(db_session, 404)
    with pytest.raises(OrderNotFound):
        check_outbound_order(db_session, 404)


# ---------- VERSION ----------
def test_stale_version_becomes_conflict(db_session, factory):
    p = factory.product(10)
    order = SalesService(db_session).create_order(
        customer_id=factory.customer().id,
        lines=[OrderLineInput(p.id, 1)],
    ).order

    # un autre écrivain a incrémenté la version entre-temps
    db_session.execute(
        update(CustomerOrder)
        .where(CustomerOrder.id == order.id)
        .values(version=CustomerOrder.version + 1)
        .execution_options(synchronize_session=False)
    )
    order.notes = "late edit"

    with pytest.raises(ConflictingTransition):
        flush_versioned(db_session, "customer order", order.id)
