from decimal import Decimal

import pytest

from backend.app.db.models.core_types import MovementType, StockStatus
from backend.services.errors import InsufficientStock, UnknownMaterial, UnknownProduct
from backend.services.ledger import StockLedger, stock_status


def test_decrement_beyond_stock_is_rejected_with_shortfall(db_session, factory):
    """
    GIVEN
    - un produit à 10 unités

    THEN
    - décrémenter 50 échoue avec shortfall 40
    - la quantité reste 10, aucun mouvement écrit
    """
    p = factory.product(10)
    ledger = StockLedger(db_session)

    with pytest.raises(InsufficientStock) as exc:
        ledger.apply_delta(p.id, -50, movement_type=MovementType.sale)

    err = exc.value
    assert err.requested == 50
    assert err.available == 10
    assert err.shortfall == 40
    assert err.to_dict()["code"] == "INSUFFICIENT_STOCK"
    assert ledger.get_quantity(p.id) == 10
    assert ledger.movements(product_id=p.id) == []


def test_apply_delta_writes_quantity_and_movement(db_session, factory):
    p = factory.product(10)
    ledger = StockLedger(db_session)

    assert ledger.apply_delta(p.id, 5, movement_type=MovementType.receipt, source_type="po_line", source_id=7) == 15
    assert ledger.apply_delta(p.id, -15, movement_type=MovementType.sale) == 0

    moves = ledger.movements(product_id=p.id)
    assert [m.delta for m in moves] == [Decimal(5), Decimal(-15)]
    assert moves[0].source_type == "po_line"
    assert moves[0].source_id == 7
    assert moves[-1].quantity_after == 0


def test_zero_delta_is_noop(db_session, factory):
    p = factory.product(3)
    ledger = StockLedger(db_session)

    assert ledger.apply_delta(p.id, 0, movement_type=MovementType.adjustment) == 3
    assert ledger.movements(product_id=p.id) == []


def test_fractional_product_delta_is_refused(db_session, factory):
    p = factory.product(3)
    with pytest.raises(ValueError):
        StockLedger(db_session).apply_delta(p.id, 1.5, movement_type=MovementType.adjustment)


def test_unknown_ids(db_session):
    ledger = StockLedger(db_session)
    with pytest.raises(UnknownProduct):
        ledger.apply_delta(999, 1, movement_type=MovementType.adjustment)
    with pytest.raises(UnknownProduct):
        ledger.get_quantity(999)
    with pytest.raises(UnknownMaterial):
        ledger.apply_material_delta(999, Decimal("1"), movement_type=MovementType.adjustment)


def test_correction_clamps_at_zero(db_session, factory):
    """Seule la correction manuelle a le droit de clamper."""
    p = factory.product(4)
    ledger = StockLedger(db_session)

    assert ledger.apply_correction(p.id, -10, reason="inventaire") == 0
    [move] = ledger.movements(product_id=p.id)
    assert move.movement_type == MovementType.adjustment
    assert move.delta == -4


def test_set_quantity_records_the_difference(db_session, factory):
    p = factory.product(4)
    ledger = StockLedger(db_session)

    assert ledger.set_quantity(p.id, 9, reason="comptage") == 9
    [move] = ledger.movements(product_id=p.id)
    assert move.delta == 5

    with pytest.raises(ValueError):
        ledger.set_quantity(p.id, -1, reason="comptage")


def test_material_delta_uses_decimal(db_session, factory):
    m = factory.material("2.5")
    ledger = StockLedger(db_session)

    assert ledger.apply_material_delta(m.id, Decimal("-1.2"), movement_type=MovementType.consumption) == Decimal("1.3")
    with pytest.raises(InsufficientStock) as exc:
        ledger.apply_material_delta(m.id, Decimal("-2"), movement_type=MovementType.consumption)
    assert exc.value.item_type == "material"
    assert ledger.get_material_stock(m.id) == Decimal("1.3")


def test_shortages_lists_every_offending_product(db_session, factory):
    a = factory.product(5)
    b = factory.product(1)
    c = factory.product(100)

    shortages = StockLedger(db_session).shortages({a.id: 6, b.id: 3, c.id: 10})

    assert [(s.item_id, s.shortfall) for s in shortages] == [(a.id, 1), (b.id, 2)]


@pytest.mark.parametrize(
    "qty,expected",
    [
        (0, StockStatus.out_of_stock),
        (5, StockStatus.critical),
        (10, StockStatus.low),
        (11, StockStatus.in_stock),
    ],
)
def test_stock_status_is_derived(factory, qty, expected):
    assert stock_status(factory.product(qty, threshold=10)) == expected
