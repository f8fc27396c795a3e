from decimal import Decimal

import pytest

from backend.services.feasibility import MaterialRequirement, evaluate


def _req(material_id, required, stock, *, wastage="0", cost="0", name=None):
    return MaterialRequirement(
        material_id=material_id,
        name=name or f"M{material_id}",
        required_per_unit=Decimal(required),
        current_stock=Decimal(stock),
        cost_per_unit=Decimal(cost),
        wastage_percent=Decimal(wastage),
    )


def test_wastage_bottleneck_limits_output():
    """
    GIVEN
    - A : 2 / unité, 10 % de perte, stock 18  => 2.2 effectif, plafond 8
    - B : 1 / unité, stock 100

    THEN
    - possible 8 sur 10 demandés, goulot = A uniquement
    """
    report = evaluate([_req(1, "2", "18", wastage="10", name="A"), _req(2, "1", "100", name="B")], 10)

    assert report.possible_quantity == 8
    assert not report.feasible
    assert [b.name for b in report.bottlenecks] == ["A"]
    bottleneck = report.bottlenecks[0]
    assert bottleneck.required == Decimal("22")
    assert bottleneck.shortage == Decimal("4")


def test_enough_stock_is_feasible():
    report = evaluate([_req(1, "1", "50")], 10)
    assert report.feasible
    assert report.possible_quantity == 10
    assert report.bottlenecks == []


def test_no_materials_is_feasible_at_zero_cost():
    report = evaluate([], 5)
    assert report.feasible
    assert report.total_cost == 0


def test_zero_requirement_never_limits():
    report = evaluate([_req(1, "0", "0"), _req(2, "1", "3")], 5)
    assert report.possible_quantity == 3
    assert [b.material_id for b in report.bottlenecks] == [2]


def test_empty_stock_gives_zero():
    report = evaluate([_req(1, "1", "0")], 4)
    assert report.possible_quantity == 0


def test_cost_uses_possible_quantity():
    reqs = [_req(1, "2", "18", wastage="10", cost="1.5"), _req(2, "1", "100", cost="0.25")]
    report = evaluate(reqs, 10)

    expected = sum(r.effective_per_unit * report.possible_quantity * r.cost_per_unit for r in reqs)
    assert report.total_cost == expected
    assert report.total_cost == sum(m.cost for m in report.breakdown)


def test_estimated_hours_scale_with_possible_quantity():
    report = evaluate([_req(1, "1", "3")], 10, estimated_time_hours=Decimal("1.5"))
    assert report.estimated_hours == Decimal("4.5")


@pytest.mark.parametrize("stock", ["0", "5", "17.9", "18", "40", "1000"])
def test_more_stock_never_reduces_possible_quantity(stock):
    low = evaluate([_req(1, "2", stock, wastage="10")], 12).possible_quantity
    high = evaluate([_req(1, "2", str(Decimal(stock) + 3), wastage="10")], 12).possible_quantity
    assert high >= low
    assert low <= 12


def test_requested_quantity_must_be_positive():
    with pytest.raises(ValueError):
        evaluate([], 0)


def test_material_listed_twice_is_capped_on_combined_need():
    # A cité sur deux lignes : 1 + 1 par unité contre un stock de 10
    report = evaluate([_req(1, "1", "10", name="A"), _req(1, "1", "10", name="A")], 8)

    assert report.possible_quantity == 5
    assert not report.feasible
    [bottleneck] = report.bottlenecks
    assert bottleneck.required == Decimal("16")
    assert bottleneck.available == Decimal("10")
    assert bottleneck.shortage == Decimal("6")
    assert len(report.breakdown) == 1
