from decimal import Decimal

import pytest

from backend.app.db.models.core_types import BatchStatus, MovementType
from backend.services.errors import (
    InsufficientStock,
    InvalidTransition,
    NoActiveRecipe,
    UnknownMaterial,
    UnknownProduct,
)
from backend.services.ledger import StockLedger
from backend.services.production import ProductionService, RecipeLineInput
from backend.services.reconciliation import check_batch


def _setup(factory, stock_a="18", stock_b="100"):
    product = factory.product(0)
    a = factory.material(stock_a, cost="2", name="A")
    b = factory.material(stock_b, cost="1", name="B")
    recipe = factory.recipe(product, [(a, "2", "10"), (b, "1", "0")], hours="0.5")
    return product, recipe, a, b


def test_preview_does_not_write(db_session, factory):
    product, recipe, a, b = _setup(factory)

    report = ProductionService(db_session).preview(recipe.id, 10)

    assert report.possible_quantity == 8
    assert [x.material_id for x in report.bottlenecks] == [a.id]
    assert report.estimated_hours == Decimal("4.0")
    assert StockLedger(db_session).movements(material_id=a.id) == []
    assert StockLedger(db_session).get_material_stock(a.id) == Decimal("18")


def test_inactive_material_still_counts(db_session, factory):
    product = factory.product(0)
    m = factory.material("1", active=False)
    recipe = factory.recipe(product, [(m, "1", "0")])

    assert ProductionService(db_session).preview(recipe.id, 3).possible_quantity == 1


def test_create_batch_requires_active_recipe(db_session, factory):
    product = factory.product(0)
    m = factory.material("10")
    factory.recipe(product, [(m, "1", "0")], active=False)

    with pytest.raises(NoActiveRecipe):
        ProductionService(db_session).create_batch(product_id=product.id, quantity=1)


def test_create_batch_snapshots_recipe(db_session, factory):
    product, recipe, a, b = _setup(factory)
    batch = ProductionService(db_session).create_batch(product_id=product.id, quantity=5)

    assert batch.status == BatchStatus.planned
    assert batch.recipe_id == recipe.id
    assert [(m.material_id, m.required_quantity_per_unit) for m in batch.materials] == [
        (a.id, Decimal("2")),
        (b.id, Decimal("1")),
    ]

    # modifier la recette après coup ne change pas le batch
    recipe.materials[0].required_quantity_per_unit = Decimal("50")
    db_session.flush()
    assert batch.materials[0].required_quantity_per_unit == Decimal("2")


def test_commit_consumes_once(db_session, factory):
    product, recipe, a, b = _setup(factory)
    svc = ProductionService(db_session)
    batch = svc.create_batch(product_id=product.id, quantity=5)

    result = svc.commit_batch(batch.id)
    assert result.ok
    assert result.status == BatchStatus.in_progress
    assert result.consumed == {a.id: Decimal("11.000"), b.id: Decimal("5.000")}
    ledger = StockLedger(db_session)
    assert ledger.get_material_stock(a.id) == Decimal("7")
    assert ledger.get_material_stock(b.id) == Decimal("95")
    assert batch.materials_consumed
    assert batch.total_cost == Decimal("27.00")

    # complete : déjà consommé, aucun second décrément
    done = svc.complete_batch(batch.id)
    assert done.ok
    assert done.consumed == {}
    assert ledger.get_material_stock(a.id) == Decimal("7")
    assert batch.completed_at is not None
    assert check_batch(db_session, batch.id) == []
    assert all(m.movement_type == MovementType.consumption for m in ledger.movements(source_type="batch"))


def test_commit_is_all_or_nothing(db_session, factory):
    product, recipe, a, b = _setup(factory, stock_a="18", stock_b="3")
    svc = ProductionService(db_session)
    batch = svc.create_batch(product_id=product.id, quantity=5)

    result = svc.commit_batch(batch.id)

    assert not result.ok
    assert [(type(e), e.item_id) for e in result.errors] == [(InsufficientStock, b.id)]
    assert result.status == BatchStatus.planned
    ledger = StockLedger(db_session)
    assert ledger.get_material_stock(a.id) == Decimal("18")
    assert ledger.get_material_stock(b.id) == Decimal("3")
    assert ledger.movements(source_type="batch") == []
    assert batch.materials_consumed is False


def test_commit_rechecks_current_stock(db_session, factory):
    """Stock suffisant à la création, consommé ailleurs avant le commit => refus."""
    product, recipe, a, b = _setup(factory)
    svc = ProductionService(db_session)
    batch = svc.create_batch(product_id=product.id, quantity=8)

    StockLedger(db_session).apply_material_delta(a.id, Decimal("-10"), movement_type=MovementType.adjustment)

    result = svc.commit_batch(batch.id)
    assert not result.ok
    assert result.report.possible_quantity == 3


def test_complete_from_planned_consumes(db_session, factory):
    product, recipe, a, b = _setup(factory)
    svc = ProductionService(db_session)
    batch = svc.create_batch(product_id=product.id, quantity=2)

    result = svc.complete_batch(batch.id)
    assert result.ok
    assert result.status == BatchStatus.completed
    assert StockLedger(db_session).get_material_stock(a.id) == Decimal("13.6")


def test_cancel_does_not_restore_consumed_material(db_session, factory):
    product, recipe, a, b = _setup(factory)
    svc = ProductionService(db_session)
    batch = svc.create_batch(product_id=product.id, quantity=5)
    svc.commit_batch(batch.id)

    assert svc.cancel_batch(batch.id).ok
    assert StockLedger(db_session).get_material_stock(a.id) == Decimal("7")


def test_cancelled_batch_rejects_commit(db_session, factory):
    product, recipe, a, b = _setup(factory)
    svc = ProductionService(db_session)
    batch = svc.create_batch(product_id=product.id, quantity=1)
    svc.cancel_batch(batch.id)

    result = svc.commit_batch(batch.id)
    assert isinstance(result.errors[0], InvalidTransition)
    assert StockLedger(db_session).get_material_stock(a.id) == Decimal("18")


# ---------- RECETTES ----------
def test_duplicate_material_lines_preview_and_commit_agree(db_session, factory):
    product = factory.product(0)
    a = factory.material("10", name="A")
    recipe = factory.recipe(product, [(a, "1", "0"), (a, "1", "0")])
    svc = ProductionService(db_session)

    report = svc.preview(recipe.id, 8)
    assert not report.feasible
    assert report.possible_quantity == 5

    batch = svc.create_batch(product_id=product.id, quantity=8)
    result = svc.commit_batch(batch.id)
    assert not result.ok
    [err] = result.errors
    assert isinstance(err, InsufficientStock)
    assert err.available == Decimal("10")
    assert err.shortfall == Decimal("6")
    assert StockLedger(db_session).get_material_stock(a.id) == Decimal("10")


def test_duplicate_material_lines_consume_in_one_movement(db_session, factory):
    product = factory.product(0)
    a = factory.material("10", name="A")
    factory.recipe(product, [(a, "1", "0"), (a, "1", "0")])
    svc = ProductionService(db_session)

    batch = svc.create_batch(product_id=product.id, quantity=5)
    result = svc.commit_batch(batch.id)

    assert result.ok, result.errors
    assert result.consumed == {a.id: Decimal("10.000")}
    [mv] = StockLedger(db_session).movements(material_id=a.id)
    assert mv.delta == Decimal("-10")
    assert StockLedger(db_session).get_material_stock(a.id) == Decimal("0")
    assert check_batch(db_session, batch.id) == []


def test_new_recipe_replaces_the_active_one(db_session, factory):
    product = factory.product(0)
    a = factory.material("100", name="A")
    svc = ProductionService(db_session)

    first = svc.create_recipe(product_id=product.id, materials=[RecipeLineInput(a.id, Decimal("3"))])
    second = svc.create_recipe(product_id=product.id, materials=[RecipeLineInput(a.id, Decimal("2"))])

    assert not first.active
    assert second.active
    assert svc.active_recipe(product.id).id == second.id
    assert svc.create_batch(product_id=product.id, quantity=1).recipe_id == second.id


def test_create_recipe_rejects_unknown_ids(db_session, factory):
    product = factory.product(0)
    svc = ProductionService(db_session)

    with pytest.raises(UnknownProduct):
        svc.create_recipe(product_id=9999, materials=[])
    with pytest.raises(UnknownMaterial):
        svc.create_recipe(product_id=product.id, materials=[RecipeLineInput(9999, Decimal("1"))])


def test_deactivated_recipe_blocks_new_batches(db_session, factory):
    product = factory.product(0)
    a = factory.material("10")
    recipe = factory.recipe(product, [(a, "1", "0")])
    svc = ProductionService(db_session)
    batch = svc.create_batch(product_id=product.id, quantity=2)

    assert svc.deactivate_recipe(recipe.id).active is False
    with pytest.raises(NoActiveRecipe):
        svc.create_batch(product_id=product.id, quantity=1)
    # le batch déjà planifié garde son snapshot
    assert svc.commit_batch(batch.id).ok
