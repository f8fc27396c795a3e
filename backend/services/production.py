"""
Production service.

Cycle batch : planned -> in_progress -> completed (ou cancelled).

- recette : une seule active par produit, la nouvelle remplace l'ancienne
- preview : faisabilité seule, aucune écriture
- create_batch : exige une recette active, fige la recette (snapshot)
- commit (planned -> in_progress) : consommation matière, une seule fois,
  tout ou rien, recalculée sous verrou contre le stock COURANT
- cancel : la matière déjà consommée n'est pas restituée
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import BatchStatus, MovementType
from backend.app.db.models.models_v1 import (
    Product,
    ProductionBatch,
    ProductionBatchMaterial,
    RawMaterial,
    Recipe,
    RecipeMaterial,
)
from backend.services.errors import (
    ConflictingTransition,
    InsufficientStock,
    InvalidTransition,
    LedgerError,
    NoActiveRecipe,
    OrderNotFound,
    UnknownMaterial,
    UnknownProduct,
)
from backend.services.feasibility import FeasibilityReport, MaterialRequirement, evaluate
from backend.services.ledger import StockLedger
from backend.services.reconciliation import SOURCE_BATCH, StockEffect
from backend.services.state_machine import (
    BATCH_MACHINE,
    TransitionResult,
    check_expected_status,
    flush_versioned,
)

logger = logging.getLogger(__name__)

ENTITY = "production batch"

MATERIAL_STEP = Decimal("0.001")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class RecipeLineInput:
    material_id: int
    required_quantity_per_unit: Decimal
    wastage_percent: Decimal = Decimal("0")
    unit: str = "kg"


@dataclass
class CommitResult:
    batch_id: int
    status: BatchStatus
    report: FeasibilityReport | None = None
    consumed: dict[int, Decimal] = field(default_factory=dict)
    errors: list[LedgerError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "batch_id": self.batch_id,
            "status": self.status.value,
            "consumed": {str(k): str(v) for k, v in self.consumed.items()},
            "report": self.report.to_dict() if self.report else None,
            "errors": [e.to_dict() for e in self.errors],
        }


class ProductionService:
    def __init__(self, db: Session, ledger: StockLedger | None = None):
        self.db = db
        self.ledger = ledger or StockLedger(db)

    # ---------- READ ----------
    def active_recipe(self, product_id: int) -> Recipe:
        if not self.db.get(Product, product_id):
            raise UnknownProduct(product_id)
        recipe = self.db.execute(
            select(Recipe)
            .where(Recipe.product_id == product_id, Recipe.active.is_(True))
            .order_by(Recipe.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if recipe is None:
            raise NoActiveRecipe(product_id)
        return recipe

    def get_batch(self, batch_id: int, *, lock: bool = False) -> ProductionBatch:
        stmt = select(ProductionBatch).where(ProductionBatch.id == batch_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        batch = self.db.execute(stmt).scalar_one_or_none()
        if batch is None:
            raise OrderNotFound(ENTITY, batch_id)
        return batch

    def preview(self, recipe_id: int, quantity: int) -> FeasibilityReport:
        """Projection sans effet de bord (les matières inactives comptent toujours)."""
        recipe = self.db.get(Recipe, recipe_id)
        if recipe is None:
            raise OrderNotFound("recipe", recipe_id)
        requirements = [
            MaterialRequirement(
                material_id=rm.material_id,
                name=rm.material.name,
                required_per_unit=rm.required_quantity_per_unit,
                current_stock=rm.material.current_stock,
                cost_per_unit=rm.material.cost_per_unit,
                wastage_percent=rm.wastage_percent,
                unit=rm.unit,
            )
            for rm in recipe.materials
        ]
        return evaluate(requirements, quantity, estimated_time_hours=recipe.estimated_time_hours)

    # ---------- RECETTES ----------
    def create_recipe(
        self,
        *,
        product_id: int,
        materials: Sequence[RecipeLineInput],
        name: str | None = None,
        estimated_time_hours: Decimal = Decimal("1"),
    ) -> Recipe:
        """
        Nouvelle recette active du produit.
        L'ancienne recette active est désactivée (gardée pour les batches qui la référencent).
        """
        if not self.db.get(Product, product_id):
            raise UnknownProduct(product_id)
        for ln in materials:
            if not self.db.get(RawMaterial, ln.material_id):
                raise UnknownMaterial(ln.material_id)

        previous = self.db.execute(
            select(Recipe).where(Recipe.product_id == product_id, Recipe.active.is_(True))
        ).scalars().all()
        for old in previous:
            old.active = False

        recipe = Recipe(
            product_id=product_id,
            name=name,
            estimated_time_hours=estimated_time_hours,
            active=True,
            materials=[
                RecipeMaterial(
                    material_id=ln.material_id,
                    required_quantity_per_unit=ln.required_quantity_per_unit,
                    wastage_percent=ln.wastage_percent,
                    unit=ln.unit,
                )
                for ln in materials
            ],
        )
        self.db.add(recipe)
        self.db.flush()
        if previous:
            logger.info(
                "recipe %s replaces %s for product %s",
                recipe.id,
                ", ".join(str(r.id) for r in previous),
                product_id,
            )
        return recipe

    def deactivate_recipe(self, recipe_id: int) -> Recipe:
        recipe = self.db.get(Recipe, recipe_id)
        if recipe is None:
            raise OrderNotFound("recipe", recipe_id)
        recipe.active = False
        self.db.flush()
        return recipe

    # ---------- CREATE ----------
    def create_batch(
        self,
        *,
        product_id: int,
        quantity: int,
        start_date: date | None = None,
        estimated_completion_date: date | None = None,
        notes: str | None = None,
        batch_number: str | None = None,
    ) -> ProductionBatch:
        if quantity <= 0:
            raise ValueError("quantity must be > 0")
        recipe = self.active_recipe(product_id)

        batch = ProductionBatch(
            batch_number=batch_number or f"BATCH-{uuid.uuid4().hex[:12].upper()}",
            product_id=product_id,
            recipe_id=recipe.id,
            planned_quantity=quantity,
            status=BatchStatus.planned,
            start_date=start_date or date.today(),
            estimated_completion_date=estimated_completion_date,
            notes=notes,
            materials=[
                ProductionBatchMaterial(
                    material_id=rm.material_id,
                    required_quantity_per_unit=rm.required_quantity_per_unit,
                    wastage_percent=rm.wastage_percent,
                    unit=rm.unit,
                    consumed_quantity=Decimal("0"),
                )
                for rm in recipe.materials
            ],
        )
        self.db.add(batch)
        self.db.flush()
        logger.info("batch %s planned (%s x product %s)", batch.batch_number, quantity, product_id)
        return batch

    # ---------- CONSOMMATION ----------
    def _consume(self, batch: ProductionBatch, result: CommitResult) -> bool:
        """
        Verrouille les matières (ordre croissant), recalcule la faisabilité
        sur le stock courant puis applique un delta négatif par matière du
        snapshot. Retourne False (et remplit result.errors) si rupture.
        """
        materials = self.ledger.lock_materials(m.material_id for m in batch.materials)
        requirements = [
            MaterialRequirement(
                material_id=m.material_id,
                name=materials[m.material_id].name,
                required_per_unit=m.required_quantity_per_unit,
                current_stock=materials[m.material_id].current_stock,
                cost_per_unit=materials[m.material_id].cost_per_unit,
                wastage_percent=m.wastage_percent,
                unit=m.unit,
            )
            for m in batch.materials
        ]
        report = evaluate(requirements, batch.planned_quantity)
        result.report = report

        if not report.feasible:
            result.errors = [
                InsufficientStock(
                    item_type="material",
                    item_id=b.material_id,
                    item_name=b.name,
                    requested=b.required,
                    available=b.available,
                )
                for b in report.bottlenecks
            ]
            for e in result.errors:
                logger.warning("batch %s: %s", batch.batch_number, e.message)
            return False

        try:
            with self.db.begin_nested():
                per_material: dict[int, Decimal] = {}
                for line, req in zip(batch.materials, requirements):
                    qty = (req.effective_per_unit * batch.planned_quantity).quantize(MATERIAL_STEP, rounding=ROUND_HALF_UP)
                    line.consumed_quantity = qty
                    per_material[line.material_id] = per_material.get(line.material_id, Decimal("0")) + qty
                # un seul delta par matière, même citée sur plusieurs lignes
                for material_id in sorted(per_material):
                    qty = per_material[material_id]
                    if qty > 0:
                        self.ledger.apply_material_delta(
                            material_id,
                            -qty,
                            movement_type=MovementType.consumption,
                            source_type=SOURCE_BATCH,
                            source_id=batch.id,
                            reason=f"batch {batch.batch_number}",
                        )
                result.consumed = per_material
                batch.materials_consumed = True
                batch.total_cost = report.total_cost.quantize(CENT, rounding=ROUND_HALF_UP)
                self.db.flush()
        except InsufficientStock as e:
            # arrondi au millième au-delà du stock : rien n'a été consommé
            result.errors = [e]
            result.consumed = {}
            return False
        return True

    def _advance(self, batch_id: int, target: BatchStatus, expected_status: BatchStatus | None) -> CommitResult:
        batch = self.get_batch(batch_id, lock=True)
        current = batch.status
        result = CommitResult(batch_id=batch.id, status=current)

        try:
            check_expected_status(ENTITY, batch.id, current, expected_status)
            effect = BATCH_MACHINE.effect(batch.id, current, target)
        except (InvalidTransition, ConflictingTransition) as e:
            logger.warning("batch %s: %s", batch.id, e.message)
            result.errors = [e]
            return result

        if current == target:
            return result

        try:
            with self.db.begin_nested():
                if effect is StockEffect.consume and not batch.materials_consumed:
                    if not self._consume(batch, result):
                        return result
                batch.status = target
                if target is BatchStatus.completed:
                    batch.completed_at = datetime.now(timezone.utc)
                flush_versioned(self.db, ENTITY, batch.id)
        except ConflictingTransition as e:
            result.errors = [e]
            result.consumed = {}
            return result

        result.status = batch.status
        logger.info("batch %s: %s -> %s", batch.batch_number, current.value, target.value)
        return result

    def commit_batch(self, batch_id: int, expected_status: BatchStatus | None = None) -> CommitResult:
        return self._advance(batch_id, BatchStatus.in_progress, expected_status)

    def complete_batch(self, batch_id: int, expected_status: BatchStatus | None = None) -> CommitResult:
        return self._advance(batch_id, BatchStatus.completed, expected_status)

    def cancel_batch(self, batch_id: int, expected_status: BatchStatus | None = None) -> TransitionResult:
        batch = self.get_batch(batch_id, lock=True)
        current = batch.status
        result = TransitionResult(ENTITY, batch.id, current.value, BatchStatus.cancelled.value)
        try:
            check_expected_status(ENTITY, batch.id, current, expected_status)
            BATCH_MACHINE.effect(batch.id, current, BatchStatus.cancelled)
            if current != BatchStatus.cancelled:
                with self.db.begin_nested():
                    batch.status = BatchStatus.cancelled
                    flush_versioned(self.db, ENTITY, batch.id)
        except (InvalidTransition, ConflictingTransition) as e:
            logger.warning("batch %s: %s", batch.id, e.message)
            result.errors = [e]
            return result

        if batch.materials_consumed:
            logger.warning("batch %s cancelled after consumption (materials not restored)", batch.batch_number)
        return result
