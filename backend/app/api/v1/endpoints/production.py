from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.errors import http_error
from backend.app.db.models.core_types import BatchStatus, MovementType
from backend.app.db.models.models_v1 import ProductionBatch, RawMaterial, Recipe
from backend.services.errors import InsufficientStock, UnknownMaterial
from backend.services.ledger import StockLedger
from backend.services.production import ProductionService, RecipeLineInput

router = APIRouter(prefix="/production")


# ---------- Schemas ----------
class PreviewRequest(BaseModel):
    product_id: int | None = None
    recipe_id: int | None = None
    quantity: int = Field(gt=0)

    @model_validator(mode="after")
    def _one_target(self):
        if (self.product_id is None) == (self.recipe_id is None):
            raise ValueError("Provide exactly one of product_id or recipe_id")
        return self


class BatchCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    start_date: date | None = None
    estimated_completion_date: date | None = None
    notes: str | None = None


class BatchTransition(BaseModel):
    expected_status: BatchStatus | None = None


class MaterialCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(default="general", max_length=64)
    unit: str = Field(default="kg", max_length=32)
    initial_stock: Decimal = Field(default=Decimal("0"), ge=0)
    cost_per_unit: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_level: Decimal = Field(default=Decimal("0"), ge=0)
    supplier_name: str | None = None


class MaterialAdjust(BaseModel):
    delta: Decimal
    reason: str = Field(min_length=1, max_length=255)


class RecipeLineCreate(BaseModel):
    material_id: int
    required_quantity_per_unit: Decimal = Field(ge=0)
    unit: str = Field(default="kg", max_length=32)
    wastage_percent: Decimal = Field(default=Decimal("0"), ge=0)


class RecipeCreate(BaseModel):
    product_id: int
    name: str | None = None
    estimated_time_hours: Decimal = Field(default=Decimal("1"), ge=0)
    materials: list[RecipeLineCreate] = Field(default_factory=list)


def _serialize_batch(b: ProductionBatch) -> dict:
    return {
        "id": b.id,
        "batch_number": b.batch_number,
        "product_id": b.product_id,
        "recipe_id": b.recipe_id,
        "planned_quantity": b.planned_quantity,
        "status": b.status,
        "materials_consumed": b.materials_consumed,
        "total_cost": str(b.total_cost) if b.total_cost is not None else None,
        "start_date": b.start_date,
        "estimated_completion_date": b.estimated_completion_date,
        "completed_at": b.completed_at,
        "notes": b.notes,
        "materials": [
            {
                "material_id": m.material_id,
                "required_quantity_per_unit": str(m.required_quantity_per_unit),
                "wastage_percent": str(m.wastage_percent),
                "unit": m.unit,
                "consumed_quantity": str(m.consumed_quantity),
            }
            for m in b.materials
        ],
    }


def _serialize_material(m: RawMaterial) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "category": m.category,
        "unit": m.unit,
        "current_stock": str(m.current_stock),
        "cost_per_unit": str(m.cost_per_unit),
        "reorder_level": str(m.reorder_level),
        "active": m.active,
    }


# ---------- Feasibility ----------
@router.post("/preview")
def preview(payload: PreviewRequest, db: Session = Depends(get_db)):
    """Projection seule : aucune écriture, même si la quantité est faisable."""
    svc = ProductionService(db)
    recipe_id = payload.recipe_id
    if recipe_id is None:
        recipe_id = svc.active_recipe(payload.product_id).id
    return svc.preview(recipe_id, payload.quantity).to_dict()


# ---------- Batches ----------
@router.get("/batches")
def list_batches(status: BatchStatus | None = None, db: Session = Depends(get_db)):
    stmt = select(ProductionBatch).order_by(ProductionBatch.id.desc())
    if status is not None:
        stmt = stmt.where(ProductionBatch.status == status)
    return [_serialize_batch(b) for b in db.execute(stmt).scalars().all()]


@router.post("/batches")
def create_batch(payload: BatchCreate, db: Session = Depends(get_db)):
    batch = ProductionService(db).create_batch(
        product_id=payload.product_id,
        quantity=payload.quantity,
        start_date=payload.start_date,
        estimated_completion_date=payload.estimated_completion_date,
        notes=payload.notes,
    )
    db.commit()
    db.refresh(batch)
    return _serialize_batch(batch)


@router.get("/batches/{batch_id}")
def get_batch(batch_id: int, db: Session = Depends(get_db)):
    return _serialize_batch(ProductionService(db).get_batch(batch_id))


@router.post("/batches/{batch_id}/commit")
def commit_batch(batch_id: int, payload: BatchTransition | None = None, db: Session = Depends(get_db)):
    result = ProductionService(db).commit_batch(batch_id, payload.expected_status if payload else None)
    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    return result.to_dict()


@router.post("/batches/{batch_id}/complete")
def complete_batch(batch_id: int, payload: BatchTransition | None = None, db: Session = Depends(get_db)):
    result = ProductionService(db).complete_batch(batch_id, payload.expected_status if payload else None)
    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    return result.to_dict()


@router.post("/batches/{batch_id}/cancel")
def cancel_batch(batch_id: int, payload: BatchTransition | None = None, db: Session = Depends(get_db)):
    result = ProductionService(db).cancel_batch(batch_id, payload.expected_status if payload else None)
    if not result.ok:
        raise http_error(result.errors)
    db.commit()
    return result.to_dict()


# ---------- Raw materials ----------
@router.get("/materials")
def list_materials(db: Session = Depends(get_db)):
    rows = db.execute(select(RawMaterial).order_by(RawMaterial.name)).scalars().all()
    return [_serialize_material(m) for m in rows]


@router.post("/materials")
def create_material(payload: MaterialCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(RawMaterial).where(RawMaterial.name == payload.name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Material already exists")

    m = RawMaterial(
        name=payload.name,
        category=payload.category,
        unit=payload.unit,
        current_stock=Decimal("0"),
        cost_per_unit=payload.cost_per_unit,
        reorder_level=payload.reorder_level,
        supplier_name=payload.supplier_name,
    )
    db.add(m)
    db.flush()
    if payload.initial_stock > 0:
        StockLedger(db).apply_material_delta(
            m.id,
            payload.initial_stock,
            movement_type=MovementType.adjustment,
            source_type="correction",
            reason="initial stock",
        )
    db.commit()
    db.refresh(m)
    return _serialize_material(m)


@router.post("/materials/{material_id}/adjust")
def adjust_material(material_id: int, payload: MaterialAdjust, db: Session = Depends(get_db)):
    try:
        qty = StockLedger(db).apply_material_delta(
            material_id,
            payload.delta,
            movement_type=MovementType.adjustment,
            source_type="correction",
            reason=payload.reason,
        )
    except InsufficientStock as e:
        raise http_error([e])
    db.commit()
    return {"material_id": material_id, "current_stock": str(qty)}


@router.delete("/materials/{material_id}")
def deactivate_material(material_id: int, db: Session = Depends(get_db)):
    # soft delete : l'historique des mouvements reste valide
    m = db.get(RawMaterial, material_id)
    if not m:
        raise UnknownMaterial(material_id)
    m.active = False
    db.commit()
    return _serialize_material(m)


# ---------- Recipes ----------
def _serialize_recipe(r: Recipe) -> dict:
    return {
        "id": r.id,
        "product_id": r.product_id,
        "name": r.name,
        "active": r.active,
        "estimated_time_hours": str(r.estimated_time_hours),
        "materials": [
            {
                "material_id": m.material_id,
                "required_quantity_per_unit": str(m.required_quantity_per_unit),
                "wastage_percent": str(m.wastage_percent),
                "unit": m.unit,
            }
            for m in r.materials
        ],
    }


@router.get("/recipes")
def list_recipes(product_id: int | None = None, include_inactive: bool = False, db: Session = Depends(get_db)):
    stmt = select(Recipe).order_by(Recipe.id.desc())
    if product_id is not None:
        stmt = stmt.where(Recipe.product_id == product_id)
    if not include_inactive:
        stmt = stmt.where(Recipe.active.is_(True))
    return [_serialize_recipe(r) for r in db.execute(stmt).scalars().all()]


@router.post("/recipes")
def create_recipe(payload: RecipeCreate, db: Session = Depends(get_db)):
    r = ProductionService(db).create_recipe(
        product_id=payload.product_id,
        name=payload.name,
        estimated_time_hours=payload.estimated_time_hours,
        materials=[
            RecipeLineInput(ln.material_id, ln.required_quantity_per_unit, ln.wastage_percent, ln.unit)
            for ln in payload.materials
        ],
    )
    db.commit()
    db.refresh(r)
    return _serialize_recipe(r)


@router.delete("/recipes/{recipe_id}")
def deactivate_recipe(recipe_id: int, db: Session = Depends(get_db)):
    # soft delete : les batches gardent leur snapshot et leur recipe_id
    r = ProductionService(db).deactivate_recipe(recipe_id)
    db.commit()
    db.refresh(r)
    return _serialize_recipe(r)
