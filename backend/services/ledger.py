"""
Ledger de stock.

Ce module est le SEUL à écrire Product.on_hand_quantity et
RawMaterial.current_stock. Tous les flux (réception PO, commandes client,
bills, production) passent par StockLedger.

Règles :
- lecture + écriture sous verrou ligne (SELECT ... FOR UPDATE)
- un décrément qui rendrait le stock négatif échoue (InsufficientStock),
  la quantité reste inchangée
- le clamp à zéro est réservé aux corrections manuelles (apply_correction)
- chaque delta appliqué laisse une ligne StockMovement
- aucun commit ici : la transaction appartient à l'appelant
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import MovementType, StockStatus
from backend.app.db.models.models_v1 import Product, RawMaterial, StockMovement
from backend.services.errors import InsufficientStock, UnknownMaterial, UnknownProduct

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Target:
    model: type
    field: str
    label: str
    not_found: type


_PRODUCT = _Target(Product, "on_hand_quantity", "sku", UnknownProduct)
_MATERIAL = _Target(RawMaterial, "current_stock", "name", UnknownMaterial)


def stock_status(product: Product) -> StockStatus:
    """Statut dérivé à la lecture, jamais stocké."""
    qty = product.on_hand_quantity
    threshold = product.reorder_threshold
    if qty <= 0:
        return StockStatus.out_of_stock
    if qty <= threshold * 0.5:
        return StockStatus.critical
    if qty <= threshold:
        return StockStatus.low
    return StockStatus.in_stock


class StockLedger:
    def __init__(self, db: Session):
        self.db = db

    # ---------- READ ----------
    def get_quantity(self, product_id: int) -> int:
        qty = self.db.execute(
            select(Product.on_hand_quantity).where(Product.id == product_id)
        ).scalar_one_or_none()
        if qty is None:
            raise UnknownProduct(product_id)
        return int(qty)

    def get_material_stock(self, material_id: int) -> Decimal:
        qty = self.db.execute(
            select(RawMaterial.current_stock).where(RawMaterial.id == material_id)
        ).scalar_one_or_none()
        if qty is None:
            raise UnknownMaterial(material_id)
        return Decimal(qty)

    def movements(
        self,
        *,
        product_id: int | None = None,
        material_id: int | None = None,
        source_type: str | None = None,
        source_id: int | None = None,
    ) -> list[StockMovement]:
        stmt = select(StockMovement).order_by(StockMovement.id)
        if product_id is not None:
            stmt = stmt.where(StockMovement.product_id == product_id)
        if material_id is not None:
            stmt = stmt.where(StockMovement.material_id == material_id)
        if source_type is not None:
            stmt = stmt.where(StockMovement.source_type == source_type)
        if source_id is not None:
            stmt = stmt.where(StockMovement.source_id == source_id)
        return list(self.db.execute(stmt).scalars().all())

    # ---------- LOCKS ----------
    def _lock(self, target: _Target, ids: Iterable[int]) -> dict[int, object]:
        # ordre croissant = ordre de verrouillage déterministe (pas de deadlock entre flux)
        wanted = sorted({int(i) for i in ids})
        if not wanted:
            return {}
        rows = (
            self.db.execute(
                select(target.model)
                .where(target.model.id.in_(wanted))
                .order_by(target.model.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            .scalars()
            .all()
        )
        found = {int(r.id): r for r in rows}
        for i in wanted:
            if i not in found:
                raise target.not_found(i)
        return found

    def lock_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        return self._lock(_PRODUCT, product_ids)

    def lock_materials(self, material_ids: Iterable[int]) -> dict[int, RawMaterial]:
        return self._lock(_MATERIAL, material_ids)

    def shortages(self, requirements: Mapping[int, int]) -> list[InsufficientStock]:
        """
        Verrouille les produits et retourne un InsufficientStock par produit
        dont le stock ne couvre pas la quantité demandée. Ne modifie rien.
        """
        products = self.lock_products(requirements.keys())
        out = []
        for pid in sorted(products):
            needed = requirements[pid]
            p = products[pid]
            if p.on_hand_quantity < needed:
                out.append(
                    InsufficientStock(
                        item_type="product",
                        item_id=pid,
                        item_name=p.sku,
                        requested=needed,
                        available=p.on_hand_quantity,
                    )
                )
        return out

    # ---------- WRITE ----------
    def apply_delta(
        self,
        product_id: int,
        delta: int,
        *,
        movement_type: MovementType,
        source_type: str | None = None,
        source_id: int | None = None,
        reason: str | None = None,
    ) -> int:
        if isinstance(delta, bool) or int(delta) != delta:
            raise ValueError(f"Product delta must be an integer, got {delta!r}")
        return int(
            self._apply(
                _PRODUCT,
                product_id,
                int(delta),
                clamp=False,
                movement_type=movement_type,
                source_type=source_type,
                source_id=source_id,
                reason=reason,
            )
        )

    def apply_material_delta(
        self,
        material_id: int,
        delta: Decimal | int,
        *,
        movement_type: MovementType,
        source_type: str | None = None,
        source_id: int | None = None,
        reason: str | None = None,
    ) -> Decimal:
        return Decimal(
            self._apply(
                _MATERIAL,
                material_id,
                Decimal(str(delta)),
                clamp=False,
                movement_type=movement_type,
                source_type=source_type,
                source_id=source_id,
                reason=reason,
            )
        )

    def apply_correction(self, product_id: int, delta: int, *, reason: str) -> int:
        """
        Correction manuelle (inventaire physique, casse...).
        Seule opération autorisée à clamper à zéro au lieu d'échouer.
        """
        return int(
            self._apply(
                _PRODUCT,
                product_id,
                int(delta),
                clamp=True,
                movement_type=MovementType.adjustment,
                source_type="correction",
                source_id=None,
                reason=reason,
            )
        )

    def set_quantity(self, product_id: int, quantity: int, *, reason: str) -> int:
        if quantity < 0:
            raise ValueError("quantity must be >= 0")
        current = self.lock_products([product_id])[product_id].on_hand_quantity
        return self.apply_correction(product_id, quantity - current, reason=reason)

    def _apply(
        self,
        target: _Target,
        row_id: int,
        delta,
        *,
        clamp: bool,
        movement_type: MovementType,
        source_type: str | None,
        source_id: int | None,
        reason: str | None,
    ):
        row = self._lock(target, [row_id])[int(row_id)]
        current = getattr(row, target.field)
        new_qty = current + delta

        if new_qty < 0:
            if not clamp:
                err = InsufficientStock(
                    item_type="product" if target is _PRODUCT else "material",
                    item_id=int(row_id),
                    item_name=getattr(row, target.label),
                    requested=-delta,
                    available=current,
                )
                logger.warning("ledger rejected: %s", err.message)
                raise err
            delta = -current
            new_qty = current + delta

        if delta == 0:
            return current

        setattr(row, target.field, new_qty)
        self.db.add(
            StockMovement(
                product_id=int(row_id) if target is _PRODUCT else None,
                material_id=int(row_id) if target is _MATERIAL else None,
                movement_type=movement_type,
                delta=delta,
                quantity_after=new_qty,
                source_type=source_type,
                source_id=source_id,
                reason=reason,
            )
        )
        self.db.flush()

        logger.info(
            "ledger %s %s %s: %s -> %s (%s %s:%s)",
            movement_type.value,
            target.model.__tablename__,
            row_id,
            current,
            new_qty,
            f"{delta:+}",
            source_type,
            source_id,
        )
        return new_qty
