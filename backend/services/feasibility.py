"""
Faisabilité de production (lecture seule).

Pour chaque matière de la recette :
    effectif / unité = requis / unité * (1 + wastage_percent / 100)
    plafond          = floor(stock courant / effectif)

    possible = min(demandé, plafonds)

Règles :
- une matière à effectif nul ne limite rien (exclue du min)
- une matière citée sur plusieurs lignes est plafonnée sur son besoin cumulé
- goulot = toute matière dont le plafond < demandé
- le coût est calculé sur `possible`, jamais sur `demandé`
- aucune écriture : evaluate() ne reçoit que des valeurs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Sequence

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class MaterialRequirement:
    material_id: int
    name: str
    required_per_unit: Decimal
    current_stock: Decimal
    cost_per_unit: Decimal = Decimal("0")
    wastage_percent: Decimal = Decimal("0")
    unit: str = "kg"

    @property
    def effective_per_unit(self) -> Decimal:
        return Decimal(self.required_per_unit) * (1 + Decimal(self.wastage_percent) / HUNDRED)

    def ceiling(self) -> int | None:
        """Unités produisibles avec ce seul stock ; None si la matière ne limite rien."""
        return _ceiling(self.effective_per_unit, self.current_stock)


@dataclass(frozen=True)
class Bottleneck:
    material_id: int
    name: str
    unit: str
    available: Decimal
    required: Decimal
    shortage: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "material_id": self.material_id,
            "name": self.name,
            "unit": self.unit,
            "available": str(self.available),
            "required": str(self.required),
            "shortage": str(self.shortage),
        }


@dataclass(frozen=True)
class MaterialBreakdown:
    material_id: int
    name: str
    unit: str
    effective_per_unit: Decimal
    required: Decimal
    available: Decimal
    shortage: Decimal
    cost: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "material_id": self.material_id,
            "name": self.name,
            "unit": self.unit,
            "effective_per_unit": str(self.effective_per_unit),
            "required": str(self.required),
            "available": str(self.available),
            "shortage": str(self.shortage),
            "cost": str(self.cost),
        }


@dataclass
class FeasibilityReport:
    requested_quantity: int
    possible_quantity: int
    total_cost: Decimal
    estimated_hours: Decimal
    bottlenecks: list[Bottleneck] = field(default_factory=list)
    breakdown: list[MaterialBreakdown] = field(default_factory=list)

    @property
    def feasible(self) -> bool:
        return self.possible_quantity == self.requested_quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested_quantity": self.requested_quantity,
            "possible_quantity": self.possible_quantity,
            "feasible": self.feasible,
            "total_cost": str(self.total_cost),
            "estimated_hours": str(self.estimated_hours),
            "bottlenecks": [b.to_dict() for b in self.bottlenecks],
            "breakdown": [m.to_dict() for m in self.breakdown],
        }


def _ceiling(effective_per_unit: Decimal, current_stock: Decimal) -> int | None:
    if effective_per_unit <= 0:
        return None
    stock = Decimal(current_stock)
    if stock <= 0:
        return 0
    return int(stock // effective_per_unit)


def _combined_needs(requirements: Sequence[MaterialRequirement]) -> list[tuple[MaterialRequirement, Decimal]]:
    """Besoin effectif / unité cumulé par matière : une recette peut citer deux fois la même."""
    first: dict[int, MaterialRequirement] = {}
    needs: dict[int, Decimal] = {}
    for req in requirements:
        first.setdefault(req.material_id, req)
        needs[req.material_id] = needs.get(req.material_id, Decimal("0")) + req.effective_per_unit
    return [(first[mid], needs[mid]) for mid in first]


def evaluate(
    requirements: Sequence[MaterialRequirement],
    requested_quantity: int,
    *,
    estimated_time_hours: Decimal = Decimal("1"),
) -> FeasibilityReport:
    if requested_quantity <= 0:
        raise ValueError("requested_quantity must be > 0")

    needs = _combined_needs(requirements)
    possible = requested_quantity
    bottlenecks: list[Bottleneck] = []
    for req, eff in needs:
        ceiling = _ceiling(eff, req.current_stock)
        if ceiling is None or ceiling >= requested_quantity:
            continue
        possible = min(possible, ceiling)
        required = eff * requested_quantity
        available = Decimal(req.current_stock)
        bottlenecks.append(
            Bottleneck(
                material_id=req.material_id,
                name=req.name,
                unit=req.unit,
                available=available,
                required=required,
                shortage=max(Decimal("0"), required - available),
            )
        )

    total_cost = Decimal("0")
    breakdown: list[MaterialBreakdown] = []
    for req, eff in needs:
        required = eff * requested_quantity
        available = Decimal(req.current_stock)
        cost = eff * possible * Decimal(req.cost_per_unit)
        total_cost += cost
        breakdown.append(
            MaterialBreakdown(
                material_id=req.material_id,
                name=req.name,
                unit=req.unit,
                effective_per_unit=eff,
                required=required,
                available=available,
                shortage=max(Decimal("0"), required - available),
                cost=cost,
            )
        )

    return FeasibilityReport(
        requested_quantity=requested_quantity,
        possible_quantity=possible,
        total_cost=total_cost,
        estimated_hours=Decimal(estimated_time_hours) * possible,
        bottlenecks=bottlenecks,
        breakdown=breakdown,
    )
