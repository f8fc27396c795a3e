"""
Erreurs typées du ledger de stock.

Chaque erreur porte un `code` stable (machine-readable) et ses données
structurées, exposées via `to_dict()` pour l'API :

    LedgerError
    +-- InsufficientStock        décrément qui rendrait le stock négatif
    +-- InvalidTransition        changement de statut non atteignable
    +-- ConflictingTransition    modification concurrente (version / statut attendu)
    +-- OverReceipt              reçu > commandé
    +-- InvalidReceiptQuantity   reçu cumulatif qui recule
    +-- InactiveProduct          produit désactivé sur une nouvelle vente
    +-- NotFoundError
        +-- UnknownProduct
        +-- UnknownMaterial
        +-- UnknownLineItem
        +-- UnknownSupplier / UnknownCustomer
        +-- OrderNotFound
        +-- NoActiveRecipe

InsufficientStock / InvalidTransition / ConflictingTransition sont des
issues métier : les services les renvoient dans un résultat typé au lieu de
les laisser remonter. Les erreurs SQLAlchemy ne sont jamais converties.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class LedgerError(Exception):
    code: str = "LEDGER_ERROR"
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def data(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.data()}


class InsufficientStock(LedgerError):
    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        *,
        item_type: str,
        item_id: int,
        item_name: str,
        requested: int | Decimal,
        available: int | Decimal,
    ):
        self.item_type = item_type
        self.item_id = item_id
        self.item_name = item_name
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"Insufficient stock for {item_type} {item_name} "
            f"(available={available}, requested={requested}, shortfall={self.shortfall})"
        )

    def data(self) -> dict[str, Any]:
        return {
            "item_type": self.item_type,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "requested": str(self.requested),
            "available": str(self.available),
            "shortfall": str(self.shortfall),
        }


class InvalidTransition(LedgerError):
    code = "INVALID_TRANSITION"

    def __init__(self, *, entity: str, entity_id: int, from_status: str, to_status: str, reason: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        msg = f"{entity} {entity_id}: cannot go from {from_status} to {to_status}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)

    def data(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "entity_id": self.entity_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
        }


class ConflictingTransition(LedgerError):
    code = "CONFLICTING_TRANSITION"
    retryable = True

    def __init__(self, *, entity: str, entity_id: int, expected: str | None = None, actual: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        if expected is not None:
            msg = f"{entity} {entity_id} was modified concurrently (expected {expected}, found {actual})"
        else:
            msg = f"{entity} {entity_id} was modified concurrently"
        super().__init__(msg)

    def data(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "entity_id": self.entity_id,
            "expected": self.expected,
            "actual": self.actual,
        }


class OverReceipt(LedgerError):
    code = "OVER_RECEIPT"

    def __init__(self, *, line_id: int, ordered: int, received: int):
        self.line_id = line_id
        self.ordered = ordered
        self.received = received
        super().__init__(f"Line {line_id}: received {received} exceeds ordered {ordered}")

    def data(self) -> dict[str, Any]:
        return {"line_id": self.line_id, "ordered": self.ordered, "received": self.received}


class InvalidReceiptQuantity(LedgerError):
    code = "INVALID_RECEIPT_QUANTITY"

    def __init__(self, *, line_id: int, previous: int, received: int):
        self.line_id = line_id
        self.previous = previous
        self.received = received
        super().__init__(
            f"Line {line_id}: cumulative received quantity cannot go down ({previous} -> {received})"
        )

    def data(self) -> dict[str, Any]:
        return {"line_id": self.line_id, "previous": self.previous, "received": self.received}


class InactiveProduct(LedgerError):
    code = "INACTIVE_PRODUCT"

    def __init__(self, product_id: int, sku: str):
        self.product_id = product_id
        self.sku = sku
        super().__init__(f"Product {sku} ({product_id}) is inactive")

    def data(self) -> dict[str, Any]:
        return {"product_id": self.product_id, "sku": self.sku}


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    entity = "entity"

    def __init__(self, entity_id: int, message: str | None = None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity} {entity_id} not found")

    def data(self) -> dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id}


class UnknownProduct(NotFoundError):
    code = "UNKNOWN_PRODUCT"
    entity = "product"


class UnknownMaterial(NotFoundError):
    code = "UNKNOWN_MATERIAL"
    entity = "material"


class UnknownLineItem(NotFoundError):
    code = "UNKNOWN_LINE_ITEM"
    entity = "line item"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        super().__init__(entity_id)


class NoActiveRecipe(NotFoundError):
    code = "NO_ACTIVE_RECIPE"
    entity = "recipe"

    def __init__(self, product_id: int):
        super().__init__(product_id, f"No active recipe found for product {product_id}")


class UnknownSupplier(NotFoundError):
    code = "UNKNOWN_SUPPLIER"
    entity = "supplier"


class UnknownCustomer(NotFoundError):
    code = "UNKNOWN_CUSTOMER"
    entity = "customer"
