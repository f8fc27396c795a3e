"""
Machines à états des commandes.

Une seule table de transitions par type de document. L'effet stock de
chaque transition est lu dans la table (jamais recalculé à partir du texte
des statuts au point d'appel), puis filtré par le flag stock_reserved via
reconciliation.guarded_effect.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backend.app.db.models.core_types import BatchStatus, BillStatus, OrderStatus, POStatus
from backend.services.errors import ConflictingTransition, InvalidTransition, LedgerError
from backend.services.reconciliation import StockEffect

NONE = StockEffect.none
RESERVE = StockEffect.reserve
RELEASE = StockEffect.release
CONSUME = StockEffect.consume


class StateMachine:
    def __init__(
        self,
        entity: str,
        transitions: Mapping[enum.Enum, Mapping[enum.Enum, StockEffect]],
        terminal: set[enum.Enum],
    ):
        self.entity = entity
        self.transitions = transitions
        self.terminal = frozenset(terminal)

    def is_terminal(self, status: enum.Enum) -> bool:
        return status in self.terminal

    def can(self, current: enum.Enum, target: enum.Enum) -> bool:
        return target in self.transitions.get(current, {})

    def effect(self, entity_id: int, current: enum.Enum, target: enum.Enum) -> StockEffect:
        """Effet stock de current -> target ; InvalidTransition si non atteignable."""
        if current == target:
            return NONE
        if not self.can(current, target):
            reason = "terminal state" if self.is_terminal(current) else None
            raise InvalidTransition(
                entity=self.entity,
                entity_id=entity_id,
                from_status=current.value,
                to_status=target.value,
                reason=reason,
            )
        return self.transitions[current][target]


# ---------- TABLES ----------
RESERVED_ORDER_STATUSES = {OrderStatus.confirmed, OrderStatus.processing}

CUSTOMER_ORDER_MACHINE = StateMachine(
    "customer order",
    {
        # pending -> shipped/delivered : passage implicite par confirmed
        OrderStatus.pending: {
            OrderStatus.confirmed: RESERVE,
            OrderStatus.processing: RESERVE,
            OrderStatus.shipped: RESERVE,
            OrderStatus.delivered: RESERVE,
            OrderStatus.cancelled: NONE,
            OrderStatus.rejected: NONE,
        },
        OrderStatus.confirmed: {
            OrderStatus.processing: NONE,
            OrderStatus.shipped: NONE,
            OrderStatus.delivered: NONE,
            OrderStatus.cancelled: RELEASE,
            OrderStatus.rejected: RELEASE,
        },
        OrderStatus.processing: {
            OrderStatus.shipped: NONE,
            OrderStatus.delivered: NONE,
            OrderStatus.cancelled: RELEASE,
            OrderStatus.rejected: RELEASE,
        },
        OrderStatus.shipped: {
            OrderStatus.delivered: NONE,
        },
    },
    terminal={OrderStatus.delivered, OrderStatus.cancelled, OrderStatus.rejected},
)

# Bill : stock décrémenté à la création, libéré seulement si annulé avant paiement
BILL_MACHINE = StateMachine(
    "bill",
    {
        BillStatus.pending: {
            BillStatus.paid: NONE,
            BillStatus.cancelled: RELEASE,
        },
    },
    terminal={BillStatus.paid, BillStatus.cancelled},
)

PURCHASE_ORDER_MACHINE = StateMachine(
    "purchase order",
    {
        POStatus.draft: {POStatus.pending: NONE, POStatus.cancelled: NONE},
        POStatus.pending: {POStatus.approved: NONE, POStatus.cancelled: NONE},
        POStatus.approved: {POStatus.shipped: NONE, POStatus.received: NONE, POStatus.cancelled: NONE},
        POStatus.shipped: {POStatus.received: NONE, POStatus.cancelled: NONE},
        POStatus.received: {POStatus.completed: NONE},
    },
    terminal={POStatus.completed, POStatus.cancelled},
)

BATCH_MACHINE = StateMachine(
    "production batch",
    {
        BatchStatus.planned: {
            BatchStatus.in_progress: CONSUME,
            BatchStatus.completed: CONSUME,
            BatchStatus.cancelled: NONE,
        },
        BatchStatus.in_progress: {
            BatchStatus.completed: NONE,
            BatchStatus.cancelled: NONE,
        },
    },
    terminal={BatchStatus.completed, BatchStatus.cancelled},
)


# ---------- RÉSULTAT ----------
@dataclass
class TransitionResult:
    entity: str
    entity_id: int
    from_status: str
    to_status: str
    effect: StockEffect = NONE
    stock_reserved: bool | None = None
    errors: list[LedgerError] | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def error(self) -> LedgerError | None:
        return self.errors[0] if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "effect": self.effect.value,
            "stock_reserved": self.stock_reserved,
            "errors": [e.to_dict() for e in self.errors or []],
        }


# ---------- SÉRIALISATION PAR DOCUMENT ----------
def check_expected_status(entity: str, entity_id: int, current: enum.Enum, expected: enum.Enum | None) -> None:
    if expected is not None and current != expected:
        raise ConflictingTransition(
            entity=entity,
            entity_id=entity_id,
            expected=expected.value,
            actual=current.value,
        )


def flush_versioned(db: Session, entity: str, entity_id: int) -> None:
    """Flush ; une version périmée (écriture concurrente) devient ConflictingTransition."""
    try:
        db.flush()
    except StaleDataError as e:
        raise ConflictingTransition(entity=entity, entity_id=entity_id) from e
