"""
Fee schedule snapshot.

Fees are reference data stored next to the ledger as ``type = "fee"``
records. They are read once into an immutable FeeSchedule and reused for
every event the process handles; fee changes apply to new processes only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Tuple

from roundbilling.core.settings import S, Settings
from roundbilling.core.time import now_ts
from roundbilling.errors import FeeNotFoundError
from roundbilling.models import FeeKind, FeeRecord
from roundbilling.services.ledger_store import LedgerStore

NINE_HOLE_POLICY = "nine_hole"
REJECT_POLICY = "reject"
HOLE_POLICIES = (NINE_HOLE_POLICY, REJECT_POLICY)


@dataclass(frozen=True)
class FeeSchedule:
    costs: Mapping[Tuple[str, str], int] = field(default_factory=lambda: MappingProxyType({}))
    non_18_hole_policy: str = NINE_HOLE_POLICY
    loaded_at: int = 0

    def __post_init__(self) -> None:
        if self.non_18_hole_policy not in HOLE_POLICIES:
            raise ValueError(f"Unknown non-18-hole policy: {self.non_18_hole_policy}")

    @classmethod
    def from_records(cls, records: Iterable[FeeRecord], *, non_18_hole_policy: str = NINE_HOLE_POLICY) -> "FeeSchedule":
        costs = {}
        for rec in records:
            # first record wins when an entity has duplicates
            costs.setdefault((rec.entity_id, rec.item), int(rec.cost))
        return cls(costs=MappingProxyType(costs), non_18_hole_policy=non_18_hole_policy, loaded_at=now_ts())

    def __len__(self) -> int:
        return len(self.costs)

    def fee_kind(self, entity_id: str, hole_count: int) -> FeeKind:
        if hole_count == 18:
            return FeeKind.COST_18_HOLES
        if hole_count == 9 or self.non_18_hole_policy == NINE_HOLE_POLICY:
            return FeeKind.COST_9_HOLES
        raise FeeNotFoundError(entity_id, f"{hole_count}_holes", hole_count=hole_count)

    def cost_for(self, entity_id: str, hole_count: int) -> int:
        kind = self.fee_kind(entity_id, hole_count)
        try:
            return self.costs[(entity_id, kind.value)]
        except KeyError:
            raise FeeNotFoundError(entity_id, kind.value, hole_count=hole_count) from None


async def load_fee_schedule(store: LedgerStore, settings: Settings = S) -> FeeSchedule:
    records = [rec async for rec in store.iter_fee_records()]
    return FeeSchedule.from_records(records, non_18_hole_policy=settings.non_18_hole_policy)
