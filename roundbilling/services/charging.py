"""
Round fee charging.

A round event is billed at most once. The round's transaction id is the
producer's claim that the round was already charged; that claim is only ever
verified against the ledger, never re-derived. A round without a transaction
id is charged from the fee schedule and one debit is appended.

Processing the same event again is safe: once the debit is visible and the
event carries its id, the decision is ALREADY_CHARGED and nothing is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from roundbilling.core.settings import S, Settings
from roundbilling.errors import BillingException
from roundbilling.metrics import record_outcome
from roundbilling.models import EntryKind, LedgerEntry, OriginalSource, Round, RoundEvent, TaskType, is_well_formed_uuid
from roundbilling.services.audit import audit_event
from roundbilling.services.balance import current_balance
from roundbilling.services.duplicates import find_by_round_transaction_id
from roundbilling.services.fee_schedule import FeeSchedule, load_fee_schedule
from roundbilling.services.ledger_store import LedgerStore
from roundbilling.services.ledger_writer import append_debit


class Outcome(str, Enum):
    SKIP = "skip"
    ALREADY_CHARGED = "already_charged"
    CHARGE = "charge"
    ANOMALY = "anomaly"


class AnomalyKind(str, Enum):
    MALFORMED_TRANSACTION_ID = "malformed_transaction_id"
    INCONSISTENT_LEDGER_STATE = "inconsistent_ledger_state"
    UNEXPECTED_ENTRY_KIND = "unexpected_entry_kind"


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    reason: str = ""
    cost: Optional[int] = None
    anomaly: Optional[AnomalyKind] = None
    linked_entry: Optional[LedgerEntry] = None

    @classmethod
    def skip(cls, reason: str, anomaly: Optional[AnomalyKind] = None) -> "Decision":
        return cls(Outcome.SKIP, reason=reason, anomaly=anomaly)

    @classmethod
    def already_charged(cls, entry: LedgerEntry) -> "Decision":
        return cls(Outcome.ALREADY_CHARGED, reason="debit_exists", linked_entry=entry)

    @classmethod
    def charge(cls, cost: int) -> "Decision":
        return cls(Outcome.CHARGE, reason="no_transaction_id", cost=cost)

    @classmethod
    def flag(cls, anomaly: AnomalyKind, reason: str, entry: Optional[LedgerEntry] = None) -> "Decision":
        return cls(Outcome.ANOMALY, reason=reason, anomaly=anomaly, linked_entry=entry)


@dataclass(frozen=True)
class ProcessResult:
    decision: Decision
    entry: Optional[LedgerEntry] = None
    balance_before: Optional[int] = None

    @property
    def outcome(self) -> Outcome:
        return self.decision.outcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.decision.outcome.value,
            "anomaly": self.decision.anomaly.value if self.decision.anomaly else None,
            "cost": self.decision.cost,
            "entry_id": self.entry.id if self.entry else None,
            "available_tokens": self.entry.available_tokens if self.entry else None,
        }


_AUDIT_EVENTS = {
    Outcome.SKIP: "round_fee_skipped",
    Outcome.ALREADY_CHARGED: "round_fee_already_charged",
    Outcome.CHARGE: "round_fee_charged",
    Outcome.ANOMALY: "round_fee_anomaly",
}


class RoundFeeProcessor:
    """
    Decides and applies the fee for one round event at a time.

    The fee schedule is loaded on first use and kept for the life of the
    processor. Build one processor per process and share it.
    """

    def __init__(self, store: LedgerStore, settings: Settings = S, fee_schedule: Optional[FeeSchedule] = None):
        self.store = store
        self.settings = settings
        self._fees = fee_schedule

    async def fee_schedule(self) -> FeeSchedule:
        if self._fees is None:
            # concurrent first loads may each fetch; the data is identical
            self._fees = await load_fee_schedule(self.store, self.settings)
        return self._fees

    def out_of_scope_reason(self, rnd: Round) -> Optional[str]:
        if rnd.entity_id not in self.settings.billable_entity_ids:
            return "entity_not_billable"
        if rnd.source_kind is OriginalSource.ADMIN_PANEL:
            # admin charges are billed by the admin flow
            return "admin_panel_source"
        return None

    async def decide(self, event: RoundEvent) -> Decision:
        if event.task_kind is not TaskType.CALC_ROUND_FEE:
            return Decision.skip("not_round_fee_task")
        rnd = event.round
        if rnd is None:
            return Decision.skip("no_round")

        malformed = rnd.has_transaction_id and not is_well_formed_uuid(rnd.transaction_id or "")
        scope_reason = self.out_of_scope_reason(rnd)
        if scope_reason:
            return Decision.skip(scope_reason, anomaly=AnomalyKind.MALFORMED_TRANSACTION_ID if malformed else None)

        if rnd.has_transaction_id:
            if malformed:
                # never charge on an id we cannot verify
                return Decision.flag(AnomalyKind.MALFORMED_TRANSACTION_ID, "transaction_id_not_uuid")

            linked = await find_by_round_transaction_id(self.store, rnd.transaction_id or "")
            if linked is None:
                return Decision.flag(AnomalyKind.INCONSISTENT_LEDGER_STATE, "linked_entry_missing")
            if linked.kind is EntryKind.DEBIT:
                return Decision.already_charged(linked)
            return Decision.flag(AnomalyKind.UNEXPECTED_ENTRY_KIND, f"linked_entry_{linked.kind.value}", linked)

        fees = await self.fee_schedule()
        return Decision.charge(fees.cost_for(rnd.entity_id, rnd.hole_count))

    async def process(self, event: RoundEvent) -> ProcessResult:
        """
        Decide and, when due, append the debit for one round event.

        Safe to call repeatedly with the same event. Fatal errors propagate
        after being audited; nothing is written when one is raised.
        """
        try:
            decision = await self.decide(event)
            result = ProcessResult(decision)
            if decision.outcome is Outcome.CHARGE:
                balance = await current_balance(self.store, event.golfer_id)
                entry = await append_debit(self.store, event, decision.cost or 0, balance)
                result = ProcessResult(decision, entry=entry, balance_before=balance)
        except BillingException as exc:
            self._audit_failure(event, exc)
            raise

        self._audit(event, result)
        return result

    def _round_fields(self, event: RoundEvent) -> Dict[str, Any]:
        rnd = event.round
        if rnd is None:
            return {"task_type": event.task_type}
        return {
            "task_type": event.task_type,
            "round_id": rnd.id,
            "entity_id": rnd.entity_id,
            "transaction_id": rnd.transaction_id or None,
            "original_source": rnd.original_source,
            "hole_count": rnd.hole_count,
        }

    def _audit(self, event: RoundEvent, result: ProcessResult) -> None:
        decision = result.decision
        anomaly = decision.anomaly.value if decision.anomaly else None
        record_outcome(decision.outcome.value, anomaly)
        fields: Dict[str, Any] = {
            **self._round_fields(event),
            "outcome": decision.outcome.value,
            "reason": decision.reason,
            "anomaly": anomaly,
        }
        if decision.linked_entry is not None:
            fields["linked_entry_id"] = decision.linked_entry.id
            fields["linked_entry_kind"] = decision.linked_entry.kind.value
            fields["linked_entry_value"] = decision.linked_entry.transaction_value
        if result.entry is not None:
            fields.update(
                {
                    "cost": decision.cost,
                    "proposed_cost": event.token_cost,
                    "balance_before": result.balance_before,
                    "entry_id": result.entry.id,
                    "available_tokens": result.entry.available_tokens,
                }
            )
        audit_event(_AUDIT_EVENTS[decision.outcome], event.golfer_id, **fields)

    def _audit_failure(self, event: RoundEvent, exc: BillingException) -> None:
        record_outcome("failed")
        audit_event(
            "round_fee_failed",
            event.golfer_id,
            **self._round_fields(event),
            outcome="failed",
            error_code=exc.error_code,
            detail=exc.detail,
            context=exc.context,
        )
