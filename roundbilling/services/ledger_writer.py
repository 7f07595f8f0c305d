from __future__ import annotations

from typing import Optional
from uuid import uuid4

from roundbilling.core.time import now_ms
from roundbilling.errors import BalanceUnavailableError, StoreWriteFailedError
from roundbilling.metrics import record_ledger_write
from roundbilling.models import EntryKind, LedgerEntry, RoundEvent
from roundbilling.services.ledger_store import LedgerStore

# available_tokens is stored as a signed 32-bit value
MIN_TOKENS = -(2**31)
MAX_TOKENS = 2**31 - 1


def clamp_tokens(value: int) -> int:
    return max(MIN_TOKENS, min(MAX_TOKENS, int(value)))


def build_debit_entry(
    event: RoundEvent,
    cost: int,
    balance_before: int,
    *,
    entry_id: Optional[str] = None,
    created_at: Optional[int] = None,
) -> LedgerEntry:
    rnd = event.round
    return LedgerEntry(
        id=entry_id or str(uuid4()),
        golfer_id=event.golfer_id,
        entity_id=event.entity_id or (rnd.entity_id if rnd else ""),
        available_tokens=clamp_tokens(balance_before - cost),
        transaction_value=int(cost),
        kind=EntryKind.DEBIT,
        created_at=created_at if created_at is not None else now_ms(),
        third_party_round_id=rnd.third_party_round_id if rnd else None,
        round_id=(rnd.id or None) if rnd else None,
        original_source=rnd.original_source if rnd else "",
        golfer_email=event.golfer_email,
        golfer_first_name=event.golfer_first_name,
        golfer_last_name=event.golfer_last_name,
        transaction_name="round_fee",
        short_description="Tokens Debit (new round)",
        notes="new round",
    )


async def append_debit(
    store: LedgerStore,
    event: RoundEvent,
    cost: int,
    balance_before: Optional[int],
) -> LedgerEntry:
    """
    Append one debit entry for a round.

    Raises:
        BalanceUnavailableError: balance_before is None; nothing is written
        StoreWriteFailedError: the put failed; the original error is chained
    """
    if balance_before is None:
        raise BalanceUnavailableError(event.golfer_id)

    entry = build_debit_entry(event, cost, balance_before)
    try:
        await store.put_entry(entry)
    except StoreWriteFailedError:
        record_ledger_write(False)
        raise
    record_ledger_write(True, cost)
    return entry
