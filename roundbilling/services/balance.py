from __future__ import annotations

from typing import Optional

from roundbilling.services.ledger_store import LedgerStore


async def current_balance(store: LedgerStore, golfer_id: str) -> Optional[int]:
    """
    Available tokens on the golfer's most recent ledger entry.

    None means the golfer has no ledger history, or the latest entry carries
    no balance; that is not the same as a zero balance. The golfer index is
    eventually consistent, so concurrent invocations for the same golfer may
    read a stale value.
    """
    entry = await store.latest_entry_for_golfer(golfer_id)
    if entry is None:
        return None
    return entry.available_tokens
