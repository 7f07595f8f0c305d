from __future__ import annotations

from typing import Optional

from roundbilling.models import LedgerEntry
from roundbilling.services.ledger_store import LedgerStore


async def find_by_round_transaction_id(store: LedgerStore, transaction_id: str) -> Optional[LedgerEntry]:
    """
    Return the ledger entry a round's transaction id points at, or None.

    Entry ids are globally unique, so this is a point lookup. Read errors
    propagate as StoreReadFailedError; retries belong to the transport.
    """
    if not transaction_id:
        return None
    return await store.get_entry(transaction_id.strip())
