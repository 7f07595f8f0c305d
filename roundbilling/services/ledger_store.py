"""
DynamoDB adapter for the ledger table.

Ledger entries (type = "transaction") and fee records (type = "fee") share
one table keyed by ``id``. Balance reads go through a golfer index ordered by
``created_at``; fee loads go through a type index. Index reads are eventually
consistent, so a just-written entry may not be visible to another process yet.

boto3 is blocking, so every round trip runs in a worker thread and the
public surface is async.
"""

from __future__ import annotations

import time
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Dict, Optional

import anyio
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from roundbilling.core.settings import S, Settings
from roundbilling.errors import StoreReadFailedError, StoreWriteFailedError
from roundbilling.metrics import STORE_LATENCY
from roundbilling.models import ENTRY_DOC_TYPE, FEE_DOC_TYPE, FeeRecord, LedgerEntry
from roundbilling.services.audit import audit_event


def _store_error_message(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        err = exc.response.get("Error", {})
        return f"{err.get('Code', '')}: {err.get('Message', '')}".strip(": ")
    return str(exc)


class LedgerStore:
    def __init__(self, table: Any, settings: Settings = S) -> None:
        self.table = table
        self.settings = settings

    async def _call(self, op: str, fn: Callable[..., Any], *args: Any, write: bool = False) -> Any:
        start = time.perf_counter()
        try:
            return await anyio.to_thread.run_sync(fn, *args)
        except (ClientError, BotoCoreError) as exc:
            if write:
                raise StoreWriteFailedError(op, _store_error_message(exc)) from exc
            raise StoreReadFailedError(op, _store_error_message(exc)) from exc
        finally:
            STORE_LATENCY.labels(op=op).observe(time.perf_counter() - start)

    # -----------------------------
    # Reads
    # -----------------------------
    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        def _get() -> Optional[Dict[str, Any]]:
            resp = self.table.get_item(
                Key={"id": item_id},
                ConsistentRead=self.settings.ledger_consistent_reads,
            )
            return resp.get("Item")

        return await self._call("get_item", _get)

    async def query(self, op: str = "query", **kwargs: Any) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield every item matching a query, fetching pages lazily."""
        start_key: Optional[Dict[str, Any]] = None
        while True:
            params = dict(kwargs)
            if start_key:
                params["ExclusiveStartKey"] = start_key
            page = await self._call(op, lambda: self.table.query(**params))
            for item in page.get("Items", []):
                yield item
            start_key = page.get("LastEvaluatedKey")
            if not start_key:
                return

    async def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        item = await self.get_item(entry_id)
        if not item or item.get("type") != ENTRY_DOC_TYPE:
            return None
        return LedgerEntry.from_item(item)

    async def latest_entry_for_golfer(self, golfer_id: str) -> Optional[LedgerEntry]:
        items = self.query(
            "latest_entry",
            IndexName=self.settings.ledger_golfer_index,
            KeyConditionExpression=Key("golfer_id").eq(golfer_id),
            ScanIndexForward=False,
            Limit=1,
        )
        try:
            async for item in items:
                return LedgerEntry.from_item(item)
        finally:
            await items.aclose()
        return None

    async def iter_fee_records(self) -> AsyncIterator[FeeRecord]:
        items = self.query(
            "fee_records",
            IndexName=self.settings.ledger_type_index,
            KeyConditionExpression=Key("type").eq(FEE_DOC_TYPE),
        )
        async for item in items:
            try:
                record = FeeRecord.from_item(item)
            except ValidationError as exc:
                # left out of the schedule so its tier fails as not found
                audit_event("fee_record_invalid", "", fee_id=item.get("id"), entity_id=item.get("entity_id"), error=str(exc))
                continue
            yield record

    # -----------------------------
    # Writes
    # -----------------------------
    async def put_entry(self, entry: LedgerEntry) -> None:
        def _put() -> None:
            self.table.put_item(
                Item=entry.to_item(),
                ConditionExpression="attribute_not_exists(id)",
            )

        await self._call("put_entry", _put, write=True)


def default_store() -> LedgerStore:
    from roundbilling.core.tables import T

    return LedgerStore(T.ledger)
