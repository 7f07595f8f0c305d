from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet

MSL_ENTITY_ID = "adceb3ea-52b8-4fa9-8279-633beca45417"


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) not in ("0", "false", "False")


def _csv_set(raw: str) -> FrozenSet[str]:
    return frozenset(p.strip() for p in (raw or "").split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")
    ddb_endpoint_url: str = os.environ.get("DDB_ENDPOINT_URL", "")

    # Ledger table (entries and fee records share it)
    ledger_table_name: str = os.environ.get("LEDGER_TABLE_NAME", "ledger")
    ledger_golfer_index: str = os.environ.get("LEDGER_GOLFER_INDEX", "golfer_id-created_at-index")
    ledger_type_index: str = os.environ.get("LEDGER_TYPE_INDEX", "type-index")
    ledger_consistent_reads: bool = _flag("LEDGER_CONSISTENT_READS", "1")

    # Charging scope
    billable_entity_ids: FrozenSet[str] = field(
        default_factory=lambda: _csv_set(os.environ.get("BILLABLE_ENTITY_IDS", MSL_ENTITY_ID))
    )
    # nine_hole: anything but 18 holes bills at the 9-hole tier
    # reject:    only 9 or 18 holes have a tier
    non_18_hole_policy: str = os.environ.get("NON_18_HOLE_POLICY", "nine_hole").lower()

    # Observability
    audit_log_enabled: bool = _flag("AUDIT_LOG_ENABLED", "1")
    metrics_enabled: bool = _flag("METRICS_ENABLED", "1")

    # SQS worker
    round_events_queue_url: str = os.environ.get("ROUND_EVENTS_QUEUE_URL", "")
    worker_wait_seconds: int = int(os.environ.get("WORKER_WAIT_SECONDS", "20"))
    worker_batch_size: int = int(os.environ.get("WORKER_BATCH_SIZE", "10"))
    worker_visibility_timeout: int = int(os.environ.get("WORKER_VISIBILITY_TIMEOUT", "60"))
    # pause after a failed receive before polling again
    worker_retry_seconds: float = float(os.environ.get("WORKER_RETRY_SECONDS", "5"))


S = Settings()
