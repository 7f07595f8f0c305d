from __future__ import annotations

import json
from typing import Any, Dict

from roundbilling.core.settings import S
from roundbilling.core.time import now_ts


def audit_event(event: str, golfer_id: str, **fields: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"event": event, "golfer_id": golfer_id, "ts": now_ts(), **fields}
    payload = {k: v for k, v in payload.items() if v is not None}

    # stdout audit log
    if S.audit_log_enabled:
        print(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str), flush=True)
    return payload
