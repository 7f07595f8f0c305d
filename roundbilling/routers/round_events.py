from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from roundbilling.core.time import now_ts
from roundbilling.errors import BillingException
from roundbilling.models import RoundEvent, RoundEventResp
from roundbilling.services.charging import RoundFeeProcessor

router = APIRouter(tags=["round-events"])


def get_processor(request: Request) -> RoundFeeProcessor:
    return request.app.state.processor


@router.post("/v1/round-events", response_model=RoundEventResp)
async def process_round_event(body: RoundEvent, processor: RoundFeeProcessor = Depends(get_processor)):
    # 5xx tells the push transport to redeliver
    try:
        result = await processor.process(body)
    except BillingException as exc:
        raise HTTPException(exc.status_code, exc.to_dict()) from exc
    return result.to_dict()


@router.get("/healthz")
def healthz():
    return {"ok": True, "ts": now_ts()}
