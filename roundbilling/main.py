from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from roundbilling.metrics import METRICS_ENABLED, metrics_endpoint, metrics_middleware, set_app_info
from roundbilling.routers.round_events import router as round_events_router
from roundbilling.services.charging import RoundFeeProcessor
from roundbilling.services.ledger_store import default_store


def create_app(processor: Optional[RoundFeeProcessor] = None) -> FastAPI:
    app = FastAPI(title="Round Fee Billing", version="0.1.0")
    app.state.processor = processor or RoundFeeProcessor(default_store())

    if METRICS_ENABLED:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.include_router(round_events_router)

    return app


# uvicorn roundbilling.main:app
app = create_app()
