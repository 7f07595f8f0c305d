"""
SQS consumer for round fee events.

Usage:
    roundbilling-worker
    python -m roundbilling.worker

A message is deleted only after its event was processed. Anything that
fails stays on the queue and comes back after the visibility timeout, so the
queue's redrive policy decides when to dead-letter it.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any, Dict, List, Optional

import anyio
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from roundbilling.core.settings import S, Settings
from roundbilling.errors import BillingException, MalformedPayloadError
from roundbilling.models import RoundEvent
from roundbilling.services.audit import audit_event
from roundbilling.services.charging import RoundFeeProcessor


def parse_round_event(body: str, message_id: Optional[str] = None) -> RoundEvent:
    try:
        return RoundEvent.model_validate_json(body)
    except ValidationError as exc:
        raise MalformedPayloadError(message_id, str(exc)) from exc


class RoundEventWorker:
    def __init__(self, processor: RoundFeeProcessor, sqs: Any, queue_url: str, settings: Settings = S):
        if not queue_url:
            raise ValueError("ROUND_EVENTS_QUEUE_URL is not configured")
        self.processor = processor
        self.sqs = sqs
        self.queue_url = queue_url
        self.settings = settings

    async def _receive(self) -> List[Dict[str, Any]]:
        def _recv() -> Dict[str, Any]:
            return self.sqs.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=self.settings.worker_batch_size,
                WaitTimeSeconds=self.settings.worker_wait_seconds,
                VisibilityTimeout=self.settings.worker_visibility_timeout,
            )

        resp = await anyio.to_thread.run_sync(_recv)
        return resp.get("Messages", [])

    async def _delete(self, message: Dict[str, Any]) -> None:
        await anyio.to_thread.run_sync(
            lambda: self.sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=message["ReceiptHandle"])
        )

    async def handle_message(self, message: Dict[str, Any]) -> bool:
        """Process one message. Returns True when it was acknowledged."""
        message_id = message.get("MessageId")
        try:
            event = parse_round_event(message.get("Body", ""), message_id)
        except MalformedPayloadError as exc:
            audit_event("round_event_malformed", "", message_id=message_id, error_code=exc.error_code, context=exc.context)
            return False

        try:
            await self.processor.process(event)
        except BillingException:
            # audited by the processor; leave for redelivery
            return False

        await self._delete(message)
        return True

    async def poll_once(self) -> int:
        messages = await self._receive()
        if not messages:
            return 0
        results = await asyncio.gather(*(self.handle_message(m) for m in messages), return_exceptions=True)
        acked = 0
        for message, res in zip(messages, results):
            if isinstance(res, BaseException):
                audit_event("round_event_crashed", "", message_id=message.get("MessageId"), error=repr(res))
            elif res:
                acked += 1
        return acked

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.poll_once()
            except (ClientError, BotoCoreError) as exc:
                # throttling or an endpoint blip; the messages stay on the queue
                audit_event("round_event_poll_failed", "", queue_url=self.queue_url, error=repr(exc))
                await asyncio.sleep(self.settings.worker_retry_seconds)


async def _serve(settings: Settings = S) -> None:
    from roundbilling.core.aws import sqs_client
    from roundbilling.services.ledger_store import default_store

    worker = RoundEventWorker(RoundFeeProcessor(default_store(), settings), sqs_client(), settings.round_events_queue_url, settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await worker.run(stop)


def main() -> None:
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
