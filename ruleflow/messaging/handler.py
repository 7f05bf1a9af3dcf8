"""Trigger event processing handler."""

import time

from ruleflow.core.errors import StorageError
from ruleflow.core.logging import get_logger
from ruleflow.engine.dispatcher import DispatchOutcome
from ruleflow.engine.service import AutomationService
from ruleflow.models.event import TriggerEvent
from ruleflow.observability.metrics import TRIGGERS_PROCESSED, TRIGGERS_RECEIVED
from ruleflow.observability.tracing import TraceContext
from ruleflow.storage.auxiliary import IdempotencyStore

logger = get_logger(__name__)


class TriggerHandler:
    """Runs each trigger event through the automation service once."""

    def __init__(self, service: AutomationService, idempotency: IdempotencyStore):
        self._service = service
        self._idempotency = idempotency

    async def handle(self, event: TriggerEvent) -> list[DispatchOutcome]:
        """Process an incoming trigger event.

        Pipeline steps:
        1. Idempotency check on ``event_id``
        2. Dispatch and run the selected rules

        A storage failure releases the idempotency mark so a redelivery can
        retry the event.

        Raises:
            StorageError: If rules could not be loaded or a run not recorded
        """
        TRIGGERS_RECEIVED.labels(trigger_type=event.trigger_type).inc()

        with TraceContext(event.event_id, trigger_type=event.trigger_type, user_id=event.user_id):
            start_time = time.time()

            if not await self._idempotency.mark_processed(event.event_id):
                logger.debug("Trigger already processed", event_id=event.event_id)
                TRIGGERS_PROCESSED.labels(trigger_type=event.trigger_type, status="duplicate").inc()
                return []

            try:
                outcomes = await self._service.handle_trigger(event)
            except StorageError:
                await self._idempotency.unmark(event.event_id)
                TRIGGERS_PROCESSED.labels(trigger_type=event.trigger_type, status="error").inc()
                raise

            status = "matched" if outcomes else "unmatched"
            TRIGGERS_PROCESSED.labels(trigger_type=event.trigger_type, status=status).inc()
            logger.info(
                "Trigger processing complete",
                event_id=event.event_id,
                runs=len(outcomes),
                elapsed_ms=int((time.time() - start_time) * 1000),
            )
            return outcomes

    async def __call__(self, event: TriggerEvent) -> None:
        await self.handle(event)
