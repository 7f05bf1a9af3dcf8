"""Manual invocation, trigger submission and scheduler routes."""

from fastapi import APIRouter

from ruleflow.api.deps import IdempotencyStoreDep, ServiceDep, UserDep
from ruleflow.messaging.handler import TriggerHandler
from ruleflow.models.event import TriggerEvent
from ruleflow.models.execution import ManualInvocationResult
from ruleflow.schemas.common import APIResponse
from ruleflow.schemas.execution import (
    InvokeRequest,
    TickRequest,
    TickResponse,
    TriggerRequest,
    TriggerResponse,
    TriggerRun,
)

router = APIRouter(tags=["automations"])


@router.post("/automations/invoke", response_model=APIResponse[ManualInvocationResult])
async def invoke_rule(
    data: InvokeRequest,
    service: ServiceDep,
    user_id: UserDep,
) -> APIResponse[ManualInvocationResult]:
    """Run a rule on request with the given context."""
    result = await service.invoke_manual(
        user_id,
        data.rule_id,
        context=data.context,
        conversation_history=data.conversation_history,
    )
    return APIResponse(data=result)


@router.post("/triggers", response_model=APIResponse[TriggerResponse])
async def submit_trigger(
    data: TriggerRequest,
    service: ServiceDep,
    idempotency: IdempotencyStoreDep,
    user_id: UserDep,
) -> APIResponse[TriggerResponse]:
    """Dispatch a trigger event synchronously and return the runs it caused."""
    event = TriggerEvent(
        event_id=data.event_id,
        trigger_type=data.trigger_type,
        user_id=user_id,
        payload=data.payload,
    )

    if data.event_id and await idempotency.is_processed(data.event_id):
        return APIResponse(data=TriggerResponse(event_id=event.event_id, duplicate=True))

    outcomes = await TriggerHandler(service, idempotency).handle(event)
    runs = [
        TriggerRun(
            rule_id=o.rule.id,
            rule_name=o.log_entry.rule_name,
            log_id=o.log_entry.id,
            status=o.result.status.value,
            output=o.result.output_text,
            error=o.result.error_text,
        )
        for o in outcomes
    ]
    return APIResponse(data=TriggerResponse(event_id=event.event_id, runs=runs))


@router.post("/scheduler/tick", response_model=APIResponse[TickResponse])
async def run_scheduler_tick(
    service: ServiceDep,
    data: TickRequest | None = None,
) -> APIResponse[TickResponse]:
    """Run one scheduler tick, for deployments without the worker loop."""
    report = await service.tick(data.now if data else None)
    return APIResponse(
        data=TickResponse(
            due=report.due,
            claimed=report.claimed,
            skipped=report.skipped,
            failed=report.failed,
        )
    )
