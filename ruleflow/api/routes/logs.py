"""Execution history API routes."""

from fastapi import APIRouter, HTTPException

from ruleflow.api.deps import LogStoreDep, PaginationDep, RuleStoreDep, UserDep
from ruleflow.models.execution import ExecutionStats
from ruleflow.schemas.common import APIResponse
from ruleflow.schemas.execution import LogPage

router = APIRouter(tags=["logs"])


@router.get("/rules/{rule_id}/logs", response_model=APIResponse[LogPage])
async def get_rule_logs(
    rule_id: str,
    rule_store: RuleStoreDep,
    log_store: LogStoreDep,
    user_id: UserDep,
    pagination: PaginationDep,
) -> APIResponse[LogPage]:
    """Execution history of one rule, newest first, with stats over all of it."""
    rule = await rule_store.get_by_id_and_user(rule_id, user_id)
    if not rule:
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found")

    entries, total = await log_store.list_by_rule(
        rule_id,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    stats = await log_store.stats_for(rule_id=rule_id)

    return APIResponse(
        data=LogPage(
            items=entries,
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            stats=stats,
        )
    )


@router.get("/logs", response_model=APIResponse[LogPage])
async def get_user_logs(
    log_store: LogStoreDep,
    user_id: UserDep,
    pagination: PaginationDep,
) -> APIResponse[LogPage]:
    """Execution history across all of the caller's rules."""
    entries, total = await log_store.list_by_user(
        user_id,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    stats = await log_store.stats_for(user_id=user_id)

    return APIResponse(
        data=LogPage(
            items=entries,
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            stats=stats,
        )
    )


@router.get("/logs/stats", response_model=APIResponse[ExecutionStats])
async def get_user_stats(
    log_store: LogStoreDep,
    user_id: UserDep,
) -> APIResponse[ExecutionStats]:
    """Aggregate statistics over the caller's execution history."""
    return APIResponse(data=await log_store.stats_for(user_id=user_id))
