"""Rule management API routes."""

from fastapi import APIRouter, HTTPException, Query

from ruleflow.api.deps import PaginationDep, RuleStoreDep, UserDep
from ruleflow.models.rule import ActivationMode
from ruleflow.schemas.common import APIResponse, PaginatedResponse
from ruleflow.schemas.rule import (
    ManualRuleSummary,
    RuleCreate,
    RuleResponse,
    RuleStatusUpdate,
    RuleUpdate,
)

router = APIRouter(prefix="/rules", tags=["rules"])


def _not_found(rule_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Rule {rule_id} not found")


@router.post("", response_model=APIResponse[RuleResponse])
async def create_rule(
    data: RuleCreate,
    store: RuleStoreDep,
    user_id: UserDep,
) -> APIResponse[RuleResponse]:
    """Create a new rule owned by the caller."""
    created = await store.create(data.to_rule(user_id))
    return APIResponse(data=RuleResponse.from_rule(created))


@router.get("", response_model=PaginatedResponse[RuleResponse])
async def list_rules(
    store: RuleStoreDep,
    user_id: UserDep,
    pagination: PaginationDep,
    trigger_type: str | None = Query(default=None, description="Filter by accepted trigger type"),
    is_active: bool | None = Query(default=None, description="Filter by active status"),
    activation_mode: ActivationMode | None = Query(default=None, description="Filter by activation mode"),
    name_contains: str | None = Query(default=None, description="Filter by name substring"),
) -> PaginatedResponse[RuleResponse]:
    """List the caller's rules with optional filtering."""
    rules = await store.list_by_user(user_id)

    if trigger_type:
        rules = [r for r in rules if r.accepts_trigger(trigger_type)]
    if is_active is not None:
        rules = [r for r in rules if r.is_active == is_active]
    if activation_mode is not None:
        rules = [r for r in rules if r.activation_mode == activation_mode]
    if name_contains:
        needle = name_contains.lower()
        rules = [r for r in rules if needle in r.name.lower()]

    return PaginatedResponse[RuleResponse].from_items(rules, pagination, RuleResponse.from_rule)


@router.get("/manual", response_model=APIResponse[list[ManualRuleSummary]])
async def list_manual_rules(
    store: RuleStoreDep,
    user_id: UserDep,
) -> APIResponse[list[ManualRuleSummary]]:
    """Active rules the caller can invoke manually."""
    rules = await store.list_manual(user_id)
    return APIResponse(
        data=[
            ManualRuleSummary(id=r.id, name=r.name, description=r.description, priority=r.priority)
            for r in rules
        ]
    )


@router.get("/{rule_id}", response_model=APIResponse[RuleResponse])
async def get_rule(
    rule_id: str,
    store: RuleStoreDep,
    user_id: UserDep,
) -> APIResponse[RuleResponse]:
    """Get a single rule by ID."""
    rule = await store.get_by_id_and_user(rule_id, user_id)
    if not rule:
        raise _not_found(rule_id)

    return APIResponse(data=RuleResponse.from_rule(rule))


@router.patch("/{rule_id}", response_model=APIResponse[RuleResponse])
async def update_rule(
    rule_id: str,
    data: RuleUpdate,
    store: RuleStoreDep,
    user_id: UserDep,
) -> APIResponse[RuleResponse]:
    """Partially update an existing rule."""
    existing = await store.get_by_id_and_user(rule_id, user_id)
    if not existing:
        raise _not_found(rule_id)

    result = await store.update(rule_id, data.changes())
    if not result:
        raise _not_found(rule_id)

    return APIResponse(data=RuleResponse.from_rule(result))


@router.delete("/{rule_id}", response_model=APIResponse)
async def delete_rule(
    rule_id: str,
    store: RuleStoreDep,
    user_id: UserDep,
) -> APIResponse:
    """Delete a rule; its execution history is kept."""
    existing = await store.get_by_id_and_user(rule_id, user_id)
    if not existing or not await store.delete(rule_id):
        raise _not_found(rule_id)

    return APIResponse(message=f"Rule {rule_id} deleted")


@router.patch("/{rule_id}/status", response_model=APIResponse[RuleResponse])
async def update_rule_status(
    rule_id: str,
    data: RuleStatusUpdate,
    store: RuleStoreDep,
    user_id: UserDep,
) -> APIResponse[RuleResponse]:
    """Activate or deactivate a rule."""
    existing = await store.get_by_id_and_user(rule_id, user_id)
    if not existing:
        raise _not_found(rule_id)

    updated = await store.set_active(rule_id, data.is_active)
    if not updated:
        raise _not_found(rule_id)

    return APIResponse(data=RuleResponse.from_rule(updated))
