"""API dependency injection."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query

from ruleflow.engine.service import AutomationService, build_service
from ruleflow.schemas.common import PaginationParams
from ruleflow.storage.auxiliary import IdempotencyStore
from ruleflow.storage.log_store import LogStore
from ruleflow.storage.notification_store import NotificationStore
from ruleflow.storage.redis_client import get_redis
from ruleflow.storage.rule_store import RuleStore

# Process-wide service, built on first use once the Redis pool exists
_service: AutomationService | None = None


def get_rule_store() -> RuleStore:
    """Get rule store instance."""
    return RuleStore(get_redis())


def get_log_store() -> LogStore:
    """Get log store instance."""
    return LogStore(get_redis())


def get_notification_store() -> NotificationStore:
    return NotificationStore(get_redis())


def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore(get_redis())


def get_automation_service() -> AutomationService:
    """Get or create the automation service singleton."""
    global _service
    if _service is None:
        _service = build_service(get_redis())
    return _service


async def close_automation_service() -> None:
    global _service
    if _service is not None:
        await _service.close()
        _service = None


def get_current_user(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    """Caller identity, supplied by the gateway in front of the API."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


# Type aliases for dependency injection
RuleStoreDep = Annotated[RuleStore, Depends(get_rule_store)]
LogStoreDep = Annotated[LogStore, Depends(get_log_store)]
NotificationStoreDep = Annotated[NotificationStore, Depends(get_notification_store)]
IdempotencyStoreDep = Annotated[IdempotencyStore, Depends(get_idempotency_store)]
ServiceDep = Annotated[AutomationService, Depends(get_automation_service)]
UserDep = Annotated[str, Depends(get_current_user)]


def get_pagination(
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
) -> PaginationParams:
    """Get pagination parameters from query."""
    return PaginationParams(page=page, page_size=page_size)


PaginationDep = Annotated[PaginationParams, Depends(get_pagination)]
