"""Tests for notification emitting, storage and delivery."""

import pytest

from ruleflow.core.config import Settings
from ruleflow.models.notification import NotificationKind, NotificationTask
from ruleflow.models.rule import OutputConfig, OutputPlatform
from ruleflow.notification.channels.base import NotificationChannel
from ruleflow.notification.emitter import MAX_BODY_LENGTH, QueueNotificationEmitter
from ruleflow.notification.worker import NotificationWorker
from ruleflow.storage.auxiliary import NotificationQueue
from ruleflow.storage.notification_store import NotificationStore
from ruleflow.storage.redis_client import RedisKeys


class FakeChannel(NotificationChannel):
    def __init__(self, delivered: bool = True):
        self._delivered = delivered
        self.sent: list[NotificationTask] = []

    @property
    def channel_type(self) -> str:
        return "webhook"

    async def send(self, task: NotificationTask) -> bool:
        self.sent.append(task)
        return self._delivered


def _payload(**overrides) -> dict:
    payload = {
        "user_id": "user_1",
        "rule_id": "rule_a",
        "rule_name": "Morning brief",
        "log_id": "log_1",
        "trigger_slug": "scheduled",
        "status": "success",
        "output_text": "All quiet",
        "error_text": None,
        "output_config": {"platform": "webhook", "webhook_url": "https://hooks.example.com/x"},
    }
    payload.update(overrides)
    return payload


def _task(platform: OutputPlatform = OutputPlatform.WEBHOOK, retry_count: int = 0) -> NotificationTask:
    return NotificationTask(
        task_id="notify_1",
        kind=NotificationKind.EXECUTION_SUCCESS,
        user_id="user_1",
        rule_id="rule_a",
        rule_name="Morning brief",
        log_id="log_1",
        title="Rule 'Morning brief' completed",
        body="All quiet",
        output_config=OutputConfig(platform=platform, webhook_url="https://hooks.example.com/x"),
        retry_count=retry_count,
    )


def test_build_task_titles_and_body() -> None:
    success = QueueNotificationEmitter.build_task(NotificationKind.EXECUTION_SUCCESS, _payload())
    failure = QueueNotificationEmitter.build_task(
        NotificationKind.EXECUTION_FAILURE,
        _payload(output_text=None, error_text="Step 0 failed: boom"),
    )

    assert success.title == "Rule 'Morning brief' completed"
    assert success.body == "All quiet"
    assert success.output_config.platform == OutputPlatform.WEBHOOK
    assert success.metadata == {"trigger_slug": "scheduled", "status": "success", "trace_id": None}
    assert failure.title == "Rule 'Morning brief' failed"
    assert failure.body == "Step 0 failed: boom"


def test_build_task_truncates_long_body() -> None:
    task = QueueNotificationEmitter.build_task(
        NotificationKind.EXECUTION_PARTIAL,
        _payload(output_text="x" * (MAX_BODY_LENGTH + 50)),
    )

    assert len(task.body) == MAX_BODY_LENGTH
    assert task.body.endswith("...")
    assert task.title == "Rule 'Morning brief' partially completed"


@pytest.mark.asyncio
async def test_emit_enqueues_task(redis) -> None:
    queue = NotificationQueue(redis)
    emitter = QueueNotificationEmitter(queue)

    await emitter.emit(NotificationKind.EXECUTION_SUCCESS, _payload())

    assert await queue.queue_length() == 1
    task = await queue.dequeue(timeout=1)
    assert task.rule_id == "rule_a"
    assert task.log_id == "log_1"


def test_render_joins_title_and_body() -> None:
    assert NotificationChannel.render(_task()) == "Rule 'Morning brief' completed\n\nAll quiet"


@pytest.mark.asyncio
async def test_process_task_without_platform_only_stores_in_app(redis) -> None:
    store = NotificationStore(redis)
    channel = FakeChannel()
    worker = NotificationWorker(
        NotificationQueue(redis),
        store,
        channels={"webhook": channel},
        settings=Settings(),
    )

    done = await worker.process_task(_task(platform=OutputPlatform.NONE))

    assert done is True
    assert channel.sent == []
    items, total, unread = await store.list_by_user("user_1")
    assert total == 1
    assert unread == 1
    assert items[0].title == "Rule 'Morning brief' completed"


@pytest.mark.asyncio
async def test_process_task_delivers_to_channel(redis) -> None:
    channel = FakeChannel()
    worker = NotificationWorker(
        NotificationQueue(redis),
        NotificationStore(redis),
        channels={"webhook": channel},
        settings=Settings(),
    )

    done = await worker.process_task(_task())

    assert done is True
    assert [t.task_id for t in channel.sent] == ["notify_1"]


@pytest.mark.asyncio
async def test_failed_delivery_is_requeued(redis) -> None:
    queue = NotificationQueue(redis)
    worker = NotificationWorker(
        queue,
        NotificationStore(redis),
        channels={"webhook": FakeChannel(delivered=False)},
        settings=Settings(notification_max_retry=3),
        retry_base_delay=0,
    )

    done = await worker.process_task(_task())

    assert done is False
    requeued = await queue.dequeue(timeout=1)
    assert requeued.retry_count == 1


@pytest.mark.asyncio
async def test_exhausted_retries_go_to_dead_letter_without_duplicate_in_app(redis) -> None:
    queue = NotificationQueue(redis)
    store = NotificationStore(redis)
    worker = NotificationWorker(
        queue,
        store,
        channels={"webhook": FakeChannel(delivered=False)},
        settings=Settings(notification_max_retry=1),
    )

    done = await worker.process_task(_task(retry_count=1))

    assert done is False
    assert await queue.queue_length() == 0
    assert await redis.llen(RedisKeys.NOTIFY_DEAD_LETTER) == 1
    _, total, _ = await store.list_by_user("user_1")
    assert total == 0


@pytest.mark.asyncio
async def test_notification_store_read_flags(redis) -> None:
    store = NotificationStore(redis)
    first = await store.create_from_task(_task())
    await store.create_from_task(_task())

    assert await store.mark_read(first.id, "user_1") is True
    assert await store.mark_read(first.id, "user_2") is False
    unread_items, total, unread = await store.list_by_user("user_1", unread_only=True)
    assert total == 1
    assert unread == 1
    assert unread_items[0].id != first.id

    assert await store.mark_all_read("user_1") == 1
    assert await store.delete(first.id, "user_1") is True
    _, total, unread = await store.list_by_user("user_1")
    assert total == 1
    assert unread == 0
