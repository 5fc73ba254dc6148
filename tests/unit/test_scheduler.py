# tests/unit/test_scheduler.py
from unittest.mock import AsyncMock

import pytest

from syncbridge.core.enums import SyncRunStatus
from syncbridge.models.sync_log import SyncLog
from syncbridge.scheduler import create_scheduler, expire_restore_points_task, scheduled_sync_task

from tests.conftest import USER_ID


@pytest.fixture
def scheduled_context(engine_context):
    engine_context.settings = engine_context.settings.model_copy(update={
        "SYNC_SCHEDULE_ENABLED": True,
        "SYNC_SCHEDULE": "*/30 * * * *",
        "SYNC_SCHEDULE_DIRECTION": "shopify_to_netsuite",
        "SYNC_SCHEDULE_USER_IDS": [USER_ID, "user-2"],
    })
    return engine_context


def test_scheduler_without_sync_schedule(engine_context):
    scheduler = create_scheduler(engine_context)

    assert [job.id for job in scheduler.get_jobs()] == ["expire_restore_points"]


def test_scheduler_with_sync_schedule(scheduled_context):
    scheduler = create_scheduler(scheduled_context)

    assert sorted(job.id for job in scheduler.get_jobs()) == ["expire_restore_points", "scheduled_sync"]


@pytest.mark.asyncio
async def test_scheduled_sync_runs_each_user(scheduled_context, session_factory):
    async with session_factory() as session:
        session.add(SyncLog(user_id=USER_ID, direction="bidirectional", status=SyncRunStatus.RUNNING.value))
        await session.commit()

    outcomes = await scheduled_sync_task(scheduled_context)

    assert outcomes == {USER_ID: "skipped", "user-2": "completed"}


@pytest.mark.asyncio
async def test_scheduled_sync_keeps_going_after_a_crash(scheduled_context, mocker):
    run = mocker.patch.object(
        scheduled_context.runner, "run", AsyncMock(side_effect=[RuntimeError("boom"), mocker.Mock(
            status=SyncRunStatus.COMPLETED, items_succeeded=0, items_processed=0,
        )])
    )

    outcomes = await scheduled_sync_task(scheduled_context)

    assert outcomes == {USER_ID: "error", "user-2": "completed"}
    assert run.await_count == 2
    request = run.await_args_list[0].args[1]
    assert request.filters.changed_since_last_sync is True
    assert request.triggered_by == "scheduler"


@pytest.mark.asyncio
async def test_expire_restore_points_task(engine_context):
    await engine_context.restore_points.create_restore_point(USER_ID, "fresh")

    assert await expire_restore_points_task(engine_context) == 0
