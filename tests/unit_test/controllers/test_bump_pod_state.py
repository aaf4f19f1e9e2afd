"""Unit tests for the bump pod state controller."""

import asyncio

import pytest

from shodan.api.job import JobState
from shodan.config import ShodanConfig
from shodan.controllers.bump_pod import build_work_unit_spec
from shodan.controllers.bump_pod_state import (
    GENERIC_FAILURE_MESSAGE,
    UP_TO_DATE_MESSAGE,
    BumpPodStateController,
    failure_message,
)
from shodan.workunits import LocalWorkUnitExecutor, WorkUnitPhase, WorkUnitSpec
from tests.unit_test.fakes import load, make_job, store


async def launch(config, storage, job, phase=None, message=""):
    job = job.model_copy(update={"status": job.status.model_copy(update={"state": JobState.RUNNING})})
    store(storage, job)
    executor = LocalWorkUnitExecutor()
    unit_id = await executor.create_work_unit(build_work_unit_spec(config, job))
    if phase is not None:
        executor.complete(unit_id, phase, message)
    return executor, unit_id


class TestFailureMessage:
    def test_empty_message(self):
        assert failure_message("") == GENERIC_FAILURE_MESSAGE

    def test_nothing_to_commit(self):
        assert failure_message("On branch x\nnothing to commit, working tree clean") == UP_TO_DATE_MESSAGE

    def test_other_failures_are_quoted(self):
        message = failure_message("go: module not found")
        assert "go: module not found" in message
        assert message.startswith("Human, something terrible happened")


class TestBumpPodStateController:
    """Test suite for BumpPodStateController.sync."""

    @pytest.mark.asyncio
    async def test_succeeded_unit_finishes_job(self, config, storage, ctx):
        job = make_job(base_branch="master")
        executor, _ = await launch(config, storage, job, WorkUnitPhase.SUCCEEDED)

        await BumpPodStateController(config, storage, executor).sync(ctx)

        updated = load(storage, job.name)
        assert updated.status.state == JobState.FINISHED
        assert updated.status.message == (
            "Success! A bump pull request from me was opened inside openshift/origin repository, "
            "bumping openshift/api@master."
        )
        assert await executor.list_work_units({}) == []

    @pytest.mark.asyncio
    async def test_up_to_date_target(self, config, storage, ctx):
        job = make_job(base_branch="master")
        executor, _ = await launch(
            config, storage, job, WorkUnitPhase.FAILED, "nothing to commit, working tree clean"
        )

        await BumpPodStateController(config, storage, executor).sync(ctx)

        updated = load(storage, job.name)
        assert updated.status.state == JobState.FINISHED
        assert updated.status.message == UP_TO_DATE_MESSAGE

    @pytest.mark.asyncio
    async def test_failure_without_message(self, config, storage, ctx):
        job = make_job(base_branch="master")
        executor, _ = await launch(config, storage, job, WorkUnitPhase.FAILED, "")

        await BumpPodStateController(config, storage, executor).sync(ctx)

        assert load(storage, job.name).status.message == GENERIC_FAILURE_MESSAGE

    @pytest.mark.asyncio
    async def test_failure_message_is_reported(self, config, storage, ctx):
        job = make_job(base_branch="master")
        executor, _ = await launch(config, storage, job, WorkUnitPhase.FAILED, "fatal: unable to push")

        await BumpPodStateController(config, storage, executor).sync(ctx)

        updated = load(storage, job.name)
        assert updated.status.state == JobState.FINISHED
        assert "fatal: unable to push" in updated.status.message

    @pytest.mark.asyncio
    async def test_running_unit_is_left_alone(self, config, storage, ctx):
        job = make_job(base_branch="master")
        executor, unit_id = await launch(config, storage, job)
        storage.writes.clear()

        await BumpPodStateController(config, storage, executor).sync(ctx)

        assert storage.writes == []
        assert [unit.id for unit in await executor.list_work_units({})] == [unit_id]

    @pytest.mark.asyncio
    async def test_unit_without_job_is_skipped(self, config, storage, ctx):
        executor = LocalWorkUnitExecutor()
        unit_id = await executor.create_work_unit(
            WorkUnitSpec(name="job-openshift-api-1-2-1600000000", labels={"shodan.io/type": "bump"})
        )
        executor.complete(unit_id, WorkUnitPhase.SUCCEEDED)

        await BumpPodStateController(config, storage, executor).sync(ctx)

        assert storage.writes == []
        assert [unit.id for unit in await executor.list_work_units({})] == [unit_id]

    @pytest.mark.asyncio
    async def test_second_sync_is_idempotent(self, config, storage, ctx):
        job = make_job(base_branch="master")
        executor, _ = await launch(config, storage, job, WorkUnitPhase.SUCCEEDED)
        controller = BumpPodStateController(config, storage, executor)

        await controller.sync(ctx)
        writes = len(storage.writes)
        await controller.sync(ctx)

        assert len(storage.writes) == writes

    @pytest.mark.asyncio
    async def test_finished_job_with_leftover_unit(self, config, storage, ctx):
        """A unit whose job was already finished is only cleaned up."""
        job = make_job(base_branch="master")
        executor, _ = await launch(config, storage, job, WorkUnitPhase.FAILED, "boom")
        finished = load(storage, job.name).model_copy(deep=True)
        finished.status.state = JobState.FINISHED
        finished.status.message = "reported earlier"
        store(storage, finished)
        storage.writes.clear()

        await BumpPodStateController(config, storage, executor).sync(ctx)

        assert storage.writes == []
        assert load(storage, job.name).status.message == "reported earlier"
        assert await executor.list_work_units({}) == []

    @pytest.mark.asyncio
    async def test_deletion_failure_does_not_fail_sync(self, config, storage, ctx):
        job = make_job(base_branch="master")
        executor, _ = await launch(config, storage, job, WorkUnitPhase.SUCCEEDED)

        async def delete_work_unit(unit_id):
            raise RuntimeError("api server unavailable")

        executor.delete_work_unit = delete_work_unit

        await BumpPodStateController(config, storage, executor).sync(ctx)

        assert load(storage, job.name).status.state == JobState.FINISHED

    @pytest.mark.asyncio
    async def test_list_deadline(self, storage, ctx):
        executor = LocalWorkUnitExecutor()

        async def list_work_units(label_selector):
            await asyncio.sleep(10)

        executor.list_work_units = list_work_units

        with pytest.raises(asyncio.TimeoutError):
            await BumpPodStateController(ShodanConfig(executor_timeout=0.01), storage, executor).sync(ctx)

    @pytest.mark.asyncio
    async def test_delete_deadline_does_not_fail_sync(self, storage, ctx):
        config = ShodanConfig(executor_timeout=0.05)
        job = make_job(base_branch="master")
        executor, _ = await launch(config, storage, job, WorkUnitPhase.SUCCEEDED)

        async def delete_work_unit(unit_id):
            await asyncio.sleep(10)

        executor.delete_work_unit = delete_work_unit

        await BumpPodStateController(config, storage, executor).sync(ctx)

        assert load(storage, job.name).status.state == JobState.FINISHED
