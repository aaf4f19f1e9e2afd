"""Unit tests for the bump pod controller."""

import asyncio

import pytest

from shodan.api.job import JobState
from shodan.config import ShodanConfig
from shodan.controllers.bump_pod import (
    BumpPodController,
    build_work_unit_spec,
    job_name_from_work_unit,
    work_unit_name,
)
from shodan.errors import AggregateError
from shodan.workunits import JOB_TYPE_LABEL, LocalWorkUnitExecutor, WorkUnitPhase
from tests.unit_test.fakes import load, make_job, store


class TestWorkUnitSpec:
    """Test suite for the work unit built for a bump job."""

    def test_spec_arguments(self, config):
        job = make_job(params=["github.com/openshift/origin"], base_branch="release-4.6")

        spec = build_work_unit_spec(config, job)

        assert spec.name == f"job-{job.name}"
        assert spec.labels == {JOB_TYPE_LABEL: "bump"}
        assert spec.image == config.work_unit_image
        assert spec.namespace == config.work_unit_namespace
        assert spec.command == ["/usr/bin/bump-repo.sh"]
        assert spec.args == [
            config.fork_name,
            "openshift",
            "origin",
            "release-4.6",
            "github.com/openshift/api",
            "release-4.6",
            job.name,
        ]

    def test_work_unit_name_round_trip(self):
        job = make_job()
        assert job_name_from_work_unit(work_unit_name(job)) == job.name


class TestBumpPodController:
    """Test suite for BumpPodController.sync."""

    @pytest.mark.asyncio
    async def test_launches_unit_and_marks_job_running(self, config, storage, ctx):
        job = make_job(base_branch="master")
        store(storage, job)
        executor = LocalWorkUnitExecutor()

        await BumpPodController(config, storage, executor).sync(ctx)

        units = await executor.list_work_units({JOB_TYPE_LABEL: "bump"})
        assert [unit.id for unit in units] == [f"job-{job.name}"]
        assert units[0].phase == WorkUnitPhase.RUNNING
        assert load(storage, job.name).status.state == JobState.RUNNING

    @pytest.mark.asyncio
    async def test_jobs_without_base_branch_wait(self, config, storage, ctx):
        job = make_job()
        store(storage, job)
        executor = LocalWorkUnitExecutor()

        await BumpPodController(config, storage, executor).sync(ctx)

        assert await executor.list_work_units({}) == []
        assert load(storage, job.name).status.state == JobState.PENDING

    @pytest.mark.asyncio
    async def test_second_sync_is_idempotent(self, config, storage, ctx):
        store(storage, make_job(base_branch="master"))
        executor = LocalWorkUnitExecutor()
        controller = BumpPodController(config, storage, executor)

        await controller.sync(ctx)
        writes = len(storage.writes)
        await controller.sync(ctx)

        assert len(storage.writes) == writes
        assert len(await executor.list_work_units({})) == 1

    @pytest.mark.asyncio
    async def test_existing_unit_counts_as_launched(self, config, storage, ctx):
        """A crash between launching the unit and updating the job must not wedge the job."""
        job = make_job(base_branch="master")
        store(storage, job)
        executor = LocalWorkUnitExecutor()
        await executor.create_work_unit(build_work_unit_spec(config, job))

        await BumpPodController(config, storage, executor).sync(ctx)

        assert load(storage, job.name).status.state == JobState.RUNNING
        assert len(await executor.list_work_units({})) == 1

    @pytest.mark.asyncio
    async def test_launch_failure_is_reported(self, config, storage, ctx):
        failing = make_job(comment_id="1", base_branch="master")
        ok = make_job(comment_id="2", base_branch="master")
        store(storage, failing, ok)

        class FlakyExecutor(LocalWorkUnitExecutor):
            async def create_work_unit(self, spec):
                if spec.name == work_unit_name(failing):
                    raise RuntimeError("quota exceeded")
                return await super().create_work_unit(spec)

        with pytest.raises(AggregateError) as exc_info:
            await BumpPodController(config, storage, FlakyExecutor()).sync(ctx)

        assert "quota exceeded" in str(exc_info.value)
        assert load(storage, failing.name).status.state == JobState.PENDING
        assert load(storage, ok.name).status.state == JobState.RUNNING

    @pytest.mark.asyncio
    async def test_invalid_parameters_finish_the_job(self, config, storage, ctx):
        job = make_job(params=["origin"], base_branch="master")
        store(storage, job)
        executor = LocalWorkUnitExecutor()

        await BumpPodController(config, storage, executor).sync(ctx)

        updated = load(storage, job.name)
        assert updated.status.state == JobState.FINISHED
        assert "expected owner/repository" in updated.status.message
        assert await executor.list_work_units({}) == []

    @pytest.mark.asyncio
    async def test_launch_deadline(self, storage, ctx):
        job = make_job(base_branch="master")
        store(storage, job)

        class HangingExecutor(LocalWorkUnitExecutor):
            async def create_work_unit(self, spec):
                await asyncio.sleep(10)

        with pytest.raises(AggregateError):
            await BumpPodController(ShodanConfig(executor_timeout=0.01), storage, HangingExecutor()).sync(ctx)

        assert load(storage, job.name).status.state == JobState.PENDING
