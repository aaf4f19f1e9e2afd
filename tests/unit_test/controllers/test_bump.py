"""Unit tests for the bump controller."""

import asyncio

import pytest

from shodan.api.job import JobState
from shodan.config import ShodanConfig
from shodan.controllers.bump import BumpController, parse_bump_target, set_job_base_branch
from shodan.errors import AggregateError
from shodan.github.client import GitHubError, PullRequest
from tests.unit_test.fakes import load, make_job, store


class TestParseBumpTarget:
    """Test suite for bump parameter validation."""

    def test_owner_and_repository(self):
        assert parse_bump_target(["openshift/origin"]) == ("openshift", "origin")

    def test_go_module_path(self):
        assert parse_bump_target(["github.com/openshift/origin"]) == ("openshift", "origin")

    @pytest.mark.parametrize(
        "params",
        [[], ["origin"], ["openshift/origin", "extra"], ["a/b/c"], ["/origin"], ["openshift/"]],
    )
    def test_invalid_parameters(self, params):
        with pytest.raises(ValueError):
            parse_bump_target(params)


class TestSetJobBaseBranch:
    def test_reports_change(self):
        job = make_job()
        changed, updated = set_job_base_branch(job, "master")
        assert changed
        assert updated.status.base_branch == "master"
        assert job.status.base_branch == ""

    def test_same_branch_is_not_a_change(self):
        job = make_job(base_branch="master")
        changed, updated = set_job_base_branch(job, "master")
        assert not changed
        assert updated is job


class TestBumpController:
    """Test suite for BumpController.sync."""

    @pytest.mark.asyncio
    async def test_merged_pull_request_sets_base_branch(self, config, storage, github, ctx):
        job = make_job()
        store(storage, job)
        github.pulls[("openshift", "api", 12)] = PullRequest(merged=True, base_branch="master")

        await BumpController(config, storage, github).sync(ctx)

        updated = load(storage, job.name)
        assert updated.status.base_branch == "master"
        assert updated.status.state == JobState.PENDING

    @pytest.mark.asyncio
    async def test_unmerged_pull_request_leaves_job_alone(self, config, storage, github, ctx):
        job = make_job()
        store(storage, job)
        storage.writes.clear()
        github.pulls[("openshift", "api", 12)] = PullRequest(merged=False, base_branch="master")

        await BumpController(config, storage, github).sync(ctx)

        assert storage.writes == []
        assert load(storage, job.name).status.base_branch == ""

    @pytest.mark.asyncio
    async def test_second_sync_is_idempotent(self, config, storage, github, ctx):
        store(storage, make_job())
        github.pulls[("openshift", "api", 12)] = PullRequest(merged=True, base_branch="master")
        controller = BumpController(config, storage, github)

        await controller.sync(ctx)
        writes = len(storage.writes)
        await controller.sync(ctx)

        assert len(storage.writes) == writes
        assert len(github.pull_calls) == 1

    @pytest.mark.asyncio
    async def test_invalid_parameters_finish_the_job(self, config, storage, github, ctx):
        job = make_job(params=["origin", "extra"])
        store(storage, job)

        await BumpController(config, storage, github).sync(ctx)

        updated = load(storage, job.name)
        assert updated.status.state == JobState.FINISHED
        assert "exactly one repository" in updated.status.message
        assert github.pull_calls == []

    @pytest.mark.asyncio
    async def test_only_pending_bump_jobs_are_considered(self, config, storage, github, ctx):
        store(
            storage,
            make_job(comment_id="1", state=JobState.RUNNING),
            make_job(comment_id="2", job_type=None),
            make_job(comment_id="3", state=JobState.FINISHED),
        )

        await BumpController(config, storage, github).sync(ctx)

        assert github.pull_calls == []

    @pytest.mark.asyncio
    async def test_lookup_failure_does_not_block_other_jobs(self, config, storage, github, ctx):
        failing = make_job(issue_id="12", comment_id="1")
        merged = make_job(issue_id="13", comment_id="2")
        store(storage, failing, merged)
        github.pulls[("openshift", "api", 13)] = PullRequest(merged=True, base_branch="release-4.6")

        async def get_pull_request(owner, repo, number):
            if number == 12:
                raise GitHubError("GET /repos/openshift/api/pulls/12 returned 502")
            return github.pulls[(owner, repo, number)]

        github.get_pull_request = get_pull_request

        with pytest.raises(AggregateError) as exc_info:
            await BumpController(config, storage, github).sync(ctx)

        assert len(exc_info.value.errors) == 1
        assert load(storage, merged.name).status.base_branch == "release-4.6"
        assert load(storage, failing.name).status.base_branch == ""

    @pytest.mark.asyncio
    async def test_lookup_deadline(self, storage, github, ctx):
        store(storage, make_job())

        async def slow_pull_request(owner, repo, number):
            await asyncio.sleep(10)

        github.get_pull_request = slow_pull_request

        with pytest.raises(AggregateError):
            await BumpController(ShodanConfig(github_timeout=0.01), storage, github).sync(ctx)
