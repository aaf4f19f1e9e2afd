import pytest

from shodan.config import ShodanConfig
from shodan.controllers.factory import EventRecorder, SyncContext, WorkQueue
from tests.unit_test.fakes import FakeGitHub, RecordingStorage


@pytest.fixture
def config():
    return ShodanConfig(github_access_token="token", github_timeout=5)


@pytest.fixture
def storage():
    return RecordingStorage()


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def ctx():
    return SyncContext("test", WorkQueue(), EventRecorder("test"))
