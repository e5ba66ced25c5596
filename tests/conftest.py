import pytest

from la_archive.retry import RetryExecutor
from tests.helpers import SleepRecorder


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def executor(sleeps):
    return RetryExecutor(max_retries=3, timeout=5, sleep=sleeps)
