from datetime import datetime, timezone

import pytest

from job_tracker.settings import TrackerConfig

@pytest.fixture
def config():
    return TrackerConfig()

@pytest.fixture
def now():
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
