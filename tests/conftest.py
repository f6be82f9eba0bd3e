from collections.abc import Iterator

import pytest

from autosched.core.config import get_settings
from autosched.services.domain import SchedulingPolicy


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def policy() -> SchedulingPolicy:
    return SchedulingPolicy(constraint_time_limit_seconds=10.0, constraint_num_workers=1)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"
