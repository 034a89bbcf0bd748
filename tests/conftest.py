import pytest


@pytest.fixture
def anyio_backend() -> str:
    # Cache writes are scheduled as asyncio tasks.
    return "asyncio"
