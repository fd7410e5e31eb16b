import pytest
from _pytest.fixtures import SubRequest


IN_MEMORY_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
def sqlalchemy_url(request: SubRequest) -> str:
    return request.config.getoption("--sqlalchemy-url") or IN_MEMORY_URL
