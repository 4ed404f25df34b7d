import pytest

from allowlist import AllowListStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "allowed_users.json"


@pytest.fixture
def store(store_path):
    return AllowListStore.load(store_path)
