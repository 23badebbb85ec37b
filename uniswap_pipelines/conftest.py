import pytest

from uniswap_pipelines.core.config import CONFIG, set_config
from uniswap_pipelines.testing.fakes import (  # noqa: F401
    fake_reader,
    fake_sdk,
    fake_wallet,
)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: mark test as integration")


@pytest.fixture(autouse=True)
def _isolated_config():
    saved = dict(CONFIG)
    set_config({})
    yield
    set_config(saved)
