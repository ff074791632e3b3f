import pytest

from atmosense.global_config import get_global_config


@pytest.fixture(autouse=True)
def reset_global_config():
    get_global_config().reset()
    yield
    get_global_config().reset()
