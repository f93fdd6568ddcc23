import pytest

from tests.support import Stack, build_stack


@pytest.fixture
def stack() -> Stack:
    return build_stack()
