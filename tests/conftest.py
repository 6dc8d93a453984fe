import pytest

from tests.fakes import FakeClientFactory

@pytest.fixture
def factory():
    return FakeClientFactory()
