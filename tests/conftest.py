import pytest

from signup_service.config import Settings
from signup_service.record_store import InMemoryRecordStore
from signup_service.scheduler import ManualScheduler
from signup_service.ws_hub import ReloadHub

from .fakes import FakeClientFactory


@pytest.fixture
def hub():
    return ReloadHub()


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def settings():
    return Settings(environment="test", service_version="9.9.9")
