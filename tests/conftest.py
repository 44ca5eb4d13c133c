"""Shared fixtures for the image toolkit test suite."""

import logging

import pytest
from fastapi.testclient import TestClient

from image_toolkit.api import create_app
from image_toolkit.core.config import Settings
from image_toolkit.core.factories import ServiceFactory
from image_toolkit.core.logging_config import ROOT_LOGGER_NAME
from image_toolkit.testing import FakeLogger, InMemoryStorage


def make_settings(**overrides) -> Settings:
    """Settings for tests; explicit values take precedence over the environment."""
    values = {
        "ENVIRONMENT": "test",
        "TRANSCODE_WORKERS": 2,
        "LOG_LEVEL": "WARNING",
        "FRONTEND_URL": "http://localhost:5173",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def restore_toolkit_handlers():
    """Drop file handlers a test's app lifespan attached to the toolkit logger."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    before = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def fake_logger():
    return FakeLogger()


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def services(settings, storage, fake_logger):
    services = ServiceFactory.create_services(
        settings=settings, storage=storage, logger=fake_logger
    )
    yield services
    services.executor.shutdown(wait=False)


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


@pytest.fixture
def service_factory(storage, fake_logger):
    """Build services with setting overrides, sharing the test's storage."""

    def build(codec=None, backend=None, **overrides):
        return ServiceFactory.create_services(
            settings=make_settings(**overrides),
            storage=backend if backend is not None else storage,
            codec=codec,
            logger=fake_logger,
        )

    return build
