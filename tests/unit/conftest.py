"""Shared fixtures for unit tests."""

import pytest

from taskintel.llm.retry import RetryController, RetryPolicy
from taskintel.models import IntelligenceConfig

from .stubs import RecordingSleep, StubProvider


@pytest.fixture
def stub_provider():
    """Provider with no canned completions; every completion falls back."""
    return StubProvider()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def retry(sleep):
    """Retry controller with the default budget and no real waiting."""
    return RetryController(RetryPolicy(call_timeout=1.0), sleep=sleep)


@pytest.fixture
def config():
    return IntelligenceConfig()
