"""
Shared test configuration for storyfetch.

Provides markers, scripted executors and client fixtures so that every
component can be exercised without network access.
"""

# Standard library imports
import asyncio
import os
from typing import AsyncGenerator

# Third-party imports
import pytest
import pytest_asyncio

# Local imports
from storyfetch.client import ContentClient
from storyfetch.config import ClientConfig
from tests.helpers import ScriptedExecutor, json_response

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Tests across several components")
    config.addinivalue_line("markers", "slow: Tests that wait on real throttle windows")


# ============================================================================
# Core Test Fixtures
# ============================================================================


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """
    Cancel any task a test leaves behind so throttle timers and in-flight
    requests never leak into the next test.
    """
    tasks_before = asyncio.all_tasks()
    yield
    new_tasks = asyncio.all_tasks() - tasks_before

    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                print(f"Unexpected error during task cleanup: {e}")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep developer STORYFETCH_* variables out of the tests."""
    for key in list(os.environ):
        if key.startswith("STORYFETCH_"):
            monkeypatch.delenv(key, raising=False)


# ============================================================================
# Executor and Client Fixtures
# ============================================================================


@pytest.fixture
def executor() -> ScriptedExecutor:
    """Executor answering every call with an empty JSON object."""
    return ScriptedExecutor(handler=lambda call: json_response({}))


@pytest.fixture
def test_config() -> ClientConfig:
    """Delivery API configuration with a short throttle window."""
    return ClientConfig(access_token="test-token", throttle_interval=0.01, retries_delay=0)


@pytest_asyncio.fixture
async def client(test_config, executor) -> AsyncGenerator[ContentClient, None]:
    """Client wired to the scripted executor."""
    content_client = ContentClient(test_config, executor=executor)
    yield content_client
    content_client.abort_all()
    await content_client.close()
