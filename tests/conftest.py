"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from turbowatch.types import RetryPolicy, ThrottlePolicy, Trigger

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


async def noop(event):
    return None


@pytest.fixture
def make_trigger(tmp_path):
    """Build a Trigger with quiet defaults: no retries, no throttle."""

    def factory(**overrides) -> Trigger:
        values = {
            "id": "foo",
            "name": "foo",
            "expression": ["match", "foo", "basename"],
            "watch": str(tmp_path),
            "on_change": noop,
            "interruptible": False,
            "initial_run": True,
            "retry": RetryPolicy(retries=0),
            "throttle_output": ThrottlePolicy(delay=0),
        }
        values.update(overrides)
        return Trigger(**values)

    return factory
