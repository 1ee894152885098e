"""Pytest configuration and shared fixtures."""
import pytest

from objectwatch import ObserverConfig, create_context, reset_default_config, set_default_config


class Sprite:
    """Test object with None placeholders declared up front."""

    def __init__(self):
        self.x = None
        self.y = None


class Position:
    """Test component with a mutating method."""

    def __init__(self):
        self.x = None
        self.y = None

    def set(self, x, y):
        self.x = x
        self.y = y


class Recorder:
    """Collects observer callback invocations as (hook, args) tuples."""

    def __init__(self):
        self.calls = []

    def hooks(self):
        return {
            'on_new_property': lambda *args: self.calls.append(('new', args)),
            'on_property_change': lambda *args: self.calls.append(('change', args)),
            'on_property_delete': lambda *args: self.calls.append(('delete', args)),
            'on_access_failure': lambda *args: self.calls.append(('access_failure', args)),
        }

    def of(self, hook):
        return [args for name, args in self.calls if name == hook]


@pytest.fixture(autouse=True)
def reset_default_observer_config():
    """Install a threading config before each test and drop it afterwards."""
    set_default_config(ObserverConfig(use_threading=True))
    yield
    reset_default_config()


@pytest.fixture
def outputs():
    """Render sink collecting every rendered output."""
    return []


@pytest.fixture
def context(outputs):
    """Observer context writing to the outputs list; cleared after the test."""
    ctx = create_context(sink=outputs.append)
    yield ctx
    ctx.clear()


@pytest.fixture
def recorder():
    return Recorder()
