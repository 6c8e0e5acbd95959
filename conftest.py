# Shared fixtures for the completion cache tests.
# Living at the repository root also puts the flat modules on sys.path.

import pytest

from context_descriptor import ContextDescriptor


class FakeClock:
    """Manually advanced time source for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def descriptor_factory():
    """Build descriptors with sensible defaults for a Python method body."""
    def make(current_line="x = 1", **overrides):
        fields = {
            "current_function": "process",
            "current_class": "DataProcessor",
            "language": "python",
            "variables": ("data", "result"),
        }
        fields.update(overrides)
        return ContextDescriptor(current_line=current_line, **fields)
    return make
