"""Shared test fixtures."""

from tests.fixtures.fakes import (
    TEST_USER_ID,
    FakeClock,
    RecordingTransport,
    make_record,
    make_tokens,
    mock_get_current_user,
    sequence,
)

__all__ = [
    "TEST_USER_ID",
    "FakeClock",
    "RecordingTransport",
    "make_record",
    "make_tokens",
    "mock_get_current_user",
    "sequence",
]
