"""Test helper utilities for TaskWise tests."""

from tests.helpers.fakes import (
    NOW,
    FakeCall,
    FakeRemoteStore,
    FakeSuggestionService,
    RecordingNotifier,
    document,
    settle,
)

__all__ = [
    "NOW",
    "FakeCall",
    "FakeRemoteStore",
    "FakeSuggestionService",
    "RecordingNotifier",
    "document",
    "settle",
]
