"""Pytest configuration and fixtures for retrieval shaping tests."""

from datetime import datetime, timezone

import pytest
from loguru import logger

from retrieval_shaping import config
from retrieval_shaping.models import Candidate, CandidateKind

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom pytest markers for test categorization."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (skip with '-m \"not integration\"')"
    )


@pytest.fixture(autouse=True)
def reset_settings():
    """Drop cached process-wide settings so every test loads its own."""
    config._settings = None
    yield
    config._settings = None


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_doc():
    """Factory for document chunk candidates."""
    counter = {"n": 0}

    def _make(score=0.5, **kwargs):
        counter["n"] += 1
        kwargs.setdefault("id", f"doc-{counter['n']}")
        kwargs.setdefault("text", "Chunk text about DNS resolution and caching.")
        return Candidate(kind=CandidateKind.DOCUMENT, score=score, **kwargs)

    return _make


@pytest.fixture
def make_web():
    """Factory for web result candidates; signals default to passing values."""
    counter = {"n": 0}

    def _make(score=0.5, domain="example.com", **kwargs):
        counter["n"] += 1
        kwargs.setdefault("id", f"web-{counter['n']}")
        kwargs.setdefault("title", "Result title")
        kwargs.setdefault("text", "A web result body.")
        kwargs.setdefault("quality_score", 0.9)
        kwargs.setdefault("authority_score", 0.9)
        return Candidate(kind=CandidateKind.WEB, score=score, domain=domain, **kwargs)

    return _make


@pytest.fixture
def log_messages():
    """Collect loguru output as a list of 'LEVEL|message' strings."""
    messages = []
    handler_id = logger.add(lambda m: messages.append(str(m).rstrip("\n")), level="DEBUG", format="{level}|{message}")
    yield messages
    logger.remove(handler_id)
