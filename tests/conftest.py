"""Shared fixtures for the CRE core test suite."""

from datetime import datetime, timezone

import pytest

from cre.config.config import get_settings
from cre.config.logging_config import configure_logging
from cre.services.answer_classifier import FollowupAnswerClassifier
from cre.services.language_normalizer import LanguageNormalizer
from cre.services.workup_engine import WorkupEngine


@pytest.fixture(scope="session", autouse=True)
def _logging():
    configure_logging()


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def normalizer() -> LanguageNormalizer:
    return LanguageNormalizer()


@pytest.fixture
def classifier() -> FollowupAnswerClassifier:
    return FollowupAnswerClassifier()


@pytest.fixture
def engine() -> WorkupEngine:
    return WorkupEngine()
