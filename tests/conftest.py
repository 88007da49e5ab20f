"""Shared fixtures for pipeline tests."""
from typing import Any, Dict

import pytest

from helpers import (
    COPY_OK,
    DIRECTOR_OK,
    EMPATHY_OK,
    ENHANCED,
    GUARDRAIL_PASS,
    UNDERSTANDING_OK,
    png_bytes,
)
from src.specs.common.enums import Intent, Mood, Platform
from src.specs.models.domain import PostRequest


@pytest.fixture
def source_image() -> bytes:
    return png_bytes()


@pytest.fixture
def make_request(source_image):
    def _make(**overrides) -> PostRequest:
        fields = dict(
            images=[source_image],
            raw_text="today I'm tired",
            platform=Platform.WECHAT_MOMENTS,
            mood_user=Mood.TIRED,
            intent_user=Intent.SEEK_EMPATHY,
        )
        fields.update(overrides)
        return PostRequest(**fields)

    return _make


@pytest.fixture
def happy_scripts() -> Dict[str, Any]:
    return dict(
        understanding=UNDERSTANDING_OK,
        director=DIRECTOR_OK,
        guardrail=GUARDRAIL_PASS,
        copy=COPY_OK,
        empathy=EMPATHY_OK,
        image=ENHANCED,
    )
