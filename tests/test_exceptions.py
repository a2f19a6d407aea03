"""Tests for application-level exception types."""

import pytest

from storybook.core.exceptions import (
    AnalysisError,
    AnalysisRateLimitedError,
    AppError,
    ConfigurationError,
    InvalidStateError,
    SceneNotFoundError,
    StoryNotFoundError,
)


class TestAppError:
    def test_message_and_detail(self):
        err = AppError("something broke", detail="user-friendly msg")
        assert str(err) == "something broke"
        assert err.detail == "user-friendly msg"

    def test_detail_defaults_to_message(self):
        assert AppError("fallback message").detail == "fallback message"


class TestDomainExceptions:
    @pytest.mark.parametrize(
        "exc_class",
        [AnalysisError, AnalysisRateLimitedError, ConfigurationError, InvalidStateError],
    )
    def test_inherits_app_error(self, exc_class):
        assert issubclass(exc_class, AppError)

    def test_analysis_error_has_friendly_default(self):
        err = AnalysisError("json decode failed at line 3")
        assert str(err) == "json decode failed at line 3"
        assert "network" in err.detail

    def test_rate_limited_is_an_analysis_error(self):
        err = AnalysisRateLimitedError("429 from model")
        assert isinstance(err, AnalysisError)
        assert "busy" in err.detail
        assert "network" not in err.detail

    def test_not_found_errors_keep_ids(self):
        story_err = StoryNotFoundError("story-1")
        scene_err = SceneNotFoundError("scene-1")
        assert story_err.story_id == "story-1"
        assert story_err.detail == "story not found"
        assert "story-1" in str(story_err)
        assert scene_err.scene_id == "scene-1"
        assert scene_err.detail == "scene not found"
